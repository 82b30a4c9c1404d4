"""Conversation transcript model exchanged with the completion service.

A transcript is a list of ConversationTurn objects. Turns are converted to
LangChain messages only at the completion-service boundary.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

USER_ROLE = "user"
MODEL_ROLE = "model"


@dataclass
class TextPart:
    text: str


@dataclass
class CapabilityCallPart:
    """A capability invocation requested by the model."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass
class CapabilityResultPart:
    """The result of a capability invocation, fed back to the model."""
    name: str
    response: Any = None
    call_id: str = ""


Part = Union[TextPart, CapabilityCallPart, CapabilityResultPart]


@dataclass
class ConversationTurn:
    """One turn of the transcript.

    Attributes:
        role: ``user`` or ``model``.
        parts: Ordered text, capability-call or capability-result parts.
    """
    role: str
    parts: List[Part] = field(default_factory=list)

    def __post_init__(self):
        if self.role not in (USER_ROLE, MODEL_ROLE):
            raise ValueError(f"Invalid conversation role: {self.role!r}")

    @classmethod
    def user_text(cls, text: str) -> "ConversationTurn":
        return cls(USER_ROLE, [TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> "ConversationTurn":
        return cls(MODEL_ROLE, [TextPart(text)])

    @classmethod
    def capability_call(cls, name: str, args: Dict[str, Any], call_id: str) -> "ConversationTurn":
        return cls(MODEL_ROLE, [CapabilityCallPart(name, dict(args), call_id)])

    @classmethod
    def capability_result(cls, name: str, response: Any, call_id: str) -> "ConversationTurn":
        return cls(USER_ROLE, [CapabilityResultPart(name, response, call_id)])

    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_messages(self) -> List[BaseMessage]:
        """Convert the turn to LangChain messages."""
        text = self.text()
        calls = [p for p in self.parts if isinstance(p, CapabilityCallPart)]
        results = [p for p in self.parts if isinstance(p, CapabilityResultPart)]

        if self.role == MODEL_ROLE:
            tool_calls = [
                {"name": c.name, "args": c.args, "id": c.call_id, "type": "tool_call"}
                for c in calls
            ]
            return [AIMessage(content=text, tool_calls=tool_calls)]

        messages: List[BaseMessage] = [
            ToolMessage(
                content=json.dumps({"result": r.response}, default=str),
                tool_call_id=r.call_id,
                name=r.name,
            )
            for r in results
        ]
        if text:
            messages.append(HumanMessage(content=text))
        return messages

    def to_dict(self) -> dict:
        """Convert to the stored ``{role, parts}`` shape."""
        parts = []
        for part in self.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, CapabilityCallPart):
                parts.append({"functionCall": {"name": part.name, "args": part.args, "id": part.call_id}})
            else:
                parts.append({"functionResponse": {
                    "name": part.name,
                    "response": {"result": part.response},
                    "id": part.call_id,
                }})
        return {"role": self.role, "parts": parts}

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationTurn":
        parts: List[Part] = []
        for raw in data.get("parts", []):
            if "text" in raw:
                parts.append(TextPart(raw["text"]))
            elif "functionCall" in raw:
                call = raw["functionCall"]
                parts.append(CapabilityCallPart(call["name"], call.get("args") or {}, call.get("id", "")))
            elif "functionResponse" in raw:
                res = raw["functionResponse"]
                response = res.get("response")
                if isinstance(response, dict) and "result" in response:
                    response = response["result"]
                parts.append(CapabilityResultPart(res["name"], response, res.get("id", "")))
        return cls(data.get("role", USER_ROLE), parts)


def to_messages(turns: List[ConversationTurn], system_instruction: Optional[str] = None) -> List[BaseMessage]:
    """Flatten a transcript into LangChain messages."""
    messages: List[BaseMessage] = []
    if system_instruction:
        messages.append(SystemMessage(content=system_instruction))
    for turn in turns:
        messages.extend(turn.to_messages())
    return messages
