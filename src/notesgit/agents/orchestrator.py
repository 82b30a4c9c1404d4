"""LangGraph orchestration loop driving capability calls from the model.

Implements the multi-turn exchange between the chat model and the
capability executor. Each request gets its own action record so that every
modifying capability call it makes can be reverted as one unit.
"""

from typing import Optional, Dict, Any, List, Annotated, TypedDict
from dataclasses import dataclass, field
import asyncio
import logging
import operator
import uuid

from langchain_core.messages import BaseMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import StateGraph, END

from notesgit.agents.conversation import ConversationTurn, to_messages
from notesgit.capabilities.catalog import CapabilityCatalog
from notesgit.capabilities.executor import AuthContext, CapabilityExecutor, LedgerContext
from notesgit.core.errors import LoopExceeded
from notesgit.core.rollback_protocol import changed_entity_kind, is_modifying_capability
from notesgit.ledger.action_ledger import ActionLedger

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10
NO_RESPONSE_TEXT = "No response generated"


def new_request_id() -> str:
    """Generate an opaque, unguessable request identifier."""
    return uuid.uuid4().hex


class OrchestrationState(TypedDict):
    """State definition for the orchestration graph.

    Attributes:
        turns: Transcript sent to the model, appended to as the run goes
        pending_call: First capability call of the latest model response
        final_text: Model's final answer, once it stops calling capabilities
        iteration: Number of model round-trips so far
        changed: Entity kinds touched by executed capabilities
        degraded: Best-effort bookkeeping failures reported by the executor
        modifying_calls: Number of modifying capabilities executed
        user_id: ID of the user owning the run
        request_id: Action record the run logs to, if any
        token: Bearer token injected into backend calls
    """
    turns: Annotated[List[ConversationTurn], operator.add]
    pending_call: Optional[Dict[str, Any]]
    final_text: Optional[str]
    iteration: int
    changed: Annotated[List[str], operator.add]
    degraded: Annotated[List[str], operator.add]
    modifying_calls: Annotated[int, operator.add]
    user_id: int
    request_id: Optional[str]
    token: Optional[str]


@dataclass
class OrchestrationResult:
    """Outcome of one orchestration run.

    Attributes:
        response: Final text from the model
        changed: Distinct entity kinds that may have been mutated
        request_id: Revert handle; set only if a modifying capability ran
        degraded: Best-effort failures that left the run less undoable
        turns: Full transcript of the run, including the new user message
    """
    response: str
    changed: List[str] = field(default_factory=list)
    request_id: Optional[str] = None
    degraded: List[str] = field(default_factory=list)
    turns: List[ConversationTurn] = field(default_factory=list)


class OrchestrationLoop:
    """LangGraph agent that executes capabilities with undo bookkeeping.

    The graph alternates between an ``agent`` node (one model call) and a
    ``capability`` node (one capability call). Only the first capability
    call of a model response is executed, so the action ledger always sees
    calls in a single well-defined order.

    Attributes:
        model: LangChain chat model supporting ``bind_tools``
        catalog: Capability catalog exposed to the model
        executor: Capability executor
        ledger: Action ledger each run is recorded in
        max_iterations: Cap on model round-trips per run
        graph: The compiled LangGraph workflow
    """

    def __init__(
        self,
        model,
        catalog: CapabilityCatalog,
        executor: CapabilityExecutor,
        ledger: ActionLedger,
        system_instruction: str = "",
        max_iterations: int = MAX_ITERATIONS,
    ):
        """Initialize the orchestration loop.

        Args:
            model: The LangChain model to use (e.g., ChatOpenAI)
            catalog: Catalog whose capabilities are offered to the model
            executor: Executor that runs requested capabilities
            ledger: Ledger recording each run's modifying actions
            system_instruction: Default system instruction for runs
            max_iterations: Maximum model round-trips per run
        """
        self.model = model
        self.catalog = catalog
        self.executor = executor
        self.ledger = ledger
        self.system_instruction = system_instruction
        self.max_iterations = max_iterations
        self.tools = catalog.to_completion_format()
        self.graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph workflow.

        Returns:
            Compiled StateGraph ready for execution
        """
        workflow = StateGraph(OrchestrationState)

        workflow.add_node("agent", self._agent_node)
        workflow.add_node("capability", self._capability_node)

        workflow.set_entry_point("agent")

        workflow.add_conditional_edges(
            "agent",
            self._should_call_capability,
            {
                "capability": "capability",
                "end": END
            }
        )
        workflow.add_conditional_edges(
            "capability",
            self._should_continue,
            {
                "agent": "agent",
                "end": END
            }
        )

        return workflow.compile()

    async def _agent_node(self, state: OrchestrationState, config: RunnableConfig) -> Dict[str, Any]:
        """Send the transcript to the model and pick the next step.

        Args:
            state: Current orchestration state
            config: Runnable config carrying the run's system instruction

        Returns:
            State update with either a pending capability call or final text
        """
        iteration = state.get("iteration", 0) + 1
        system_instruction = config.get("configurable", {}).get("system_instruction")
        messages = to_messages(state["turns"], system_instruction)

        logger.debug("Orchestration iteration %d", iteration, extra={"user_id": state.get("user_id")})
        response = await self.model.bind_tools(self.tools).ainvoke(messages)

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            if not call.get("name"):
                raise ValueError("Capability call missing name")
            pending = {
                "name": call["name"],
                "args": dict(call.get("args") or {}),
                "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            }
            if len(tool_calls) > 1:
                logger.debug(
                    "Model requested %d capability calls; executing only the first",
                    len(tool_calls),
                )
            return {
                "iteration": iteration,
                "pending_call": pending,
                "turns": [ConversationTurn.capability_call(pending["name"], pending["args"], pending["id"])],
            }

        return {
            "iteration": iteration,
            "pending_call": None,
            "final_text": self._extract_response_content(response) or NO_RESPONSE_TEXT,
        }

    async def _capability_node(self, state: OrchestrationState) -> Dict[str, Any]:
        """Execute the pending capability call.

        Args:
            state: Current orchestration state

        Returns:
            State update with the capability result turn and bookkeeping
        """
        call = state["pending_call"]
        name = call["name"]
        logger.info("Model calling capability: %s", name, extra={"capability": name, "user_id": state["user_id"]})

        ledger_context = None
        if state.get("request_id"):
            ledger_context = LedgerContext(request_id=state["request_id"], user_id=state["user_id"])

        outcome = await self.executor.execute(
            name,
            call["args"],
            AuthContext(token=state.get("token")),
            ledger_context,
        )

        update: Dict[str, Any] = {
            "pending_call": None,
            "turns": [ConversationTurn.capability_result(name, outcome.result, call["id"])],
            "degraded": list(outcome.degraded),
        }
        kind = changed_entity_kind(name)
        if kind:
            update["changed"] = [kind]
        if is_modifying_capability(name):
            update["modifying_calls"] = 1
        return update

    def _should_call_capability(self, state: OrchestrationState) -> str:
        """Route to the capability node when the model requested a call."""
        if state.get("pending_call"):
            return "capability"
        return "end"

    def _should_continue(self, state: OrchestrationState) -> str:
        """Return to the model unless the iteration cap is reached."""
        if state.get("iteration", 0) >= self.max_iterations:
            return "end"
        return "agent"

    def _extract_response_content(self, message: BaseMessage) -> str:
        """Extract text content from a model message.

        Args:
            message: The message to extract content from

        Returns:
            The extracted content as string
        """
        content = getattr(message, "content", message)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            chunks = []
            for block in content:
                if isinstance(block, str):
                    chunks.append(block)
                elif isinstance(block, dict) and block.get("type") == "text":
                    chunks.append(block.get("text", ""))
            return "".join(chunks)
        return str(content)

    def _build_system_instruction(self, system_instruction: Optional[str],
                                  grounding_context: Optional[str]) -> str:
        base = system_instruction if system_instruction is not None else self.system_instruction
        if grounding_context:
            return f"{base}{grounding_context}"
        return base

    async def _start_record(self, request_id: str, user_id: int) -> bool:
        try:
            await asyncio.to_thread(self.ledger.create_request, request_id, user_id)
            return True
        except Exception as e:
            logger.warning(
                "Failed to create action record; request will not be revertable",
                extra={"request_id": request_id, "user_id": user_id, "error": str(e)},
            )
            return False

    async def _fail_record(self, request_id: str, user_id: int, message: str):
        try:
            await asyncio.to_thread(self.ledger.mark_failed, request_id, user_id, message)
        except Exception:
            logger.exception("Failed to mark action record as failed", extra={"request_id": request_id})

    async def _finish_record(self, request_id: str, user_id: int):
        try:
            await asyncio.to_thread(self.ledger.mark_finished, request_id, user_id)
        except Exception:
            logger.exception("Failed to clear running flag", extra={"request_id": request_id})

    async def run(
        self,
        message: str,
        user_id: int,
        auth: AuthContext,
        history: Optional[List[ConversationTurn]] = None,
        system_instruction: Optional[str] = None,
        grounding_context: Optional[str] = None,
    ) -> OrchestrationResult:
        """Run the loop for one user message.

        Args:
            message: The user message to process
            user_id: ID of the user issuing the request
            auth: Credentials injected into capability calls
            history: Prior conversation turns
            system_instruction: Overrides the default system instruction
            grounding_context: Read-only context appended to the instruction

        Returns:
            OrchestrationResult with final text, changed kinds and request id

        Raises:
            LoopExceeded: If the model keeps calling capabilities past the cap
            NotesGitError: If a capability call fails
        """
        request_id = new_request_id()
        recording = await self._start_record(request_id, user_id)
        degraded: List[str] = []
        if not recording:
            degraded.append("LedgerWriteFailed: action record could not be created")

        turns = list(history or []) + [ConversationTurn.user_text(message)]
        initial_state = OrchestrationState(
            turns=turns,
            pending_call=None,
            final_text=None,
            iteration=0,
            changed=[],
            degraded=[],
            modifying_calls=0,
            user_id=user_id,
            request_id=request_id if recording else None,
            token=auth.token,
        )
        config = RunnableConfig(
            configurable={
                "thread_id": request_id,
                "system_instruction": self._build_system_instruction(system_instruction, grounding_context),
            },
            recursion_limit=2 * self.max_iterations + 5,
        )

        logger.debug(
            "Starting orchestration loop",
            extra={"request_id": request_id, "user_id": user_id, "turn_count": len(turns)},
        )
        try:
            result = await self.graph.ainvoke(initial_state, config)
        except Exception as e:
            logger.error("Orchestration run failed", extra={"request_id": request_id, "user_id": user_id})
            if recording:
                await self._fail_record(request_id, user_id, str(e))
            raise

        if result.get("final_text") is None:
            logger.warning(
                "Orchestration loop hit maximum iterations (%d)", self.max_iterations,
                extra={"request_id": request_id, "user_id": user_id},
            )
            error = LoopExceeded(self.max_iterations, request_id if recording else None)
            if recording:
                await self._fail_record(request_id, user_id, error.message)
            raise error

        if recording:
            await self._finish_record(request_id, user_id)

        final_turns = list(result["turns"]) + [ConversationTurn.model_text(result["final_text"])]
        changed = list(dict.fromkeys(result.get("changed", [])))
        degraded.extend(result.get("degraded", []))
        modified = result.get("modifying_calls", 0) > 0

        logger.info(
            "Orchestration completed",
            extra={
                "request_id": request_id,
                "user_id": user_id,
                "iterations": result.get("iteration", 0),
                "changed_entities": changed,
            },
        )
        return OrchestrationResult(
            response=result["final_text"],
            changed=changed,
            request_id=request_id if (modified and recording) else None,
            degraded=degraded,
            turns=final_turns,
        )
