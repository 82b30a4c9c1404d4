"""Service wiring the orchestration loop, action ledger and revert engine.

Handles component creation from settings and shapes the payloads returned
to the chat, revert and status API surfaces.
"""

from typing import Optional, Dict, Any, List
from functools import lru_cache
from pathlib import Path
import logging

from langchain_openai import ChatOpenAI

from notesgit.agents.conversation import ConversationTurn
from notesgit.agents.orchestrator import OrchestrationLoop
from notesgit.agents.revert_engine import RevertEngine, RevertResult
from notesgit.backend.notes_client import NotesBackendClient
from notesgit.capabilities.catalog import CapabilityCatalog
from notesgit.capabilities.executor import AuthContext, CapabilityExecutor
from notesgit.capabilities.registry import build_notes_registry
from notesgit.config import Settings, configure_logging
from notesgit.core.errors import RevertError
from notesgit.database.repositories.action_record_repository import ActionRecordRepository
from notesgit.ledger.action_ledger import ActionLedger

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_PATH = Path(__file__).parent / "prompts" / "system_prompt.txt"


@lru_cache(maxsize=8)
def load_system_prompt(path: Optional[str] = None) -> str:
    """Load the system instruction, cached per path.

    Args:
        path: Prompt file. If None, uses the packaged prompt.

    Returns:
        The prompt text with surrounding whitespace removed.
    """
    prompt_path = Path(path) if path else DEFAULT_PROMPT_PATH
    return prompt_path.read_text(encoding="utf-8").strip()


class NotesAgentService:
    """Service for running note/folder requests with undo support.

    Provides high-level operations for chatting with the model, reverting a
    request and polling its status. Components not passed in are built from
    the settings.

    Example:
        >>> service = NotesAgentService(Settings.from_env())
        >>> reply = await service.handle_message("Create a Recipes folder", user_id=7, token=token)
        >>> await service.revert_payload({"requestId": reply["requestId"], "userId": 7}, token)
        {'operationsReverted': 1, 'message': 'Successfully reverted 1 action(s)'}
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model=None,
        backend: Optional[NotesBackendClient] = None,
        ledger: Optional[ActionLedger] = None,
        catalog: Optional[CapabilityCatalog] = None,
    ):
        """Initialize the agent service.

        Args:
            settings: Runtime settings. If None, loads from the environment.
            model: LangChain chat model. If None, creates a ChatOpenAI.
            backend: Notes backend client. If None, creates one.
            ledger: Action ledger. If None, creates one on the configured database.
            catalog: Capability catalog. If None, loads the packaged one.
        """
        self.settings = settings or Settings.from_env()

        self.model = model or ChatOpenAI(
            model=self.settings.model,
            temperature=self.settings.temperature,
            api_key=self.settings.api_key,
            base_url=self.settings.base_url,
        )
        self.backend = backend or NotesBackendClient(
            self.settings.backend_url,
            timeout=self.settings.backend_timeout,
        )
        self.ledger = ledger or ActionLedger(
            ActionRecordRepository(
                db_path=self.settings.database_url,
                ttl_seconds=self.settings.action_ttl_seconds,
            )
        )
        self.catalog = catalog or CapabilityCatalog()

        self.executor = CapabilityExecutor(
            build_notes_registry(self.backend),
            self.ledger,
            catalog=self.catalog,
        )
        self.loop = OrchestrationLoop(
            model=self.model,
            catalog=self.catalog,
            executor=self.executor,
            ledger=self.ledger,
            system_instruction=load_system_prompt(self.settings.system_prompt_path),
            max_iterations=self.settings.max_iterations,
        )
        self.revert_engine = RevertEngine(self.ledger, self.backend)

    async def handle_message(
        self,
        message: str,
        user_id: int,
        token: Optional[str],
        history: Optional[List[Dict[str, Any]]] = None,
        grounding_context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run one user message through the orchestration loop.

        Args:
            message: The user's message.
            user_id: ID of the user.
            token: Bearer token for backend calls.
            history: Prior turns in the stored ``{role, parts}`` shape.
            grounding_context: Optional read-only context for the model.

        Returns:
            ``{response, changed, history}`` plus ``requestId`` when the run
            modified anything and can be reverted. ``history`` is the full
            transcript in the stored ``{role, parts}`` shape, ready to be
            passed back on the next message.
        """
        turns = [ConversationTurn.from_dict(t) for t in (history or [])]
        result = await self.loop.run(
            message,
            user_id,
            AuthContext(token=token),
            history=turns,
            grounding_context=grounding_context,
        )
        if result.degraded:
            logger.warning(
                "Request completed with degraded undo bookkeeping",
                extra={"user_id": user_id, "degraded": result.degraded},
            )

        payload: Dict[str, Any] = {
            "response": result.response,
            "changed": result.changed,
            "history": [turn.to_dict() for turn in result.turns],
        }
        if result.request_id:
            payload["requestId"] = result.request_id
        return payload

    def _revert_payload(self, result: RevertResult) -> Dict[str, Any]:
        if result.operations_reverted > 0:
            payload: Dict[str, Any] = {
                "operationsReverted": result.operations_reverted,
                "message": result.message,
            }
            if result.errors:
                payload["errors"] = result.errors
            return payload
        return {"message": result.message, "errors": result.errors}

    async def revert_payload(self, body: Dict[str, Any], token: Optional[str]) -> Dict[str, Any]:
        """Revert a request given a ``{requestId, userId}`` body.

        Args:
            body: Request body from the revert API surface.
            token: Bearer token for the inverse calls.

        Returns:
            ``{operationsReverted, message}`` when anything was undone,
            otherwise ``{message, errors}``.
        """
        request_id = body.get("requestId")
        user_id = body.get("userId")
        if not request_id or not isinstance(request_id, str):
            return {"message": "requestId is required and must be a string", "errors": []}
        if user_id is None:
            return {"message": "userId is required", "errors": []}

        try:
            result = await self.revert_engine.revert(request_id, user_id, AuthContext(token=token))
        except RevertError as e:
            return {"message": e.message, "errors": []}
        return self._revert_payload(result)

    async def revert_latest_payload(self, user_id: int, token: Optional[str]) -> Dict[str, Any]:
        """Revert the user's newest revertable request."""
        try:
            result = await self.revert_engine.revert_latest(user_id, AuthContext(token=token))
        except RevertError as e:
            return {"message": e.message, "errors": []}
        return self._revert_payload(result)

    def status_payload(self, request_id: str, user_id: int) -> Dict[str, Any]:
        """Return ``{status, actionCount?, revertedAt?}`` for a request."""
        return self.revert_engine.get_status(request_id, user_id).to_dict()

    def start(self, sweep_interval: float = 60.0):
        """Apply the configured log level and start purging expired records.

        Must be called from a running event loop.
        """
        configure_logging(self.settings.log_level)
        self.ledger.start_sweeper(sweep_interval)

    async def aclose(self):
        """Stop background work and close the backend client."""
        await self.ledger.stop_sweeper()
        await self.backend.aclose()
