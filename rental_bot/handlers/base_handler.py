"""
Base Flow Handler - общий конечный автомат для многошаговых диалогов.

Every flow renders a prompt per state. A transition (forward or back) first
renders the target prompt and only then mutates the session, so a failed
store call leaves the session exactly as it was.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ..callbacks import Callback, Namespace, make_token
from ..messenger import Messenger
from ..retry_policy import RetryPolicy, FAILED
from ..services import RentalRepository
from ..session_store import AuthRegistry, Flow, Session, SessionStore

logger = logging.getLogger("flow_handler")


class FlowHandler:
    """Shared plumbing for the four flows."""

    flow: Flow
    namespace: Namespace
    # state -> state reached by "back"; states missing here cancel the flow
    previous: Dict[Enum, Enum] = {}
    # state -> session fields collected while in that state
    collects: Dict[Enum, Tuple[str, ...]] = {}
    cancel_text = "Operation cancelled."

    def __init__(self, repository: RentalRepository, retry_policy: RetryPolicy,
                 sessions: SessionStore, auth: AuthRegistry, messenger: Messenger):
        self.repository = repository
        self.retry_policy = retry_policy
        self.sessions = sessions
        self.auth = auth
        self.messenger = messenger

    # ------------------------------------------------------------------

    async def db(self, identity: int, op: Callable[..., Any], *args: Any) -> Any:
        """Store call with retries; FAILED means the user was already told"""
        return await self.retry_policy.run_for_user(self.messenger, identity, op, *args)

    def has_active(self, identity: int) -> bool:
        return self.sessions.get(identity, self.flow) is not None

    def session(self, identity: int) -> Optional[Session]:
        return self.sessions.get(identity, self.flow)

    @property
    def back_token(self) -> str:
        return make_token(self.namespace, "back")

    async def send_with_back(self, identity: int, text: str, buttons: Optional[Dict[str, str]] = None) -> None:
        buttons = dict(buttons or {})
        buttons["Back"] = self.back_token
        await self.messenger.send_text_with_callback_buttons(identity, text, buttons)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def prompt(self, identity: int, state: Enum, fields: Dict[str, Any]) -> bool:
        """Render the prompt of `state`; False keeps the session where it is"""
        raise NotImplementedError

    async def advance(self, identity: int, session: Session, state: Enum, **fields: Any) -> bool:
        pending = {**session.fields, **fields}
        if not await self.prompt(identity, state, pending):
            return False
        session.fields = pending
        session.state = state
        return True

    async def jump(self, identity: int, session: Session, state: Enum, **fields: Any) -> bool:
        """Like advance, but the session keeps exactly `fields`"""
        if not await self.prompt(identity, state, fields):
            return False
        session.fields = fields
        session.state = state
        return True

    async def go_back(self, identity: int) -> None:
        session = self.session(identity)
        if session is None or session.state not in self.previous:
            self.sessions.end(identity, self.flow)
            await self.messenger.send_text(identity, self.cancel_text)
            return

        target = self.previous[session.state]
        dropped = set(self.collects.get(session.state, ()))
        pending = {k: v for k, v in session.fields.items() if k not in dropped}
        if await self.prompt(identity, target, pending):
            session.fields = pending
            session.state = target

    async def cancel(self, identity: int) -> None:
        self.sessions.end(identity, self.flow)
        await self.messenger.send_text(identity, self.cancel_text)

    async def unknown_state(self, identity: int, session: Session) -> None:
        logger.warning(f"⚠️ {identity}: unexpected state {session.state} in {self.flow.value}, resetting")
        await self.cancel(identity)

    # ------------------------------------------------------------------

    async def handle_text(self, identity: int, text: str) -> None:
        raise NotImplementedError

    async def handle_callback(self, identity: int, callback: Callback) -> None:
        raise NotImplementedError


def failed(result: Any) -> bool:
    return result is FAILED
