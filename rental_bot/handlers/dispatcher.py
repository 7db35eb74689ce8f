"""
Dispatcher - маршрутизация входящих событий.

Text: commands and menu labels first, then the active flow in the order
ActiveRents > Admin > Rent > Auth, else "Unknown command". Callbacks are
parsed into a Callback and routed by namespace. Events of one identity are
processed strictly one at a time.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional

from ..callbacks import Namespace, parse_callback
from ..exceptions import handle_exception
from ..messenger import Messenger
from ..session_store import AuthRegistry, Flow, SessionStore
from .active_rents_handler import ActiveRentsHandler
from .admin_handler import AdminHandler
from .auth_handler import AuthHandler
from .base_handler import FlowHandler
from .menu_handler import MenuHandler
from .rent_handler import RentHandler

logger = logging.getLogger("dispatcher")

FLOW_PRECEDENCE = (Flow.ACTIVE_RENTS, Flow.ADMIN, Flow.RENT, Flow.AUTH)

UNKNOWN_COMMAND = "Unknown command. Use /help."


class Dispatcher:
    """Routes every inbound event of an identity to exactly one handler."""

    def __init__(self, menu: MenuHandler, auth_flow: AuthHandler, rent: RentHandler,
                 admin: AdminHandler, active_rents: ActiveRentsHandler,
                 sessions: SessionStore, auth: AuthRegistry, messenger: Messenger):
        self.menu = menu
        self.sessions = sessions
        self.auth = auth
        self.messenger = messenger
        self.flows: Dict[Flow, FlowHandler] = {
            Flow.AUTH: auth_flow,
            Flow.RENT: rent,
            Flow.ADMIN: admin,
            Flow.ACTIVE_RENTS: active_rents,
        }
        self.namespaces: Dict[Namespace, FlowHandler] = {
            Namespace.AUTH: auth_flow,
            Namespace.RENT: rent,
            Namespace.ADMIN: admin,
            Namespace.ACTIVE_RENTS: active_rents,
        }
        # lower-cased command or menu label -> action
        self.commands: Dict[str, Callable[[int], Awaitable[None]]] = {
            "/start": auth_flow.start,
            "/help": menu.handle_help,
            "help": menu.handle_help,
            "/menu": menu.handle_menu,
            "menu": menu.handle_menu,
            "/admin": self._gated(admin.start, "use Admin"),
            "admin": self._gated(admin.start, "use Admin"),
            "/rent": self._gated(rent.start, "rent cars"),
            "rent": self._gated(rent.start, "rent cars"),
            "rent car": self._gated(rent.start, "rent cars"),
            "/rents": self._gated(active_rents.start, "view active rents"),
            "active rents": self._gated(active_rents.start, "view active rents"),
        }
        # identity -> lock, kept only while some event of that identity is queued or running
        self._locks: Dict[int, asyncio.Lock] = {}
        self._pending: Dict[int, int] = {}

    def _gated(self, action: Callable[[int], Awaitable[None]], what: str) -> Callable[[int], Awaitable[None]]:
        async def run(identity: int) -> None:
            if await self.menu.require_auth(identity, what):
                await action(identity)
        return run

    @staticmethod
    def command_key(text: str) -> str:
        key = (text or "").strip().lower()
        if key.startswith("/"):
            # /rent@SomeBot -> /rent
            key = key.split()[0].split("@", 1)[0]
        return key

    def active_handler(self, identity: int) -> Optional[FlowHandler]:
        for flow in FLOW_PRECEDENCE:
            handler = self.flows[flow]
            if handler.has_active(identity):
                return handler
        return None

    # ------------------------------------------------------------------

    @asynccontextmanager
    async def serialized(self, identity: int):
        """One event per identity at a time"""
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._pending[identity] = self._pending.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pending[identity] -= 1
            if not self._pending[identity]:
                del self._pending[identity]
                del self._locks[identity]

    async def dispatch_text(self, identity: int, text: str) -> None:
        async with self.serialized(identity):
            await self._guarded(identity, "text", self._route_text(identity, text))

    async def dispatch_callback(self, identity: int, callback_id: str, data: str) -> None:
        await self.messenger.acknowledge_callback(callback_id)
        async with self.serialized(identity):
            await self._guarded(identity, "callback", self._route_callback(identity, data))

    async def _route_text(self, identity: int, text: str) -> None:
        command = self.commands.get(self.command_key(text))
        if command is not None:
            await command(identity)
            return

        handler = self.active_handler(identity)
        if handler is not None:
            await handler.handle_text(identity, text)
            return

        await self.messenger.send_text(identity, UNKNOWN_COMMAND)

    async def _route_callback(self, identity: int, data: str) -> None:
        callback = parse_callback(data)
        logger.debug(f"🔘 {identity}: {callback}")
        await self.namespaces[callback.namespace].handle_callback(identity, callback)

    async def _guarded(self, identity: int, kind: str, work: Awaitable[None]) -> None:
        try:
            await work
        except Exception as e:
            # domain errors get their own text, anything else a generic one
            await self.messenger.send_text(identity, handle_exception(e, identity, kind))
