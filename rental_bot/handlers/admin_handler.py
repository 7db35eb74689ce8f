"""
Admin Handler - панель администратора.

Non-admins first pass the configured admin password, which promotes the
login permanently. The panel pages through cars and rentals (store-side
LIMIT/OFFSET, id ascending) and edits a single car: delete, move, status.
"""

import hmac
import logging
from enum import Enum
from typing import Any, Dict, Optional

from .. import config
from ..callbacks import Callback, Namespace, make_token
from ..input_validators import parse_id
from ..session_store import Flow, Session
from .base_handler import FlowHandler, failed
from .menu_handler import MenuHandler

logger = logging.getLogger("admin_handler")


class AdminState(Enum):
    AWAIT_ADMIN_PASSWORD = "await_admin_password"
    ADMIN_MENU = "admin_menu"
    CARS_LIST = "cars_list"
    CAR_ACTIONS = "car_actions"
    SELECT_MOVE_BRANCH = "select_move_branch"
    SELECT_STATUS = "select_status"
    RENTALS_LIST = "rentals_list"


def page_count(total: int, page_size: int) -> int:
    return max(1, -(-total // page_size))


class AdminHandler(FlowHandler):
    """Admin panel state machine."""

    flow = Flow.ADMIN
    namespace = Namespace.ADMIN
    previous = {
        AdminState.CARS_LIST: AdminState.ADMIN_MENU,
        AdminState.RENTALS_LIST: AdminState.ADMIN_MENU,
        AdminState.CAR_ACTIONS: AdminState.CARS_LIST,
        AdminState.SELECT_MOVE_BRANCH: AdminState.CAR_ACTIONS,
        AdminState.SELECT_STATUS: AdminState.CAR_ACTIONS,
    }
    collects = {
        AdminState.CARS_LIST: ("page",),
        AdminState.RENTALS_LIST: ("page",),
        AdminState.CAR_ACTIONS: ("car_id",),
    }
    cancel_text = "Admin panel closed. Use /admin or the menu to open it again."

    def __init__(self, *args, menu: MenuHandler, admin_password: Optional[str] = None,
                 page_size: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.menu = menu
        self.admin_password = config.ADMIN_PASSWORD if admin_password is None else admin_password
        self.page_size = page_size or config.ADMIN_PAGE_SIZE

    async def start(self, identity: int) -> None:
        """Handle /admin and the "Admin" button (caller checked login)."""
        login = self.auth.login_for(identity)
        is_admin = await self.db(identity, self.repository.is_admin, login)
        if failed(is_admin):
            return

        if is_admin:
            session = self.sessions.start(identity, Flow.ADMIN, AdminState.ADMIN_MENU)
            if not await self.prompt(identity, AdminState.ADMIN_MENU, session.fields):
                self.sessions.end(identity, self.flow)
            return

        self.sessions.start(identity, Flow.ADMIN, AdminState.AWAIT_ADMIN_PASSWORD)
        await self.prompt(identity, AdminState.AWAIT_ADMIN_PASSWORD, {})
        logger.info(f"🔐 {identity} asked for admin password")

    # ------------------------------------------------------------------
    # prompts
    # ------------------------------------------------------------------

    async def prompt(self, identity: int, state: Enum, fields: Dict[str, Any]) -> bool:
        if state is AdminState.AWAIT_ADMIN_PASSWORD:
            await self.send_with_back(identity, "Enter admin password:")
            return True

        if state is AdminState.ADMIN_MENU:
            await self.send_with_back(identity, "Admin panel. Choose a section:", {
                "Cars": make_token(self.namespace, "cars", 0),
                "Rentals": make_token(self.namespace, "rentals", 0),
            })
            return True

        if state is AdminState.CARS_LIST:
            return await self._cars_page(identity, fields)

        if state is AdminState.RENTALS_LIST:
            return await self._rentals_page(identity, fields)

        if state is AdminState.CAR_ACTIONS:
            car = await self.db(identity, self.repository.get_car, fields["car_id"])
            if failed(car):
                return False
            if car is None:
                await self.messenger.send_text(identity, f"Car #{fields['car_id']} not found.")
                return False
            car_id = car.id
            await self.send_with_back(
                identity,
                f"Car #{car_id}: {car.title}\n"
                f"Branch: {car.branch_address}\n"
                f"Status: {car.status_name or car.status_id}",
                {
                    "Delete": make_token(self.namespace, "del", car_id),
                    "Move to branch": make_token(self.namespace, "move", car_id),
                    "Change status": make_token(self.namespace, "status", car_id),
                },
            )
            return True

        if state is AdminState.SELECT_MOVE_BRANCH:
            branches = await self.db(identity, self.repository.list_all_branches)
            if failed(branches):
                return False
            car_id = fields["car_id"]
            await self.send_with_back(identity, f"Move car #{car_id} to branch:", {
                b.address: make_token(self.namespace, "moveto", car_id, b.id) for b in branches
            })
            return True

        if state is AdminState.SELECT_STATUS:
            statuses = await self.db(identity, self.repository.list_car_statuses)
            if failed(statuses):
                return False
            car_id = fields["car_id"]
            await self.send_with_back(identity, f"New status for car #{car_id}:", {
                s.status_name: make_token(self.namespace, "setst", car_id, s.id) for s in statuses
            })
            return True

        return False

    def _pager(self, action: str, page: int, pages: int) -> Dict[str, str]:
        buttons = {}
        if page > 0:
            buttons["« Prev"] = make_token(self.namespace, action, page - 1)
        if page < pages - 1:
            buttons["Next »"] = make_token(self.namespace, action, page + 1)
        buttons["Admin menu"] = make_token(self.namespace, "menu")
        return buttons

    async def _cars_page(self, identity: int, fields: Dict[str, Any]) -> bool:
        total = await self.db(identity, self.repository.count_cars)
        if failed(total):
            return False
        pages = page_count(total, self.page_size)
        page = min(max(fields.get("page", 0), 0), pages - 1)
        cars = await self.db(identity, self.repository.list_cars_page, page * self.page_size, self.page_size)
        if failed(cars):
            return False

        fields["page"] = page
        if not cars:
            await self.send_with_back(identity, "No cars registered.", self._pager("cars", page, pages))
            return True

        lines = [f"Cars (page {page + 1}/{pages}):"]
        lines += [f"#{c.id} {c.title} | {c.status_name or c.status_id} | {c.branch_address}" for c in cars]
        buttons = {f"#{c.id} {c.name}": make_token(self.namespace, "car", c.id) for c in cars}
        buttons.update(self._pager("cars", page, pages))
        await self.send_with_back(identity, "\n".join(lines), buttons)
        return True

    async def _rentals_page(self, identity: int, fields: Dict[str, Any]) -> bool:
        total = await self.db(identity, self.repository.count_rentals)
        if failed(total):
            return False
        pages = page_count(total, self.page_size)
        page = min(max(fields.get("page", 0), 0), pages - 1)
        rentals = await self.db(identity, self.repository.list_rentals_page, page * self.page_size, self.page_size)
        if failed(rentals):
            return False

        fields["page"] = page
        if not rentals:
            text = "No rentals yet."
        else:
            text = "\n\n".join([f"Rentals (page {page + 1}/{pages}):"] + [r.describe() for r in rentals])
        await self.send_with_back(identity, text, self._pager("rentals", page, pages))
        return True

    # ------------------------------------------------------------------
    # input
    # ------------------------------------------------------------------

    async def handle_text(self, identity: int, text: str) -> None:
        session = self.session(identity)
        if session is None:
            return
        value = (text or "").strip()

        if session.state is AdminState.AWAIT_ADMIN_PASSWORD:
            await self._check_password(identity, session, value)
        elif session.state is AdminState.CARS_LIST and parse_id(value) is not None:
            await self.jump(identity, session, AdminState.CAR_ACTIONS,
                            page=session.fields.get("page", 0), car_id=parse_id(value))
        elif isinstance(session.state, AdminState):
            await self.send_with_back(identity, "Please use the buttons of the admin panel.")
        else:
            await self.unknown_state(identity, session)

    async def _check_password(self, identity: int, session: Session, value: str) -> None:
        if not self.admin_password:
            logger.warning("⚠️ ADMIN_PASSWORD is not configured, admin promotion disabled")
            self.sessions.end(identity, self.flow)
            await self.messenger.send_text(identity, "Admin access is not configured.")
            return
        if not hmac.compare_digest(value.encode(), self.admin_password.encode()):
            logger.warning(f"⚠️ {identity}: wrong admin password")
            await self.send_with_back(identity, "Incorrect admin password. Try again:")
            return

        login = self.auth.login_for(identity)
        updated = await self.db(identity, self.repository.set_admin_status, login, True)
        if failed(updated):
            return
        logger.info(f"✅ {login} promoted to admin")
        await self.messenger.send_text(identity, "Admin rights granted.")
        await self.jump(identity, session, AdminState.ADMIN_MENU)

    async def handle_callback(self, identity: int, callback: Callback) -> None:
        if callback.action == "back":
            await self.go_back(identity)
            return

        session = self.session(identity)
        if session is None:
            await self.messenger.send_text(identity, "Admin session expired. Use /admin to open the panel again.")
            return
        if session.state is AdminState.AWAIT_ADMIN_PASSWORD:
            await self.send_with_back(identity, "Enter the admin password first:")
            return

        action = callback.action
        first = callback.arg(0)
        page = session.fields.get("page", 0)

        if action == "menu":
            await self.jump(identity, session, AdminState.ADMIN_MENU)
        elif action == "cars" and first is not None:
            await self.jump(identity, session, AdminState.CARS_LIST, page=first)
        elif action == "rentals" and first is not None:
            await self.jump(identity, session, AdminState.RENTALS_LIST, page=first)
        elif action == "car" and first is not None:
            await self.jump(identity, session, AdminState.CAR_ACTIONS, page=page, car_id=first)
        elif action == "move" and first is not None:
            await self.jump(identity, session, AdminState.SELECT_MOVE_BRANCH, page=page, car_id=first)
        elif action == "status" and first is not None:
            await self.jump(identity, session, AdminState.SELECT_STATUS, page=page, car_id=first)
        elif action == "del" and first is not None:
            await self._delete_car(identity, session, first)
        elif action == "moveto" and len(callback.args) == 2:
            await self._move_car(identity, session, *callback.args)
        elif action == "setst" and len(callback.args) == 2:
            await self._set_status(identity, session, *callback.args)
        else:
            logger.debug(f"Unknown admin callback {action!r} from {identity}")
            await self.messenger.send_text(identity, "Unknown admin action.")

    async def _delete_car(self, identity: int, session: Session, car_id: int) -> None:
        deleted = await self.db(identity, self.repository.delete_car, car_id)
        if failed(deleted):
            return
        if not deleted:
            await self.messenger.send_text(
                identity, f"Car #{car_id} cannot be deleted: it has rentals or no longer exists."
            )
            return
        logger.info(f"🗑️ {identity} deleted car {car_id}")
        await self.messenger.send_text(identity, f"✅ Car #{car_id} deleted.")
        await self.jump(identity, session, AdminState.CARS_LIST, page=session.fields.get("page", 0))

    async def _move_car(self, identity: int, session: Session, car_id: int, branch_id: int) -> None:
        branch = await self.db(identity, self.repository.get_branch, branch_id)
        if failed(branch):
            return
        if branch is None:
            await self.messenger.send_text(identity, f"Branch #{branch_id} not found.")
            return
        moved = await self.db(identity, self.repository.move_car, car_id, branch_id)
        if failed(moved):
            return
        if not moved:
            await self.messenger.send_text(identity, f"Car #{car_id} not found.")
            return
        logger.info(f"🚚 {identity} moved car {car_id} to branch {branch_id}")
        await self.messenger.send_text(identity, f"✅ Car #{car_id} moved to {branch.address}.")
        await self.jump(identity, session, AdminState.CAR_ACTIONS,
                            page=session.fields.get("page", 0), car_id=car_id)

    async def _set_status(self, identity: int, session: Session, car_id: int, status_id: int) -> None:
        statuses = await self.db(identity, self.repository.list_car_statuses)
        if failed(statuses):
            return
        names = {s.id: s.status_name for s in statuses}
        if status_id not in names:
            await self.messenger.send_text(identity, f"Unknown status #{status_id}.")
            return
        updated = await self.db(identity, self.repository.update_car_status, car_id, status_id)
        if failed(updated):
            return
        if not updated:
            await self.messenger.send_text(identity, f"Car #{car_id} not found.")
            return
        logger.info(f"🔧 {identity} set car {car_id} status to {status_id}")
        await self.messenger.send_text(identity, f"✅ Car #{car_id} status set to {names[status_id]}.")
        await self.jump(identity, session, AdminState.CAR_ACTIONS,
                            page=session.fields.get("page", 0), car_id=car_id)
