"""
Active Rents Handler - брони пользователя.

Lists the identity's own rentals; a selected rental (button or typed id) can
be cancelled, moved to a new start date, or given a new return branch/date.
"""

import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..callbacks import Callback, Namespace, make_token
from ..exceptions import InvalidFormatError
from ..input_validators import parse_date, parse_id
from ..schemas import DATE_FORMAT, RentalSchema
from ..session_store import Flow, Session
from .base_handler import FlowHandler, failed
from .menu_handler import MenuHandler

logger = logging.getLogger("active_rents_handler")


class ActiveRentsState(Enum):
    SELECT_RENTAL = "select_rental"
    RENTAL_ACTIONS = "rental_actions"
    AWAIT_NEW_START_DATE = "await_new_start_date"
    SELECT_NEW_RETURN_BRANCH = "select_new_return_branch"
    AWAIT_NEW_END_DATE = "await_new_end_date"


# callback actions accepted per state
_ACTIONS = {
    ActiveRentsState.SELECT_RENTAL: {"sel"},
    ActiveRentsState.RENTAL_ACTIONS: {"cancel", "start", "return"},
    ActiveRentsState.SELECT_NEW_RETURN_BRANCH: {"ret"},
}


class ActiveRentsHandler(FlowHandler):
    """Own rentals: view, cancel, reschedule."""

    flow = Flow.ACTIVE_RENTS
    namespace = Namespace.ACTIVE_RENTS
    previous = {
        ActiveRentsState.RENTAL_ACTIONS: ActiveRentsState.SELECT_RENTAL,
        ActiveRentsState.AWAIT_NEW_START_DATE: ActiveRentsState.RENTAL_ACTIONS,
        ActiveRentsState.SELECT_NEW_RETURN_BRANCH: ActiveRentsState.RENTAL_ACTIONS,
        ActiveRentsState.AWAIT_NEW_END_DATE: ActiveRentsState.SELECT_NEW_RETURN_BRANCH,
    }
    collects = {
        ActiveRentsState.RENTAL_ACTIONS: ("rental_id",),
        ActiveRentsState.SELECT_NEW_RETURN_BRANCH: ("end_branch_id",),
    }
    cancel_text = "Closed active rents. Use /rents or the menu to open them again."

    def __init__(self, *args, menu: MenuHandler, today: Callable[[], date] = date.today, **kwargs):
        super().__init__(*args, **kwargs)
        self.menu = menu
        self.today = today

    async def start(self, identity: int) -> None:
        """Handle /rents and the "Active rents" button."""
        session = self.sessions.start(identity, Flow.ACTIVE_RENTS, ActiveRentsState.SELECT_RENTAL)
        if not await self.prompt(identity, ActiveRentsState.SELECT_RENTAL, session.fields):
            self.sessions.end(identity, self.flow)

    async def _rental(self, identity: int, rental_id: int) -> Any:
        """Fetch a rental; None (after telling the user) when it is gone"""
        rental = await self.db(identity, self.repository.get_rental, rental_id)
        if rental is None:
            await self.messenger.send_text(identity, f"Rental #{rental_id} no longer exists.")
        return rental

    # ------------------------------------------------------------------
    # prompts
    # ------------------------------------------------------------------

    async def prompt(self, identity: int, state: Enum, fields: Dict[str, Any]) -> bool:
        if state is ActiveRentsState.SELECT_RENTAL:
            rentals = await self.db(identity, self.repository.list_rentals_by_login, self.auth.login_for(identity))
            if failed(rentals):
                return False
            if not rentals:
                await self.messenger.send_text(identity, "You have no active rents.")
                return False
            text = "\n\n".join(["Your rents (choose one or type its id):"] + [r.describe() for r in rentals])
            await self.send_with_back(identity, text, {
                f"#{r.rental_id} {r.car_name}": make_token(self.namespace, "sel", r.rental_id) for r in rentals
            })
            return True

        if state is ActiveRentsState.RENTAL_ACTIONS:
            rental = await self._rental(identity, fields["rental_id"])
            if failed(rental) or rental is None:
                return False
            await self.send_with_back(identity, self._describe(rental), {
                "Cancel rent": make_token(self.namespace, "cancel"),
                "Change start date": make_token(self.namespace, "start"),
                "Change return branch and date": make_token(self.namespace, "return"),
            })
            return True

        if state is ActiveRentsState.AWAIT_NEW_START_DATE:
            rental = await self._rental(identity, fields["rental_id"])
            if failed(rental) or rental is None:
                return False
            await self.send_with_back(
                identity,
                f"Enter new pick-up date (DD.MM.YYYY), from today up to {rental.end_date.strftime(DATE_FORMAT)}:",
            )
            return True

        if state is ActiveRentsState.SELECT_NEW_RETURN_BRANCH:
            branches = await self.db(identity, self.repository.list_all_branches)
            if failed(branches):
                return False
            await self.send_with_back(identity, "Choose a new return branch:", {
                b.address: make_token(self.namespace, "ret", b.id) for b in branches
            })
            return True

        if state is ActiveRentsState.AWAIT_NEW_END_DATE:
            rental = await self._rental(identity, fields["rental_id"])
            if failed(rental) or rental is None:
                return False
            await self.send_with_back(
                identity,
                f"Enter new return date (DD.MM.YYYY), not earlier than {rental.start_date.strftime(DATE_FORMAT)}:",
            )
            return True

        return False

    @staticmethod
    def _describe(rental: RentalSchema) -> str:
        return (
            f"Rental #{rental.rental_id}: {rental.car_name}\n"
            f"{rental.start_date.strftime(DATE_FORMAT)} - {rental.end_date.strftime(DATE_FORMAT)}\n"
            f"from: {rental.start_branch_addr}\n"
            f"to: {rental.end_branch_addr}\n"
            f"Choose an action:"
        )

    # ------------------------------------------------------------------
    # input
    # ------------------------------------------------------------------

    async def handle_text(self, identity: int, text: str) -> None:
        session = self.session(identity)
        if session is None:
            return
        value = (text or "").strip()
        state = session.state

        if state is ActiveRentsState.SELECT_RENTAL:
            rental_id = parse_id(value)
            if rental_id is None:
                await self.send_with_back(identity, "Please choose a rental with the buttons or type its id.")
                return
            await self._select(identity, session, rental_id)
        elif state is ActiveRentsState.SELECT_NEW_RETURN_BRANCH:
            branch_id = parse_id(value)
            if branch_id is None:
                await self.send_with_back(identity, "Please choose a branch with the buttons or type its id.")
                return
            await self._return_branch(identity, session, branch_id)
        elif state is ActiveRentsState.AWAIT_NEW_START_DATE:
            await self._new_start_date(identity, session, value)
        elif state is ActiveRentsState.AWAIT_NEW_END_DATE:
            await self._new_end_date(identity, session, value)
        elif state is ActiveRentsState.RENTAL_ACTIONS:
            await self.send_with_back(identity, "Please choose an action with the buttons.")
        else:
            await self.unknown_state(identity, session)

    async def handle_callback(self, identity: int, callback: Callback) -> None:
        if callback.action == "back":
            await self.go_back(identity)
            return

        session = self.session(identity)
        if session is None:
            await self.messenger.send_text(identity, "This list has expired. Use /rents to open it again.")
            return
        if callback.action not in _ACTIONS.get(session.state, ()):
            await self.messenger.send_text(identity, "Please use the buttons of the latest message.")
            return

        action = callback.action
        if action == "sel" and callback.arg() is not None:
            await self._select(identity, session, callback.arg())
        elif action == "ret" and callback.arg() is not None:
            await self._return_branch(identity, session, callback.arg())
        elif action == "cancel":
            await self._cancel_rental(identity, session)
        elif action == "start":
            await self.advance(identity, session, ActiveRentsState.AWAIT_NEW_START_DATE)
        elif action == "return":
            await self.advance(identity, session, ActiveRentsState.SELECT_NEW_RETURN_BRANCH)

    async def _select(self, identity: int, session: Session, rental_id: int) -> None:
        rentals = await self.db(identity, self.repository.list_rentals_by_login, self.auth.login_for(identity))
        if failed(rentals):
            return
        if rental_id not in {r.rental_id for r in rentals}:
            logger.warning(f"⚠️ {identity} tried to open rental {rental_id} which is not theirs")
            await self.send_with_back(identity, f"You have no rental #{rental_id}. Choose one of yours:")
            return
        await self.advance(identity, session, ActiveRentsState.RENTAL_ACTIONS, rental_id=rental_id)

    async def _cancel_rental(self, identity: int, session: Session) -> None:
        rental_id = session.fields["rental_id"]
        deleted = await self.db(identity, self.repository.delete_rental, rental_id)
        if failed(deleted):
            return
        self.sessions.end(identity, self.flow)
        if not deleted:
            await self.messenger.send_text(identity, f"Rental #{rental_id} could not be cancelled. It may be gone already.")
        else:
            logger.info(f"✅ {identity} cancelled rental {rental_id}")
            await self.messenger.send_text(identity, f"✅ Rental #{rental_id} cancelled.")
        await self.menu.show_menu(identity)

    async def _read_date(self, identity: int, value: str) -> Optional[date]:
        try:
            return parse_date(value)
        except InvalidFormatError:
            await self.send_with_back(identity, "Invalid date format. Please use DD.MM.YYYY:")
            return None

    async def _new_start_date(self, identity: int, session: Session, value: str) -> None:
        new_start = await self._read_date(identity, value)
        if new_start is None:
            return
        if new_start < self.today():
            await self.send_with_back(identity, "Pick-up date cannot be in the past. Enter new pick-up date:")
            return

        rental_id = session.fields["rental_id"]
        rental = await self._rental(identity, rental_id)
        if failed(rental):
            return
        if rental is None:
            self.sessions.end(identity, self.flow)
            return
        if new_start > rental.end_date:
            await self.send_with_back(
                identity,
                f"Pick-up date cannot be after the return date {rental.end_date.strftime(DATE_FORMAT)}. "
                f"Enter new pick-up date:",
            )
            return

        updated = await self.db(identity, self.repository.update_rental_start_date, rental_id, new_start)
        if failed(updated):
            return
        logger.info(f"✅ {identity} moved rental {rental_id} start to {new_start}")
        await self.messenger.send_text(identity, f"✅ Pick-up date changed to {new_start.strftime(DATE_FORMAT)}.")
        await self.jump(identity, session, ActiveRentsState.RENTAL_ACTIONS, rental_id=rental_id)

    async def _return_branch(self, identity: int, session: Session, branch_id: int) -> None:
        branch = await self.db(identity, self.repository.get_branch, branch_id)
        if failed(branch):
            return
        if branch is None:
            await self.send_with_back(identity, "Unknown branch. Choose a new return branch:")
            return
        await self.advance(identity, session, ActiveRentsState.AWAIT_NEW_END_DATE, end_branch_id=branch.id)

    async def _new_end_date(self, identity: int, session: Session, value: str) -> None:
        new_end = await self._read_date(identity, value)
        if new_end is None:
            return

        rental_id = session.fields["rental_id"]
        rental = await self._rental(identity, rental_id)
        if failed(rental):
            return
        if rental is None:
            self.sessions.end(identity, self.flow)
            return
        if new_end < rental.start_date:
            await self.send_with_back(
                identity,
                f"Return date must not be earlier than {rental.start_date.strftime(DATE_FORMAT)}. "
                f"Enter new return date:",
            )
            return

        updated = await self.db(
            identity, self.repository.update_rental_return_branch_and_date,
            rental_id, session.fields["end_branch_id"], new_end,
        )
        if failed(updated):
            return
        logger.info(f"✅ {identity} changed return of rental {rental_id}")
        await self.messenger.send_text(identity, f"✅ Return changed, new return date {new_end.strftime(DATE_FORMAT)}.")
        await self.jump(identity, session, ActiveRentsState.RENTAL_ACTIONS, rental_id=rental_id)
