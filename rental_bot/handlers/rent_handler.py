"""
Rent Handler - оформление аренды.

SELECT_BRANCH → SELECT_CAR → AWAIT_START_DATE → SELECT_RETURN_BRANCH →
AWAIT_END_DATE. Choices come as rent_* buttons or typed ids; the booking
itself is one create_rental transaction.
"""

import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..callbacks import Callback, Namespace, make_token
from ..db_service import STATUS_AVAILABLE
from ..exceptions import InvalidFormatError
from ..input_validators import parse_date, parse_id
from ..schemas import DATE_FORMAT
from ..session_store import Flow
from .base_handler import FlowHandler, failed
from .menu_handler import MenuHandler

logger = logging.getLogger("rent_handler")


class RentState(Enum):
    SELECT_BRANCH = "select_branch"
    SELECT_CAR = "select_car"
    AWAIT_START_DATE = "await_start_date"
    SELECT_RETURN_BRANCH = "select_return_branch"
    AWAIT_END_DATE = "await_end_date"


# callback action accepted in each selection state
_SELECTION_ACTIONS = {
    RentState.SELECT_BRANCH: "branch",
    RentState.SELECT_CAR: "car",
    RentState.SELECT_RETURN_BRANCH: "ret",
}


class RentHandler(FlowHandler):
    """Car booking state machine."""

    flow = Flow.RENT
    namespace = Namespace.RENT
    previous = {
        RentState.SELECT_CAR: RentState.SELECT_BRANCH,
        RentState.AWAIT_START_DATE: RentState.SELECT_CAR,
        RentState.SELECT_RETURN_BRANCH: RentState.AWAIT_START_DATE,
        RentState.AWAIT_END_DATE: RentState.SELECT_RETURN_BRANCH,
    }
    collects = {
        RentState.SELECT_BRANCH: ("branch_id",),
        RentState.SELECT_CAR: ("car_id", "car_name"),
        RentState.AWAIT_START_DATE: ("start_date",),
        RentState.SELECT_RETURN_BRANCH: ("end_branch_id",),
        RentState.AWAIT_END_DATE: ("end_date",),
    }
    cancel_text = "Rent cancelled. Use /rent or the menu to start again."

    def __init__(self, *args, menu: MenuHandler, today: Callable[[], date] = date.today, **kwargs):
        super().__init__(*args, **kwargs)
        self.menu = menu
        self.today = today

    async def start(self, identity: int) -> None:
        """Handle /rent and the "Rent car" button."""
        session = self.sessions.start(identity, Flow.RENT, RentState.SELECT_BRANCH)
        if not await self.prompt(identity, RentState.SELECT_BRANCH, session.fields):
            self.sessions.end(identity, self.flow)
            return
        logger.info(f"✅ {identity} started rent flow")

    # ------------------------------------------------------------------
    # prompts
    # ------------------------------------------------------------------

    async def prompt(self, identity: int, state: Enum, fields: Dict[str, Any]) -> bool:
        if state is RentState.SELECT_BRANCH:
            branches = await self.db(identity, self.repository.list_branches_with_available_cars)
            if failed(branches):
                return False
            if not branches:
                await self.messenger.send_text(identity, "No cars are available right now. Please try again later.")
                return False
            await self.send_with_back(identity, "Choose a pick-up branch:", {
                f"{b.address}": make_token(self.namespace, "branch", b.id) for b in branches
            })
            return True

        if state is RentState.SELECT_CAR:
            cars = await self.db(identity, self.repository.list_available_cars_in_branch, fields["branch_id"])
            if failed(cars):
                return False
            if not cars:
                await self.send_with_back(identity, "No available cars in this branch. Choose another branch:")
                return False
            await self.send_with_back(identity, "Choose a car:", {
                f"#{c.id} {c.title}": make_token(self.namespace, "car", c.id) for c in cars
            })
            return True

        if state is RentState.AWAIT_START_DATE:
            await self.send_with_back(identity, "Enter pick-up date (DD.MM.YYYY):")
            return True

        if state is RentState.SELECT_RETURN_BRANCH:
            branches = await self.db(identity, self.repository.list_all_branches)
            if failed(branches):
                return False
            await self.send_with_back(identity, "Choose a return branch:", {
                f"{b.address}": make_token(self.namespace, "ret", b.id) for b in branches
            })
            return True

        if state is RentState.AWAIT_END_DATE:
            start = fields["start_date"].strftime(DATE_FORMAT)
            await self.send_with_back(identity, f"Enter return date (DD.MM.YYYY), not earlier than {start}:")
            return True

        return False

    # ------------------------------------------------------------------
    # input
    # ------------------------------------------------------------------

    async def handle_text(self, identity: int, text: str) -> None:
        session = self.session(identity)
        if session is None:
            return
        value = (text or "").strip()

        if session.state in _SELECTION_ACTIONS:
            selected = parse_id(value)
            if selected is None:
                await self.send_with_back(identity, "Please choose with the buttons or type the id.")
                return
            await self._select(identity, session, selected)
        elif session.state is RentState.AWAIT_START_DATE:
            await self._start_date(identity, session, value)
        elif session.state is RentState.AWAIT_END_DATE:
            await self._end_date(identity, session, value)
        else:
            await self.unknown_state(identity, session)

    async def handle_callback(self, identity: int, callback: Callback) -> None:
        if callback.action == "back":
            await self.go_back(identity)
            return

        session = self.session(identity)
        if session is None:
            await self.messenger.send_text(identity, "This booking has expired. Use /rent to start again.")
            return
        selected = callback.arg()
        if _SELECTION_ACTIONS.get(session.state) != callback.action or selected is None:
            await self.messenger.send_text(identity, "Please use the buttons of the latest message.")
            return
        await self._select(identity, session, selected)

    async def _select(self, identity: int, session, selected: int) -> None:
        if session.state is RentState.SELECT_BRANCH:
            await self.advance(identity, session, RentState.SELECT_CAR, branch_id=selected)

        elif session.state is RentState.SELECT_CAR:
            car = await self.db(identity, self.repository.get_car, selected)
            if failed(car):
                return
            if car is None or car.status_id != STATUS_AVAILABLE or car.branch_id != session.fields["branch_id"]:
                await self.send_with_back(identity, "This car is not available. Choose another car:")
                return
            await self.advance(identity, session, RentState.AWAIT_START_DATE, car_id=car.id, car_name=car.title)

        elif session.state is RentState.SELECT_RETURN_BRANCH:
            branch = await self.db(identity, self.repository.get_branch, selected)
            if failed(branch):
                return
            if branch is None:
                await self.send_with_back(identity, "Unknown branch. Choose a return branch:")
                return
            await self.advance(identity, session, RentState.AWAIT_END_DATE, end_branch_id=branch.id)

    async def _start_date(self, identity: int, session, value: str) -> None:
        start = await self._read_date(identity, value)
        if start is None:
            return
        if start < self.today():
            await self.send_with_back(identity, "Pick-up date cannot be in the past. Enter pick-up date (DD.MM.YYYY):")
            return
        await self.advance(identity, session, RentState.SELECT_RETURN_BRANCH, start_date=start)

    async def _end_date(self, identity: int, session, value: str) -> None:
        end = await self._read_date(identity, value)
        if end is None:
            return
        start = session.fields["start_date"]
        if end < start:
            await self.send_with_back(
                identity,
                f"Return date must not be earlier than {start.strftime(DATE_FORMAT)}. Enter return date (DD.MM.YYYY):",
            )
            return
        await self._book(identity, session, end)

    async def _read_date(self, identity: int, value: str) -> Optional[date]:
        try:
            return parse_date(value)
        except InvalidFormatError:
            await self.send_with_back(identity, "Invalid date format. Please use DD.MM.YYYY:")
            return None

    async def _book(self, identity: int, session, end: date) -> None:
        login = self.auth.login_for(identity)
        if login is None:
            self.sessions.end(identity, self.flow)
            await self.messenger.send_text(identity, "Please /start to login before renting a car.")
            return

        user_id = await self.db(identity, self.repository.get_user_id, login)
        if failed(user_id):
            return
        if user_id is None:
            self.sessions.end(identity, self.flow)
            await self.messenger.send_text(identity, "Your account was not found. Please /start again.")
            return

        fields = session.fields
        created = await self.db(
            identity, self.repository.create_rental,
            fields["car_id"], user_id, fields["branch_id"], fields["end_branch_id"], fields["start_date"], end,
        )
        if failed(created):
            return

        if not created:
            logger.warning(f"⚠️ {identity}: car {fields['car_id']} was taken before booking completed")
            await self.messenger.send_text(identity, "Sorry, this car has just been booked by someone else.")
            await self._restart_from_car(identity, session)
            return

        self.sessions.end(identity, self.flow)
        await self.messenger.send_text(
            identity,
            f"✅ Booking confirmed: {fields['car_name']}, "
            f"{fields['start_date'].strftime(DATE_FORMAT)} - {end.strftime(DATE_FORMAT)}.",
        )
        await self.menu.show_menu(identity)
        logger.info(f"✅ {identity} booked car {fields['car_id']}")

    async def _restart_from_car(self, identity: int, session) -> None:
        keep = {"branch_id": session.fields["branch_id"]}
        if await self.prompt(identity, RentState.SELECT_CAR, keep):
            session.fields = keep
            session.state = RentState.SELECT_CAR
        elif await self.prompt(identity, RentState.SELECT_BRANCH, {}):
            session.fields = {}
            session.state = RentState.SELECT_BRANCH
        else:
            self.sessions.end(identity, self.flow)
