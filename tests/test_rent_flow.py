"""
🧪 Rent flow: филиал → машина → даты → бронь
"""

from datetime import date
from unittest.mock import patch

import pytest

from rental_bot.exceptions import ErrorKind, StoreError
from rental_bot.handlers import RentState
from rental_bot.handlers.menu_handler import MENU_BUTTONS
from rental_bot.retry_policy import FAILURE_NOTICE
from rental_bot.session_store import Flow
from conftest import ALICE, scalar


async def say(dispatcher, identity, *texts):
    for text in texts:
        await dispatcher.dispatch_text(identity, text)


async def press(dispatcher, identity, *tokens):
    for n, token in enumerate(tokens):
        await dispatcher.dispatch_callback(identity, f"cb{n}", token)


class TestRentEndToEnd:
    """Полный сценарий бронирования"""

    @pytest.mark.asyncio
    async def test_book_car(self, dispatcher, messenger, repository, sessions, bob):
        await say(dispatcher, bob, "Rent car")
        buttons = messenger.last_buttons(bob)
        assert buttons == {
            "Moscow, Tverskaya, 1": "rent_branch:1",
            "Moscow, Arbat, 10": "rent_branch:2",
            "Back": "rent_back",
        }

        await press(dispatcher, bob, "rent_branch:1")
        assert "rent_car:1" in messenger.last_buttons(bob).values()

        await press(dispatcher, bob, "rent_car:1")
        assert sessions.get(bob).state is RentState.AWAIT_START_DATE

        await say(dispatcher, bob, "01.01.2030")
        assert "rent_ret:3" in messenger.last_buttons(bob).values()

        await press(dispatcher, bob, "rent_ret:2")
        assert "not earlier than 01.01.2030" in messenger.last(bob).text

        await say(dispatcher, bob, "05.01.2030")

        assert sessions.get(bob) is None
        assert "✅ Booking confirmed: Toyota Camry (2020), sedan, 01.01.2030 - 05.01.2030." in messenger.texts(bob)
        assert messenger.last(bob).labels == MENU_BUTTONS
        assert [c.id for c in repository.list_available_cars_in_branch(1)] == [2]

        rentals = repository.list_rentals_by_login("bob")
        assert len(rentals) == 1
        assert (rentals[0].start_date, rentals[0].end_date) == (date(2030, 1, 1), date(2030, 1, 5))
        assert rentals[0].end_branch_addr == "Moscow, Arbat, 10"

    @pytest.mark.asyncio
    async def test_typed_ids(self, dispatcher, sessions, bob):
        await say(dispatcher, bob, "/rent", "2", "#3", "02.02.2030", "1")
        session = sessions.get(bob, Flow.RENT)
        assert session.state is RentState.AWAIT_END_DATE
        assert session.fields["branch_id"] == 2
        assert session.fields["car_id"] == 3
        assert session.fields["end_branch_id"] == 1


class TestRentValidation:
    """Ошибки ввода не продвигают состояние"""

    @pytest.mark.asyncio
    async def test_requires_login(self, dispatcher, messenger, sessions):
        await say(dispatcher, ALICE, "Rent car")
        assert messenger.last(ALICE).text == (
            "Only registered/logged-in users can rent cars. Please /start to login or register."
        )
        assert sessions.get(ALICE) is None

    @pytest.mark.asyncio
    async def test_start_date_in_past(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "01.01.2020")
        assert messenger.last(bob).text.startswith("Pick-up date cannot be in the past")
        assert sessions.get(bob).state is RentState.AWAIT_START_DATE

    @pytest.mark.asyncio
    async def test_bad_date_format(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "2030-01-01")
        assert messenger.last(bob).text == "Invalid date format. Please use DD.MM.YYYY:"
        assert sessions.get(bob).state is RentState.AWAIT_START_DATE

    @pytest.mark.asyncio
    async def test_end_before_start(self, dispatcher, messenger, sessions, store, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "10.01.2030", "2", "09.01.2030")
        assert messenger.last(bob).text.startswith("Return date must not be earlier than 10.01.2030")
        assert sessions.get(bob).state is RentState.AWAIT_END_DATE
        assert scalar(store, "SELECT COUNT(*) AS n FROM Rentals") == 0

    @pytest.mark.asyncio
    async def test_same_day_rental_allowed(self, dispatcher, sessions, repository, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "10.01.2030", "2", "10.01.2030")
        assert sessions.get(bob) is None
        assert len(repository.list_rentals_by_login("bob")) == 1

    @pytest.mark.asyncio
    async def test_car_from_other_branch_rejected(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent")
        await press(dispatcher, bob, "rent_branch:1", "rent_car:3")
        assert messenger.last(bob).text == "This car is not available. Choose another car:"
        assert sessions.get(bob).state is RentState.SELECT_CAR

    @pytest.mark.asyncio
    async def test_stale_button_ignored(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent")
        await press(dispatcher, bob, "rent_ret:2")
        assert messenger.last(bob).text == "Please use the buttons of the latest message."
        assert sessions.get(bob).state is RentState.SELECT_BRANCH

    @pytest.mark.asyncio
    async def test_unknown_return_branch(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "01.01.2030", "99")
        assert messenger.last(bob).text == "Unknown branch. Choose a return branch:"
        assert sessions.get(bob).state is RentState.SELECT_RETURN_BRANCH

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["99999999999999999999999", "²"])
    async def test_unusable_typed_id_reprompts(self, dispatcher, messenger, sessions, bob, value):
        await say(dispatcher, bob, "/rent", value)
        assert messenger.last(bob).text == "Please choose with the buttons or type the id."
        assert sessions.get(bob).state is RentState.SELECT_BRANCH

    @pytest.mark.asyncio
    async def test_unusual_release_year_still_listed(self, dispatcher, messenger, sessions, store, bob):
        store.execute("UPDATE Cars SET release_year = 1885 WHERE id = 1")
        await say(dispatcher, bob, "/rent", "1")
        assert messenger.last_buttons(bob)["#1 Toyota Camry (1885), sedan"] == "rent_car:1"
        assert sessions.get(bob).state is RentState.SELECT_CAR

    @pytest.mark.asyncio
    async def test_no_cars_anywhere(self, dispatcher, messenger, sessions, store, bob):
        store.execute("UPDATE Cars SET status_id = 4")
        await say(dispatcher, bob, "/rent")
        assert messenger.last(bob).text == "No cars are available right now. Please try again later."
        assert sessions.get(bob) is None


class TestRentConflicts:
    """Машину заняли, пока пользователь вводил даты"""

    @pytest.mark.asyncio
    async def test_car_taken_returns_to_car_list(self, dispatcher, messenger, sessions, repository, store, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "01.01.2030", "2")
        repository.update_car_status(1, 2)

        await say(dispatcher, bob, "05.01.2030")

        assert "Sorry, this car has just been booked by someone else." in messenger.texts(bob)
        session = sessions.get(bob, Flow.RENT)
        assert session.state is RentState.SELECT_CAR
        assert session.fields == {"branch_id": 1}
        assert list(messenger.last_buttons(bob).values()) == ["rent_car:2", "rent_back"]
        assert scalar(store, "SELECT COUNT(*) AS n FROM Rentals") == 0

    @pytest.mark.asyncio
    async def test_last_car_taken_returns_to_branches(self, dispatcher, sessions, repository, bob):
        await say(dispatcher, bob, "/rent", "2", "3", "01.01.2030", "2")
        repository.update_car_status(3, 2)

        await say(dispatcher, bob, "05.01.2030")

        session = sessions.get(bob, Flow.RENT)
        assert session.state is RentState.SELECT_BRANCH
        assert session.fields == {}

    @pytest.mark.asyncio
    async def test_store_failure_on_booking_keeps_state(self, dispatcher, messenger, sessions, repository, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "01.01.2030", "2")
        before = dict(sessions.get(bob).fields)

        with patch.object(repository, "create_rental",
                          side_effect=StoreError("database is locked", kind=ErrorKind.TRANSIENT)):
            await say(dispatcher, bob, "05.01.2030")

        assert messenger.last(bob).text == FAILURE_NOTICE
        session = sessions.get(bob)
        assert session.state is RentState.AWAIT_END_DATE
        assert session.fields == before


class TestRentBack:
    """Back"""

    @pytest.mark.asyncio
    async def test_back_from_first_state_cancels(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent")
        await press(dispatcher, bob, "rent_back")
        assert sessions.get(bob) is None
        assert messenger.last(bob).text == "Rent cancelled. Use /rent or the menu to start again."

    @pytest.mark.asyncio
    async def test_back_drops_later_fields(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "/rent", "1", "1", "01.01.2030", "2")
        assert sessions.get(bob).state is RentState.AWAIT_END_DATE

        await press(dispatcher, bob, "rent_back")
        session = sessions.get(bob)
        assert session.state is RentState.SELECT_RETURN_BRANCH

        await press(dispatcher, bob, "rent_back")
        session = sessions.get(bob)
        assert session.state is RentState.AWAIT_START_DATE
        assert "end_branch_id" not in session.fields
        assert session.fields["car_id"] == 1
        assert messenger.last(bob).text == "Enter pick-up date (DD.MM.YYYY):"
