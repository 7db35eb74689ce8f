"""
🧪 Active rents flow: просмотр, отмена, перенос дат
"""

from datetime import date

import pytest

from rental_bot.db_service import STATUS_AVAILABLE
from rental_bot.handlers import ActiveRentsState
from conftest import scalar


async def say(dispatcher, identity, *texts):
    for text in texts:
        await dispatcher.dispatch_text(identity, text)


async def press(dispatcher, identity, *tokens):
    for n, token in enumerate(tokens):
        await dispatcher.dispatch_callback(identity, f"cb{n}", token)


@pytest.fixture
def rental_id(repository, store, bob):
    repository.create_rental(1, repository.get_user_id("bob"), 1, 2, date(2030, 1, 1), date(2030, 1, 5))
    return scalar(store, "SELECT MAX(id) AS id FROM Rentals")


@pytest.fixture
def carol_rental_id(repository, store):
    repository.create_rental(3, repository.get_user_id("carol"), 2, 2, date(2030, 2, 1), date(2030, 2, 3))
    return scalar(store, "SELECT MAX(id) AS id FROM Rentals")


class TestListing:
    """Список своих аренд"""

    @pytest.mark.asyncio
    async def test_no_rentals(self, dispatcher, messenger, sessions, bob):
        await say(dispatcher, bob, "Active rents")
        assert messenger.last(bob).text == "You have no active rents."
        assert sessions.get(bob) is None

    @pytest.mark.asyncio
    async def test_lists_own_rentals_only(self, dispatcher, messenger, rental_id, carol_rental_id, bob):
        await say(dispatcher, bob, "/rents")
        text = messenger.last(bob).text
        assert f"#{rental_id} Toyota Camry" in text
        assert "BMW X5" not in text
        assert messenger.last_buttons(bob) == {
            f"#{rental_id} Toyota Camry": f"ar_sel:{rental_id}",
            "Back": "ar_back",
        }

    @pytest.mark.asyncio
    async def test_select_by_button_and_typed_id(self, dispatcher, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents")
        await press(dispatcher, bob, f"ar_sel:{rental_id}")
        assert sessions.get(bob).state is ActiveRentsState.RENTAL_ACTIONS

        await press(dispatcher, bob, "ar_back")
        assert sessions.get(bob).state is ActiveRentsState.SELECT_RENTAL
        assert "rental_id" not in sessions.get(bob).fields

        await say(dispatcher, bob, f"#{rental_id}")
        assert sessions.get(bob).fields["rental_id"] == rental_id

    @pytest.mark.asyncio
    async def test_foreign_rental_refused(self, dispatcher, messenger, sessions, rental_id, carol_rental_id, bob):
        await say(dispatcher, bob, "/rents", str(carol_rental_id))
        assert messenger.last(bob).text == f"You have no rental #{carol_rental_id}. Choose one of yours:"
        assert sessions.get(bob).state is ActiveRentsState.SELECT_RENTAL

    @pytest.mark.asyncio
    async def test_back_from_list_closes(self, dispatcher, messenger, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents")
        await press(dispatcher, bob, "ar_back")
        assert sessions.get(bob) is None
        assert messenger.last(bob).text == "Closed active rents. Use /rents or the menu to open them again."


class TestCancel:
    """Отмена аренды"""

    @pytest.mark.asyncio
    async def test_cancel_releases_car(self, dispatcher, messenger, repository, store, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_cancel")

        assert f"✅ Rental #{rental_id} cancelled." in messenger.texts(bob)
        assert repository.get_rental(rental_id) is None
        assert scalar(store, "SELECT status_id FROM Cars WHERE id = 1") == STATUS_AVAILABLE
        assert sessions.get(bob) is None

    @pytest.mark.asyncio
    async def test_cancel_action_only_from_actions_menu(self, dispatcher, messenger, repository, rental_id, bob):
        await say(dispatcher, bob, "/rents")
        await press(dispatcher, bob, "ar_cancel")
        assert messenger.last(bob).text == "Please use the buttons of the latest message."
        assert repository.get_rental(rental_id) is not None


class TestReschedule:
    """Перенос дат и смена филиала возврата"""

    @pytest.mark.asyncio
    async def test_change_start_date(self, dispatcher, messenger, repository, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_start")
        assert messenger.last(bob).text == "Enter new pick-up date (DD.MM.YYYY), from today up to 05.01.2030:"

        await say(dispatcher, bob, "03.01.2030")
        assert "✅ Pick-up date changed to 03.01.2030." in messenger.texts(bob)
        assert repository.get_rental(rental_id).start_date == date(2030, 1, 3)
        assert sessions.get(bob).state is ActiveRentsState.RENTAL_ACTIONS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value, reply", [
        ("06.01.2030", "Pick-up date cannot be after the return date 05.01.2030"),
        ("01.01.2020", "Pick-up date cannot be in the past"),
        ("3 Jan", "Invalid date format"),
    ])
    async def test_start_date_rejected(self, dispatcher, messenger, repository, sessions, rental_id, bob,
                                       value, reply):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_start")
        await say(dispatcher, bob, value)

        assert messenger.last(bob).text.startswith(reply)
        assert repository.get_rental(rental_id).start_date == date(2030, 1, 1)
        assert sessions.get(bob).state is ActiveRentsState.AWAIT_NEW_START_DATE

    @pytest.mark.asyncio
    async def test_change_return(self, dispatcher, messenger, repository, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_return", "ar_ret:3")
        assert messenger.last(bob).text.endswith("not earlier than 01.01.2030:")

        await say(dispatcher, bob, "09.01.2030")
        rental = repository.get_rental(rental_id)
        assert rental.end_branch_id == 3
        assert rental.end_date == date(2030, 1, 9)
        assert sessions.get(bob).fields == {"rental_id": rental_id}

    @pytest.mark.asyncio
    async def test_return_before_start_rejected(self, dispatcher, messenger, repository, rental_id, bob):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_return")
        await say(dispatcher, bob, "2", "31.12.2029")

        assert messenger.last(bob).text.startswith("Return date must not be earlier than 01.01.2030")
        assert repository.get_rental(rental_id).end_date == date(2030, 1, 5)

    @pytest.mark.asyncio
    async def test_back_from_end_date(self, dispatcher, sessions, rental_id, bob):
        await say(dispatcher, bob, "/rents", str(rental_id))
        await press(dispatcher, bob, "ar_return", "ar_ret:3", "ar_back")
        session = sessions.get(bob)
        assert session.state is ActiveRentsState.SELECT_NEW_RETURN_BRANCH

        await press(dispatcher, bob, "ar_back")
        session = sessions.get(bob)
        assert session.state is ActiveRentsState.RENTAL_ACTIONS
        assert session.fields == {"rental_id": rental_id}
