"""
Menu Handler - главное меню и справка.

The main menu is a reply keyboard; its labels double as commands.
"""

import logging

from ..messenger import Messenger
from ..session_store import AuthRegistry, SessionStore

logger = logging.getLogger("menu_handler")

LABEL_RENT = "Rent car"
LABEL_ADMIN = "Admin"
LABEL_ACTIVE_RENTS = "Active rents"
LABEL_HELP = "Help"
LABEL_MENU = "Menu"

MENU_BUTTONS = [LABEL_RENT, LABEL_ADMIN, LABEL_ACTIVE_RENTS, LABEL_HELP]

HELP_TEXT = (
    "Available commands:\n\n"
    "/start - log in or sign up. Follow the bot's prompts.\n"
    "/help - show this help.\n"
    "/menu - open the main menu (logged-in users only).\n"
    "/admin - open the admin panel (logged-in users only).\n"
    "/rent or \"Rent car\" - book a car: branch → car → pick-up date (DD.MM.YYYY) "
    "→ return branch → return date (DD.MM.YYYY).\n"
    "/rents or \"Active rents\" - show your bookings; pick one by button or id to change or cancel it.\n\n"
    "General rules:\n"
    "- Choose with the inline buttons or type the id.\n"
    "- Date format: DD.MM.YYYY. Pick-up date ≥ today; return date ≥ pick-up date."
)


class MenuHandler:
    """Main menu, help and the login gate for the other flows."""

    def __init__(self, sessions: SessionStore, auth: AuthRegistry, messenger: Messenger):
        self.sessions = sessions
        self.auth = auth
        self.messenger = messenger

    async def show_menu(self, identity: int) -> None:
        await self.messenger.send_text_with_choice_buttons(
            identity, "Main menu. Choose an action:", MENU_BUTTONS
        )

    async def handle_menu(self, identity: int) -> None:
        """Handle /menu: stop any active flow and show the menu"""
        if not await self.require_auth(identity, "use the menu"):
            return
        self.sessions.end(identity)
        await self.messenger.send_text(
            identity, "Menu activated. Other commands are suspended while you use the menu."
        )
        await self.show_menu(identity)

    async def handle_help(self, identity: int) -> None:
        await self.messenger.send_text(identity, HELP_TEXT)
        logger.info(f"✅ Help shown to {identity}")

    async def require_auth(self, identity: int, action: str) -> bool:
        if self.auth.is_authenticated(identity):
            return True
        await self.messenger.send_text(
            identity, f"Only registered/logged-in users can {action}. Please /start to login or register."
        )
        return False
