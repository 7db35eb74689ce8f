"""
Auth Handler - вход и регистрация.

AWAIT_LOGIN → AWAIT_PASSWORD for known logins, otherwise the signup chain
AWAIT_SIGNUP_PASSWORD → EMAIL → PHONE → LICENSE. Uniqueness violations
re-prompt the same field.
"""

import logging
from enum import Enum
from typing import Any, Dict

from pydantic import ValidationError

from ..callbacks import Callback, Namespace
from ..input_validators import SignupForm, is_valid_email, is_valid_license, is_valid_phone
from ..session_store import Flow
from .base_handler import FlowHandler, failed
from .menu_handler import MenuHandler

logger = logging.getLogger("auth_handler")


class AuthState(Enum):
    AWAIT_LOGIN = "await_login"
    AWAIT_PASSWORD = "await_password"
    AWAIT_SIGNUP_PASSWORD = "await_signup_password"
    AWAIT_SIGNUP_EMAIL = "await_signup_email"
    AWAIT_SIGNUP_PHONE = "await_signup_phone"
    AWAIT_SIGNUP_LICENSE = "await_signup_license"


PROMPTS = {
    AuthState.AWAIT_PASSWORD: "User found. Please enter your password:",
    AuthState.AWAIT_SIGNUP_PASSWORD: "No such login. Please choose a password for a new account:",
    AuthState.AWAIT_SIGNUP_EMAIL: "Please enter your email:",
    AuthState.AWAIT_SIGNUP_PHONE: "Please enter your phone number (format +79999999999):",
    AuthState.AWAIT_SIGNUP_LICENSE: "Please enter your driver license number (10 chars, uppercase letters or digits):",
}


class AuthHandler(FlowHandler):
    """Login / signup state machine."""

    flow = Flow.AUTH
    namespace = Namespace.AUTH
    previous = {
        AuthState.AWAIT_PASSWORD: AuthState.AWAIT_LOGIN,
        AuthState.AWAIT_SIGNUP_PASSWORD: AuthState.AWAIT_LOGIN,
        AuthState.AWAIT_SIGNUP_EMAIL: AuthState.AWAIT_SIGNUP_PASSWORD,
        AuthState.AWAIT_SIGNUP_PHONE: AuthState.AWAIT_SIGNUP_EMAIL,
        AuthState.AWAIT_SIGNUP_LICENSE: AuthState.AWAIT_SIGNUP_PHONE,
    }
    collects = {
        AuthState.AWAIT_LOGIN: ("login",),
        AuthState.AWAIT_SIGNUP_PASSWORD: ("password",),
        AuthState.AWAIT_SIGNUP_EMAIL: ("email",),
        AuthState.AWAIT_SIGNUP_PHONE: ("phone",),
        AuthState.AWAIT_SIGNUP_LICENSE: ("license_id",),
    }
    cancel_text = "Operation cancelled. Use /start to begin again."

    def __init__(self, *args, menu: MenuHandler, **kwargs):
        super().__init__(*args, **kwargs)
        self.menu = menu

    async def start(self, identity: int) -> None:
        """Handle /start command."""
        self.sessions.start(identity, Flow.AUTH, AuthState.AWAIT_LOGIN)
        await self.messenger.send_text(identity, "Welcome to the Car Rental Bot!")
        await self.prompt(identity, AuthState.AWAIT_LOGIN, {})
        logger.info(f"✅ {identity} started auth flow")

    async def prompt(self, identity: int, state: Enum, fields: Dict[str, Any]) -> bool:
        if state is AuthState.AWAIT_LOGIN:
            # no Back while asking for the login
            await self.messenger.send_text(identity, "Enter login:")
        else:
            await self.send_with_back(identity, PROMPTS[state])
        return True

    async def handle_text(self, identity: int, text: str) -> None:
        session = self.session(identity)
        if session is None:
            return

        value = (text or "").strip()
        state = session.state

        if state is AuthState.AWAIT_LOGIN:
            if not value:
                await self.messenger.send_text(identity, "Login cannot be empty. Please enter your login:")
                return
            exists = await self.db(identity, self.repository.is_user, value)
            if failed(exists):
                return
            target = AuthState.AWAIT_PASSWORD if exists else AuthState.AWAIT_SIGNUP_PASSWORD
            await self.advance(identity, session, target, login=value)

        elif state is AuthState.AWAIT_PASSWORD:
            if not value:
                await self.send_with_back(identity, "Password cannot be empty. Please enter your password:")
                return
            login = session.fields["login"]
            ok = await self.db(identity, self.repository.verify_password, login, value)
            if failed(ok):
                return
            if not ok:
                await self.send_with_back(identity, "Incorrect password. Please try again:")
                return
            await self._signed_in(identity, login, f"Authorization successful. Welcome, {login}!")

        elif state is AuthState.AWAIT_SIGNUP_PASSWORD:
            if not value:
                await self.send_with_back(
                    identity, "Password cannot be empty. Please choose a password for the new login:"
                )
                return
            await self.advance(identity, session, AuthState.AWAIT_SIGNUP_EMAIL, password=value)

        elif state is AuthState.AWAIT_SIGNUP_EMAIL:
            if not is_valid_email(value):
                await self.send_with_back(
                    identity, "Invalid email. Please enter a valid email (example: abc@example.com):"
                )
                return
            used = await self.db(identity, self.repository.is_email_used, value)
            if failed(used):
                return
            if used:
                await self.send_with_back(identity, "This email is already in use. Please enter a different email:")
                return
            await self.advance(identity, session, AuthState.AWAIT_SIGNUP_PHONE, email=value)

        elif state is AuthState.AWAIT_SIGNUP_PHONE:
            if not is_valid_phone(value):
                await self.send_with_back(identity, "Invalid phone. Example: +79999999999. Please enter phone:")
                return
            used = await self.db(identity, self.repository.is_phone_used, value)
            if failed(used):
                return
            if used:
                await self.send_with_back(
                    identity, "This phone number is already registered. Please enter a different phone number:"
                )
                return
            await self.advance(identity, session, AuthState.AWAIT_SIGNUP_LICENSE, phone=value)

        elif state is AuthState.AWAIT_SIGNUP_LICENSE:
            await self._finish_signup(identity, session, value)

        else:
            await self.unknown_state(identity, session)

    async def _finish_signup(self, identity: int, session, value: str) -> None:
        if not is_valid_license(value):
            await self.send_with_back(
                identity, "Invalid driver license. It must be 10 characters (A-Z or 0-9). Please enter again:"
            )
            return
        used = await self.db(identity, self.repository.is_license_used, value)
        if failed(used):
            return
        if used:
            await self.send_with_back(
                identity,
                "This driver license number is already registered. Please enter a different license number:",
            )
            return

        try:
            form = SignupForm(license_id=value, **session.fields)
        except ValidationError as e:
            logger.warning(f"⚠️ {identity}: incomplete signup form: {e.error_count()} errors")
            self.sessions.end(identity, self.flow)
            await self.messenger.send_text(
                identity, "Some required fields are missing. Please restart with /start and try again."
            )
            return

        created = await self.db(
            identity, self.repository.create_user,
            form.login, form.password, form.email, form.phone, form.license_id,
        )
        if failed(created):
            return
        await self._signed_in(identity, form.login, f"Account created and signed in as {form.login}. Welcome!")

    async def _signed_in(self, identity: int, login: str, greeting: str) -> None:
        self.auth.mark_authenticated(identity, login)
        self.sessions.end(identity, self.flow)
        await self.messenger.send_text(identity, greeting)
        await self.menu.show_menu(identity)

    async def handle_callback(self, identity: int, callback: Callback) -> None:
        """Only Back lives in the auth namespace"""
        if callback.action == "back":
            await self.go_back(identity)
        else:
            logger.debug(f"Ignoring auth callback {callback.action!r} from {identity}")
