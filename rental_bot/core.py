"""
Bot Core - инициализация и запуск бота.

Wires store, repository, retry policy, sessions and the flow handlers around
one Dispatcher, and plugs the dispatcher into python-telegram-bot.
"""

import logging
from typing import Optional

from telegram import BotCommand, Update
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from . import config
from .db_service import Store, create_store
from .handlers import (
    ActiveRentsHandler, AdminHandler, AuthHandler, Dispatcher, MenuHandler, RentHandler,
)
from .logging_setup import setup_logger
from .messenger import Messenger, TelegramMessenger
from .retry_policy import RetryPolicy
from .services import RentalRepository
from .session_store import AuthRegistry, SessionStore

logger = logging.getLogger("bot_core")

BOT_COMMANDS = [
    BotCommand("start", "Log in or sign up"),
    BotCommand("help", "Show help"),
    BotCommand("menu", "Main menu"),
    BotCommand("rent", "Rent a car"),
    BotCommand("rents", "Your active rents"),
    BotCommand("admin", "Admin panel"),
]


def build_dispatcher(store: Store, messenger: Messenger, sessions: Optional[SessionStore] = None,
                     auth: Optional[AuthRegistry] = None,
                     retry_policy: Optional[RetryPolicy] = None) -> Dispatcher:
    """Assemble the flows around one store and messenger."""
    sessions = sessions or SessionStore(idle_timeout=config.SESSION_IDLE_TIMEOUT)
    auth = auth or AuthRegistry()
    retry_policy = retry_policy or RetryPolicy(
        max_attempts=config.DB_RETRY_ATTEMPTS,
        base_delay=config.DB_RETRY_BASE_DELAY_MS / 1000,
    )
    repository = RentalRepository(store)

    menu = MenuHandler(sessions, auth, messenger)
    deps = (repository, retry_policy, sessions, auth, messenger)
    return Dispatcher(
        menu=menu,
        auth_flow=AuthHandler(*deps, menu=menu),
        rent=RentHandler(*deps, menu=menu),
        admin=AdminHandler(*deps, menu=menu),
        active_rents=ActiveRentsHandler(*deps, menu=menu),
        sessions=sessions,
        auth=auth,
        messenger=messenger,
    )


class BotCore:
    """Central bot core for initialization and management."""

    def __init__(self, token: Optional[str] = None, db_path: Optional[str] = None):
        self.token = token or config.TELEGRAM_BOT_TOKEN
        self.db_path = db_path or config.DATABASE_PATH
        self.application: Optional[Application] = None
        self.store: Optional[Store] = None
        self.dispatcher: Optional[Dispatcher] = None

    async def post_init(self, app: Application) -> None:
        """Post-initialization setup (lifespan)."""
        await app.bot.set_my_commands(BOT_COMMANDS)
        logger.info("🚀 Bot starting...")
        logger.info(f"🗄️ Database: {self.db_path}")

    async def post_shutdown(self, app: Application) -> None:
        """Shutdown cleanup (lifespan)."""
        if self.store is not None:
            self.store.close()
        logger.info("🛑 Bot shutting down...")

    async def on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or message.text is None:
            return
        await self.dispatcher.dispatch_text(update.effective_chat.id, message.text)

    async def on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        # query.message can be missing for old messages, the chat is known from the update
        chat = update.effective_chat
        identity = chat.id if chat is not None else query.from_user.id
        await self.dispatcher.dispatch_callback(identity, query.id, query.data or "")

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error(f"❌ Unhandled error while processing update: {context.error}", exc_info=context.error)

    def setup_handlers(self) -> None:
        """Setup message, callback and error handlers."""
        if not self.application:
            raise RuntimeError("Application not initialized")

        # commands are plain text for the dispatcher, so no separate CommandHandler
        self.application.add_handler(MessageHandler(filters.TEXT, self.on_text))
        self.application.add_handler(CallbackQueryHandler(self.on_callback))
        self.application.add_error_handler(self.on_error)
        logger.info("✅ Handlers registered")

    def build(self) -> Application:
        if not self.token:
            raise ValueError("TELEGRAM_BOT_TOKEN not set in environment")

        self.store = create_store(self.db_path, config.DATABASE_POOL_SIZE, config.DATABASE_TIMEOUT)
        self.application = (
            Application.builder()
            .token(self.token)
            .concurrent_updates(True)
            .post_init(self.post_init)
            .post_shutdown(self.post_shutdown)
            .build()
        )
        self.dispatcher = build_dispatcher(self.store, TelegramMessenger(self.application.bot))
        self.setup_handlers()
        return self.application

    def run(self) -> None:
        """Run the bot (blocking polling loop)."""
        application = self.build()
        logger.info("🎯 Starting polling...")
        application.run_polling(allowed_updates=["message", "callback_query"])


def main() -> None:
    """Main entry point."""
    setup_logger(None, config.LOG_LEVEL, config.LOG_TO_FILE, config.LOG_FILE_PATH)
    config.validate_config()
    BotCore().run()


if __name__ == "__main__":
    main()
