"""
Messenger - тонкий слой отправки сообщений.

Flow handlers only talk to the abstract Messenger; TelegramMessenger is the
python-telegram-bot implementation. Send failures are logged and swallowed so
they never break dispatch or session state.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from telegram import (
    Bot, InlineKeyboardButton, InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup,
)
from telegram.error import TelegramError

logger = logging.getLogger("messenger")


class Messenger(ABC):
    """Outbound capability used by the flows."""

    @abstractmethod
    async def send_text(self, identity: int, text: str) -> None:
        ...

    @abstractmethod
    async def send_text_with_choice_buttons(self, identity: int, text: str, labels: List[str]) -> None:
        """Text plus a single row of plain reply buttons."""

    @abstractmethod
    async def send_text_with_callback_buttons(self, identity: int, text: str, buttons: Dict[str, str]) -> None:
        """Text plus inline buttons, label -> opaque callback token."""

    @abstractmethod
    async def acknowledge_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        ...


class TelegramMessenger(Messenger):
    """Messenger over telegram.Bot"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(self, identity: int, text: str) -> None:
        try:
            await self.bot.send_message(chat_id=identity, text=text)
        except TelegramError as e:
            logger.error(f"Failed to send message to {identity}: {e}")

    async def send_text_with_choice_buttons(self, identity: int, text: str, labels: List[str]) -> None:
        keyboard = ReplyKeyboardMarkup(
            [[KeyboardButton(label) for label in labels]],
            resize_keyboard=True,
            one_time_keyboard=False,
            selective=False,
        )
        try:
            await self.bot.send_message(chat_id=identity, text=text, reply_markup=keyboard)
        except TelegramError as e:
            logger.error(f"Failed to send reply keyboard to {identity}: {e}")

    async def send_text_with_callback_buttons(self, identity: int, text: str, buttons: Dict[str, str]) -> None:
        keyboard = InlineKeyboardMarkup(
            [[InlineKeyboardButton(label, callback_data=token)] for label, token in buttons.items()]
        )
        try:
            await self.bot.send_message(chat_id=identity, text=text, reply_markup=keyboard)
        except TelegramError as e:
            logger.error(f"Failed to send inline keyboard to {identity}: {e}")

    async def acknowledge_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        if callback_id is None:
            return
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text, show_alert=False)
        except TelegramError as e:
            logger.error(f"Failed to answer callback query: {e}")
