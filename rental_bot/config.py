# config.py
# Централизованная конфигурация для Car Rental Bot

import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("config")

# ============================================================================
# TELEGRAM CONFIGURATION
# ============================================================================
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")

# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================
DATABASE_PATH = os.getenv("DATABASE_PATH", "./rental_bot.db")
DATABASE_POOL_SIZE = int(os.getenv("DATABASE_POOL_SIZE", "5"))
DATABASE_TIMEOUT = float(os.getenv("DATABASE_TIMEOUT", "10"))

# Retry policy for store calls
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_BASE_DELAY_MS = int(os.getenv("DB_RETRY_BASE_DELAY_MS", "150"))

# ============================================================================
# BOT BEHAVIOR
# ============================================================================
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
ADMIN_PAGE_SIZE = int(os.getenv("ADMIN_PAGE_SIZE", "5"))

# 0 disables idle eviction of conversation sessions
SESSION_IDLE_TIMEOUT = int(os.getenv("SESSION_IDLE_TIMEOUT", "0"))

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "false").lower() == "true"
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", "./logs/bot.log")

# ============================================================================
# DEVELOPMENT / PRODUCTION
# ============================================================================
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# ============================================================================
# VALIDATION
# ============================================================================
def validate_config():
    """Проверить критические значения конфигурации"""
    errors = []

    if not TELEGRAM_BOT_TOKEN:
        errors.append("❌ TELEGRAM_BOT_TOKEN is not set")

    if not ADMIN_PASSWORD:
        errors.append("⚠️ ADMIN_PASSWORD is not set (admin promotion disabled)")

    if DB_RETRY_ATTEMPTS < 1:
        errors.append("❌ DB_RETRY_ATTEMPTS must be at least 1")

    if errors:
        for error in errors:
            logger.warning(error)
        if ENVIRONMENT == "production":
            raise ValueError("Critical configuration values are missing!")

    return len(errors) == 0
