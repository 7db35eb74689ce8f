"""
Car Rental Bot - conversational car booking over Telegram.

Structure:
├── handlers/         # Flow state machines and the dispatcher
├── services/         # Repository over the transactional store
├── schemas/          # Pydantic models for store rows
├── db_service.py     # sqlite connection pool, transactions, schema
├── retry_policy.py   # Transient-error retries (tenacity)
├── session_store.py  # Per-identity conversation state
└── core.py           # Bot initialization and orchestration
"""

__version__ = "0.1.0"
