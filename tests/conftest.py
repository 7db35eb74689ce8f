"""
pytest configuration и fixtures для всех тестов
"""

import pytest
import sys
import os
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

# Добавляем путь к коду
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from rental_bot.db_service import create_store
from rental_bot.handlers import (
    ActiveRentsHandler, AdminHandler, AuthHandler, Dispatcher, MenuHandler, RentHandler,
)
from rental_bot.messenger import Messenger
from rental_bot.retry_policy import RetryPolicy
from rental_bot.services import RentalRepository
from rental_bot.session_store import AuthRegistry, SessionStore

FIXED_TODAY = date(2029, 6, 1)
ADMIN_PASSWORD = "letmein"
BOB = 100
ALICE = 200


# ==================== FAKES ====================

@dataclass
class Sent:
    identity: int
    text: str
    buttons: Optional[Dict[str, str]] = None
    labels: Optional[List[str]] = None


class RecordingMessenger(Messenger):
    """Messenger that keeps everything it was asked to send"""

    def __init__(self):
        self.sent: List[Sent] = []
        self.acknowledged: List[str] = []

    async def send_text(self, identity, text):
        self.sent.append(Sent(identity, text))

    async def send_text_with_choice_buttons(self, identity, text, labels):
        self.sent.append(Sent(identity, text, labels=list(labels)))

    async def send_text_with_callback_buttons(self, identity, text, buttons):
        self.sent.append(Sent(identity, text, buttons=dict(buttons)))

    async def acknowledge_callback(self, callback_id, text=None):
        self.acknowledged.append(callback_id)

    def texts(self, identity=None) -> List[str]:
        return [s.text for s in self.sent if identity is None or s.identity == identity]

    def last(self, identity=None) -> Sent:
        return [s for s in self.sent if identity is None or s.identity == identity][-1]

    def last_buttons(self, identity=None) -> Dict[str, str]:
        for sent in reversed(self.sent):
            if sent.buttons is not None and (identity is None or sent.identity == identity):
                return sent.buttons
        return {}


class SleepRecorder:
    """Stands in for asyncio.sleep so retries run instantly"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)


# ==================== DATA ====================

def seed(store):
    with store.connection() as conn:
        conn.executemany(
            "INSERT INTO Branch (id, city, street, building_number) VALUES (?, ?, ?, ?)",
            [(1, "Moscow", "Tverskaya", 1), (2, "Moscow", "Arbat", 10), (3, "Kazan", "Baumana", 5)],
        )
        conn.executemany("INSERT INTO CarType (id, type_name) VALUES (?, ?)", [(1, "sedan"), (2, "SUV")])
        conn.executemany(
            "INSERT INTO Cars (id, name, release_year, type_id, branch_id, status_id) VALUES (?, ?, ?, ?, ?, ?)",
            [
                (1, "Toyota Camry", 2020, 1, 1, 1),
                (2, "Kia Rio", 2019, 1, 1, 1),
                (3, "BMW X5", 2021, 2, 2, 1),
                (4, "Lada Vesta", 2018, 1, 2, 3),
            ],
        )
        conn.execute(
            "INSERT INTO Users (login, password, email, phone_number, license_id) VALUES (?, ?, ?, ?, ?)",
            ("bob", "secret", "bob@example.com", "+79991112233", "BOB1234567"),
        )
        conn.execute(
            "INSERT INTO Users (login, password, email, phone_number, license_id) VALUES (?, ?, ?, ?, ?)",
            ("carol", "pw", "carol@example.com", "+79994445566", "CAROL12345"),
        )


def scalar(store, query, params=()):
    row = store.fetch_one(query, params)
    return next(iter(row.values())) if row else None


# ==================== FIXTURES ====================

@pytest.fixture
def store(tmp_path):
    """File-backed sqlite store with branches, cars and two users"""
    store = create_store(str(tmp_path / "rental.db"), pool_size=3, timeout=2.0)
    store.init_schema()
    seed(store)
    yield store
    store.close()


@pytest.fixture
def repository(store):
    return RentalRepository(store)


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeper):
    return RetryPolicy(max_attempts=3, base_delay=0.15, sleep=sleeper)


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def auth():
    return AuthRegistry()


@pytest.fixture
def menu(sessions, auth, messenger):
    return MenuHandler(sessions, auth, messenger)


@pytest.fixture
def flow_deps(repository, retry_policy, sessions, auth, messenger):
    return (repository, retry_policy, sessions, auth, messenger)


@pytest.fixture
def auth_handler(flow_deps, menu):
    return AuthHandler(*flow_deps, menu=menu)


@pytest.fixture
def rent_handler(flow_deps, menu):
    return RentHandler(*flow_deps, menu=menu, today=lambda: FIXED_TODAY)


@pytest.fixture
def admin_handler(flow_deps, menu):
    return AdminHandler(*flow_deps, menu=menu, admin_password=ADMIN_PASSWORD, page_size=2)


@pytest.fixture
def active_rents_handler(flow_deps, menu):
    return ActiveRentsHandler(*flow_deps, menu=menu, today=lambda: FIXED_TODAY)


@pytest.fixture
def dispatcher(menu, auth_handler, rent_handler, admin_handler, active_rents_handler, sessions, auth, messenger):
    return Dispatcher(
        menu=menu,
        auth_flow=auth_handler,
        rent=rent_handler,
        admin=admin_handler,
        active_rents=active_rents_handler,
        sessions=sessions,
        auth=auth,
        messenger=messenger,
    )


@pytest.fixture
def bob(auth):
    """Chat BOB logged in as the seeded user bob"""
    auth.mark_authenticated(BOB, "bob")
    return BOB


# ==================== MARKERS ====================

def pytest_configure(config):
    """Регистрируем custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


def pytest_collection_modifyitems(config, items):
    """Модифицируем items для добавления маркеров"""
    for item in items:
        if "flow" in item.nodeid or "dispatcher" in item.nodeid:
            item.add_marker(pytest.mark.integration)
