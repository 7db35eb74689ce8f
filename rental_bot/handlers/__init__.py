"""
Handlers package initialization.

Exports the flow handlers and the dispatcher.
"""

from .base_handler import FlowHandler
from .menu_handler import MenuHandler
from .auth_handler import AuthHandler, AuthState
from .rent_handler import RentHandler, RentState
from .admin_handler import AdminHandler, AdminState
from .active_rents_handler import ActiveRentsHandler, ActiveRentsState
from .dispatcher import Dispatcher

__all__ = [
    "FlowHandler",
    "MenuHandler",
    "AuthHandler",
    "AuthState",
    "RentHandler",
    "RentState",
    "AdminHandler",
    "AdminState",
    "ActiveRentsHandler",
    "ActiveRentsState",
    "Dispatcher",
]
