"""Handler exports for the automation engine."""
from .base import GatewayHandler, Handler
from .declaration import DeclarationHandler
from .payment import PaymentHandler
from .reminder import ReminderHandler
from .status_check import StatusCheckHandler

__all__ = [
    "DeclarationHandler",
    "GatewayHandler",
    "Handler",
    "PaymentHandler",
    "ReminderHandler",
    "StatusCheckHandler",
]
