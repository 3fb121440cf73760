"""Collaborators the automation engine talks to."""
from .credentials import CredentialStore
from .customers import CustomerDirectory, JsonCustomerDirectory, StaticCustomerDirectory
from .email import EmailChannel, MemoryOutbox, SMTPEmailChannel
from .etax import ETaxGateway, GatewayError, TaxGateway
from .push import PushMessage, PushNotificationService, PushSubscription

__all__ = [
    "CredentialStore",
    "CustomerDirectory",
    "ETaxGateway",
    "EmailChannel",
    "GatewayError",
    "JsonCustomerDirectory",
    "MemoryOutbox",
    "PushMessage",
    "PushNotificationService",
    "PushSubscription",
    "SMTPEmailChannel",
    "StaticCustomerDirectory",
    "TaxGateway",
]
