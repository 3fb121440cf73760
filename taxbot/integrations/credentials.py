"""In-memory store of customer digital signatures."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from taxbot.automation.models import Clock, Credential, utcnow

logger = logging.getLogger(__name__)


class CredentialStore:
    """Keeps one digital signature per customer.

    ``is_valid`` is the time-bound check used before any gateway call: the
    signature must exist, be active and not be past ``valid_to``.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utcnow
        self._signatures: Dict[str, Credential] = {}
        self._lock = threading.Lock()

    def save(self, credential: Credential) -> None:
        with self._lock:
            self._signatures[credential.customer_id] = credential
        logger.info("Saved digital signature for customer %s", credential.customer_id)

    def get(self, customer_id: str) -> Optional[Credential]:
        with self._lock:
            return self._signatures.get(customer_id)

    def is_valid(self, customer_id: str) -> bool:
        credential = self.get(customer_id)
        if credential is None:
            return False
        return credential.is_valid(self._clock())

    def get_valid(self, customer_id: str) -> Optional[Credential]:
        credential = self.get(customer_id)
        if credential is None or not credential.is_valid(self._clock()):
            return None
        return credential

    def expiring_soon(self, days: int = 30, now: Optional[datetime] = None) -> List[Credential]:
        now = now or self._clock()
        horizon = now + timedelta(days=days)
        with self._lock:
            return [
                credential
                for credential in self._signatures.values()
                if credential.is_active and now < credential.valid_to <= horizon
            ]


__all__ = ["CredentialStore"]
