"""Read-only view of the JSON customer record store."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from taxbot.automation.models import Customer


class CustomerDirectory(Protocol):
    def list_customers(self) -> List[Customer]:
        ...

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...


def customer_from_record(record: Dict[str, Any]) -> Customer:
    return Customer(
        id=str(record["id"]),
        first_name=record.get("firstName") or record.get("first_name") or "",
        last_name=record.get("lastName") or record.get("last_name") or "",
        email=record.get("email") or None,
        phone=record.get("phone") or None,
    )


class JsonCustomerDirectory:
    """Customers from the ``submissions`` array of the registration file.

    The file is re-read on every call; the registration flow writes it
    independently of this process.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _records(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if isinstance(data, list):
            return data
        return list(data.get("submissions") or [])

    def list_customers(self) -> List[Customer]:
        return [customer_from_record(record) for record in self._records() if record.get("id")]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        for customer in self.list_customers():
            if customer.id == customer_id:
                return customer
        return None


class StaticCustomerDirectory:
    def __init__(self, customers: Iterable[Customer] = ()) -> None:
        self._customers = {customer.id: customer for customer in customers}

    def add(self, customer: Customer) -> None:
        self._customers[customer.id] = customer

    def list_customers(self) -> List[Customer]:
        return list(self._customers.values())

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._customers.get(customer_id)


__all__ = [
    "CustomerDirectory",
    "JsonCustomerDirectory",
    "StaticCustomerDirectory",
    "customer_from_record",
]
