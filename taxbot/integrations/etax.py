"""Async client for the national eTax gateway."""
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import httpx
from attrs import define, field

from taxbot.automation.models import Credential, ensure_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://etax.gdt.gov.vn/api"
DEFAULT_TIMEOUT = 30.0
USER_AGENT = "TaxBot-Vietnam/1.0"


class GatewayError(RuntimeError):
    """Transport failure or non-2xx answer from the gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


@define(slots=True)
class PersonalTaxInfo:
    taxpayer_code: str
    total_tax_amount: float = 0.0
    paid_amount: float = 0.0
    remaining_amount: float = 0.0
    penalties: float = 0.0
    full_name: str = ""
    tax_period: str = ""
    declaration_status: str = ""
    payment_status: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PersonalTaxInfo":
        return cls(
            taxpayer_code=str(data.get("taxpayerCode", "")),
            total_tax_amount=float(data.get("totalTaxAmount") or 0),
            paid_amount=float(data.get("paidAmount") or 0),
            remaining_amount=float(data.get("remainingAmount") or 0),
            penalties=float(data.get("penalties") or 0),
            full_name=str(data.get("fullName", "")),
            tax_period=str(data.get("taxPeriod", "")),
            declaration_status=str(data.get("declarationStatus", "")),
            payment_status=str(data.get("paymentStatus", "")),
        )


@define(slots=True)
class TaxDeclaration:
    declaration_id: str
    status: str
    declaration_type: str = ""
    tax_period: str = ""
    submission_date: Optional[datetime] = None
    total_tax_amount: float = 0.0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TaxDeclaration":
        return cls(
            declaration_id=str(data["declarationId"]),
            status=str(data.get("status", "submitted")),
            declaration_type=str(data.get("declarationType", "")),
            tax_period=str(data.get("taxPeriod", "")),
            submission_date=_parse_dt(data.get("submissionDate")),
            total_tax_amount=float(data.get("totalTaxAmount") or 0),
        )


@define(slots=True)
class TaxDeadline:
    tax_type: str
    due_date: datetime

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TaxDeadline":
        return cls(tax_type=str(data.get("taxType", "")), due_date=_parse_dt(data["dueDate"]))

    def days_until(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (self.due_date - now).total_seconds() / 86400


@define(slots=True)
class ElectronicInvoice:
    invoice_number: str
    status: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ElectronicInvoice":
        return cls(invoice_number=str(data.get("invoiceNumber", "")), status=str(data.get("status", "")))

    @property
    def is_problematic(self) -> bool:
        return self.status in ("rejected", "warning")


@define(slots=True)
class PaymentReceipt:
    amount: float
    reference: str = ""


Document = Union[bytes, str]


class TaxGateway(Protocol):
    async def authenticate(self, credential: Credential) -> str:
        ...

    async def get_personal_info(self, taxpayer_code: str, access_token: str) -> PersonalTaxInfo:
        ...

    async def submit_declaration(
        self,
        taxpayer_code: str,
        declaration_data: Dict[str, Any],
        documents: Sequence[Document],
        credential: Credential,
        access_token: str,
    ) -> TaxDeclaration:
        ...

    async def submit_payment(
        self,
        taxpayer_code: str,
        amount: float,
        payment_data: Dict[str, Any],
        access_token: str,
    ) -> PaymentReceipt:
        ...

    async def check_declaration_status(self, declaration_id: str, access_token: str) -> TaxDeclaration:
        ...

    async def get_deadlines(self, taxpayer_code: str, access_token: str) -> List[TaxDeadline]:
        ...

    async def get_invoices(self, taxpayer_code: str, access_token: str) -> List[ElectronicInvoice]:
        ...


@define(slots=False)
class ETaxGateway:
    """httpx client for the eTax REST API.

    Every call is token scoped except :meth:`authenticate`. Transport errors
    and non-2xx answers are raised as :class:`GatewayError` so handlers can
    treat them as recoverable failures.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    transport: Optional[httpx.AsyncBaseTransport] = None
    _client: httpx.AsyncClient = field(init=False)

    def __attrs_post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=self.transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, *, token: Optional[str] = None, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", {}) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise GatewayError(f"eTax request {method} {url} failed: {exc}") from exc
        if response.is_error:
            raise GatewayError(
                f"eTax request {method} {url} returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"eTax request {method} {url} returned invalid JSON") from exc

    async def authenticate(self, credential: Credential) -> str:
        data = await self._request(
            "POST",
            "/auth/digital-signature",
            json={
                "certificateSerial": credential.certificate_serial,
                "publicKey": credential.public_key,
                "timestamp": utcnow().isoformat(),
            },
        )
        token = (data or {}).get("accessToken")
        if not token:
            raise GatewayError("eTax authentication returned no access token")
        return str(token)

    async def get_personal_info(self, taxpayer_code: str, access_token: str) -> PersonalTaxInfo:
        data = await self._request("GET", f"/taxpayer/{taxpayer_code}/info", token=access_token)
        return PersonalTaxInfo.from_api(data or {})

    async def get_declarations(
        self, taxpayer_code: str, access_token: str, year: Optional[int] = None
    ) -> List[TaxDeclaration]:
        params = {"year": year} if year else None
        data = await self._request(
            "GET", f"/taxpayer/{taxpayer_code}/declarations", token=access_token, params=params
        )
        return [TaxDeclaration.from_api(item) for item in (data or {}).get("declarations", [])]

    async def submit_declaration(
        self,
        taxpayer_code: str,
        declaration_data: Dict[str, Any],
        documents: Sequence[Document],
        credential: Credential,
        access_token: str,
    ) -> TaxDeclaration:
        form = {
            "taxpayerCode": taxpayer_code,
            "declarationData": json.dumps(declaration_data, ensure_ascii=False),
            "digitalSignature": json.dumps(
                {
                    "certificateSerial": credential.certificate_serial,
                    "issuerName": credential.issuer_name,
                    "publicKey": credential.public_key,
                }
            ),
        }
        files = [
            (f"document_{index}", (f"document_{index}.pdf", _document_bytes(doc), "application/pdf"))
            for index, doc in enumerate(documents)
        ]
        data = await self._request(
            "POST", "/declarations/submit", token=access_token, data=form, files=files or None
        )
        return TaxDeclaration.from_api(data or {})

    async def submit_payment(
        self,
        taxpayer_code: str,
        amount: float,
        payment_data: Dict[str, Any],
        access_token: str,
    ) -> PaymentReceipt:
        data = await self._request(
            "POST",
            f"/taxpayer/{taxpayer_code}/payments",
            token=access_token,
            json={"amount": amount, **(payment_data or {})},
        )
        data = data or {}
        return PaymentReceipt(amount=float(data.get("amount", amount)), reference=str(data.get("reference", "")))

    async def check_declaration_status(self, declaration_id: str, access_token: str) -> TaxDeclaration:
        data = await self._request("GET", f"/declarations/{declaration_id}/status", token=access_token)
        data = dict(data or {})
        data.setdefault("declarationId", declaration_id)
        return TaxDeclaration.from_api(data)

    async def get_invoices(
        self,
        taxpayer_code: str,
        access_token: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> List[ElectronicInvoice]:
        params = {key: value for key, value in (("fromDate", from_date), ("toDate", to_date)) if value}
        data = await self._request(
            "GET", f"/taxpayer/{taxpayer_code}/invoices", token=access_token, params=params or None
        )
        return [ElectronicInvoice.from_api(item) for item in (data or {}).get("invoices", [])]

    async def get_deadlines(self, taxpayer_code: str, access_token: str) -> List[TaxDeadline]:
        data = await self._request("GET", f"/taxpayer/{taxpayer_code}/deadlines", token=access_token)
        return [TaxDeadline.from_api(item) for item in (data or {}).get("deadlines", [])]


def _document_bytes(document: Document) -> bytes:
    # JSON callers send documents base64-encoded
    if isinstance(document, bytes):
        return document
    return base64.b64decode(document)


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_TIMEOUT",
    "ETaxGateway",
    "ElectronicInvoice",
    "GatewayError",
    "PaymentReceipt",
    "PersonalTaxInfo",
    "TaxDeadline",
    "TaxDeclaration",
    "TaxGateway",
]
