from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import requests

from ledger.core.config import settings
from ledger.core.errors import ExternalProviderError
from ledger.core.logging import get_structured_logger
from ledger.disbursement.base import PayoutDisbursementAdapter, PayoutInstruction, SubmissionResult
from ledger.disbursement.retry import RetryPolicy
from ledger.models.enums import PayeeStatusEnum


logger = get_structured_logger("ledger.disbursement")

PAYMENT_METHOD_MAP = {
    "BANK_TRANSFER": "ACH",
    "WIRE_TRANSFER": "WIRE",
    "PAYPAL": "PAYPAL",
    "PAYONEER": "PAYONEER",
    "PREPAID_CARD": "PREPAID_CARD",
    "CHECK": "CHECK",
}

PAYMENT_STATUS_MAP = {
    "PENDING": "PENDING",
    "PROCESSING": "PROCESSING",
    "SENT": "COMPLETED",
    "COMPLETED": "COMPLETED",
    "FAILED": "FAILED",
    "CANCELLED": "CANCELLED",
    "ON_HOLD": "ON_HOLD",
}


def map_payment_method(method: str | None) -> str:
    return PAYMENT_METHOD_MAP.get((method or "").upper(), "ACH")


def map_payment_status(status: str | None) -> str:
    return PAYMENT_STATUS_MAP.get((status or "").upper(), "PENDING")


def _tax_classification(country: str | None) -> str:
    return "Individual" if (country or "").upper() == "US" else "Foreign"


def _encode(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)


class HttpDisbursementAdapter(PayoutDisbursementAdapter):
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        payer_entity_id: str | None,
        timeout_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(retry_policy=retry_policy)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.payer_entity_id = payer_entity_id
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> "HttpDisbursementAdapter":
        return cls(
            base_url=settings.PAYOUT_PROVIDER_BASE_URL,
            api_key=settings.PAYOUT_PROVIDER_API_KEY,
            payer_entity_id=settings.PAYOUT_PAYER_ENTITY_ID,
            timeout_seconds=settings.PAYOUT_PROVIDER_TIMEOUT_SECONDS,
        )

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key or ''}",
            "Tipalti-Payer-Entity-Id": self.payer_entity_id or "",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                data=_encode(payload) if payload is not None else None,
                headers=self._headers(idempotency_key),
                timeout=self.timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            logger.warning(
                "disbursement.request_failed",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise ExternalProviderError(
                f"Provider unreachable: {exc.__class__.__name__}",
                retryable=self.retry_policy.is_retryable(exc),
            ) from exc
        except requests.RequestException as exc:
            raise ExternalProviderError(f"Provider request failed: {exc}", retryable=False) from exc

        if resp.status_code >= 400:
            message = f"Provider returned {resp.status_code}"
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                message = f"{message}: {body['message']}"
            logger.warning(
                "disbursement.request_rejected",
                extra={"method": method, "path": path, "status_code": resp.status_code},
            )
            raise ExternalProviderError(
                message,
                retryable=self.retry_policy.is_retryable_status(resp.status_code),
                provider_status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ExternalProviderError("Provider returned a non-JSON body", retryable=True) from exc
        return data if isinstance(data, dict) else {}

    def register_payee(self, creator, bank_details: dict[str, Any]) -> str:
        details = bank_details or {}
        payload = {
            "payeeEntityId": str(creator.id),
            "payeeDisplayName": creator.name,
            "email": creator.email,
            "defaultPaymentMethod": map_payment_method(
                details.get("preferred_method") or creator.payment_method
            ),
            "minimumPaymentAmount": str(creator.minimum_payout or settings.MINIMUM_PAYOUT),
            "address": {
                "line1": details.get("address_line1"),
                "line2": details.get("address_line2"),
                "city": details.get("city"),
                "state": details.get("state"),
                "country": details.get("country"),
                "postalCode": details.get("postal_code"),
            },
            "taxInfo": {
                "taxId": details.get("tax_id"),
                "taxClassification": _tax_classification(details.get("country")),
            },
        }
        data = self._request("POST", "/api/v1/payees", payload=payload)
        payee_id = data.get("payeeId")
        if not payee_id:
            raise ExternalProviderError("Provider response missing payeeId", retryable=False)
        return str(payee_id)

    def submit(self, instruction: PayoutInstruction) -> SubmissionResult:
        if not instruction.payee_id or instruction.payee_status != PayeeStatusEnum.ONBOARDED.value:
            raise ExternalProviderError(
                f"Creator {instruction.creator_id} payee is not onboarded",
                retryable=False,
            )
        payload = {
            "payeeEntityId": instruction.payee_id,
            "amount": str(Decimal(instruction.amount)),
            "currency": instruction.currency,
            "description": instruction.description,
            "externalReferenceId": instruction.idempotency_key,
            "refCode": instruction.idempotency_key,
            "paymentMethod": map_payment_method(instruction.payment_method),
            "scheduledDate": instruction.scheduled_date.isoformat(),
        }
        data = self._request(
            "POST",
            "/api/v1/payments",
            payload=payload,
            idempotency_key=instruction.idempotency_key,
        )
        payment_id = data.get("paymentId")
        if not payment_id:
            # Accepted but unidentifiable; resubmitting with the same key is safe.
            raise ExternalProviderError("Provider response missing paymentId", retryable=True)
        return SubmissionResult(external_payout_id=str(payment_id), status=map_payment_status(data.get("status")))

    def query_status(self, external_payout_id: str) -> str:
        data = self._request("GET", f"/api/v1/payments/{external_payout_id}")
        return map_payment_status(data.get("status"))


def get_disbursement_adapter() -> PayoutDisbursementAdapter:
    return HttpDisbursementAdapter.from_settings()
