"""Client for the external payout provider.

Every call carries a bounded timeout.  Timeouts, transport failures and
any other httpx error are reported as retryable PROVIDER errors.  HTTP error
responses are classified by the provider's ``code`` field, with
``INSUFFICIENT_BALANCE`` mapped to its own non-retryable kind.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import SettlementError, insufficient_balance, provider_error, validation_error
from app.core.logging import get_logger
from app.schemas.provider import ProviderBalance

logger = get_logger(__name__)


class PayoutProvider(Protocol):
    def register_seller(self, details: dict[str, Any]) -> str: ...

    def request_payout(
        self,
        destination: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> str: ...

    def get_balance(self) -> ProviderBalance: ...

    def cancel_payout(self, payout_id: str) -> None: ...


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return None


def classify_error_response(response: httpx.Response) -> SettlementError:
    """Turn a non-2xx provider response into a SettlementError."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    error = body.get("error") if isinstance(body.get("error"), dict) else body
    code = error.get("code")
    message = error.get("message") or f"Provider responded with HTTP {response.status_code}"

    if code == "INSUFFICIENT_BALANCE":
        return insufficient_balance(
            message,
            requested=_to_decimal(error.get("requestedAmount")),
            available=_to_decimal(error.get("availableBalance")),
        )
    return provider_error(message, code=code, http_status=response.status_code)


class HttpPayoutProvider:
    """``PayoutProvider`` over the provider's REST API, using httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {api_key}"},
        )

    @classmethod
    def from_settings(cls, config: Settings) -> HttpPayoutProvider:
        return cls(
            base_url=config.provider_base_url,
            api_key=config.provider_api_key,
            timeout_seconds=config.provider_timeout_seconds,
        )

    def close(self) -> None:
        self.client.close()

    def register_seller(self, details: dict[str, Any]) -> str:
        data = self._request("POST", "/v2/sellers", json=details)
        seller_id = data.get("id") or data.get("sellerId")
        if not seller_id:
            raise provider_error("Seller registration response missing 'id'", code="INVALID_RESPONSE")
        return str(seller_id)

    def request_payout(
        self,
        destination: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> str:
        payload = {
            "destination": destination,
            "amount": str(amount),
            "refPayoutId": idempotency_key,
        }
        data = self._request(
            "POST",
            "/v2/payouts",
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )
        payout_id = data.get("id") or data.get("payoutId")
        if not payout_id:
            raise provider_error("Payout response missing 'id'", code="INVALID_RESPONSE")
        return str(payout_id)

    def get_balance(self) -> ProviderBalance:
        data = self._request("GET", "/v2/payouts/balance")
        try:
            balance = ProviderBalance.model_validate(data)
        except ValidationError as exc:
            raise provider_error(
                "Balance response missing available or pending amount",
                code="INVALID_RESPONSE",
            ) from exc
        logger.info(
            "Provider balance: available=%s pending=%s",
            balance.available_amount,
            balance.pending_amount,
        )
        return balance

    def cancel_payout(self, payout_id: str) -> None:
        if not payout_id or not payout_id.strip():
            raise validation_error("payout_id is required", field_errors={"payout_id": ["is required"]})
        self._request("POST", f"/v2/payouts/{payout_id}/cancel")
        logger.info("Provider payout cancelled: payout=%s", payout_id)

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        try:
            response = self.client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Provider call timed out: %s %s", method, path)
            raise provider_error(f"Provider call timed out: {exc}", code="TIMEOUT") from exc
        except httpx.TransportError as exc:
            logger.warning("Provider transport error: %s %s error=%s", method, path, exc)
            raise provider_error(f"Provider unreachable: {exc}", code="NETWORK_ERROR") from exc
        except httpx.HTTPError as exc:
            # Redirect loops, undecodable bodies and the like.
            logger.warning("Provider call failed: %s %s error=%r", method, path, exc)
            raise provider_error(f"Provider call failed: {exc}", code="NETWORK_ERROR") from exc

        if response.is_error:
            error = classify_error_response(response)
            logger.warning(
                "Provider error: %s %s status=%d code=%s",
                method,
                path,
                response.status_code,
                error.provider_code,
            )
            raise error

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise provider_error("Provider returned a non-JSON body", code="INVALID_RESPONSE") from exc
        return data if isinstance(data, dict) else {}
