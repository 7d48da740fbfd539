"""Transfer gateway client.

A payout is two dependent remote calls: a transfer from the platform balance
to the vendor's connected account, then a payout from that account to the
vendor's bank. Both carry client-generated idempotency keys so a repeated call
for the same batch is deduplicated by the gateway.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Protocol

import httpx

from vendorpay.common.errors import ErrorKind, GatewayError
from vendorpay.common.logging import logger
from vendorpay.common.metrics import gateway_call_seconds


@dataclass(frozen=True)
class TransferResult:
    id: str
    status: str


@dataclass(frozen=True)
class GatewayPayout:
    id: str
    status: str
    arrival_date: datetime | None
    created_at: datetime | None


class TransferGateway(Protocol):
    async def transfer(
        self,
        destination: str,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> TransferResult: ...

    async def payout(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        on_behalf_of: str,
        idempotency_key: str,
    ) -> GatewayPayout: ...


RETRYABLE_STATUS_KINDS = {
    408: ErrorKind.NETWORK_TIMEOUT,
    504: ErrorKind.NETWORK_TIMEOUT,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.TEMPORARILY_UNAVAILABLE,
    502: ErrorKind.TEMPORARILY_UNAVAILABLE,
    503: ErrorKind.TEMPORARILY_UNAVAILABLE,
}

# Machine-readable `code` values the gateway may return in an error body.
ERROR_CODE_KINDS = {
    "rate_limit": ErrorKind.RATE_LIMITED,
    "insufficient_funds": ErrorKind.INSUFFICIENT_FUNDS,
    "balance_insufficient": ErrorKind.INSUFFICIENT_FUNDS,
    "temporarily_unavailable": ErrorKind.TEMPORARILY_UNAVAILABLE,
}

FAILED_PAYOUT_STATUSES = {"failed", "canceled"}


def kind_for_response(status_code: int, error_code: str | None) -> ErrorKind:
    """Classify a non-2xx gateway response by status code and error code."""

    if error_code and error_code in ERROR_CODE_KINDS:
        return ERROR_CODE_KINDS[error_code]
    if status_code == 402:
        return ErrorKind.INSUFFICIENT_FUNDS
    return RETRYABLE_STATUS_KINDS.get(status_code, ErrorKind.GATEWAY_REJECTED)


def parse_gateway_time(value: Any) -> datetime | None:
    """Accept epoch seconds or ISO-8601 strings."""

    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpTransferGateway:
    """httpx-backed gateway client."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._api_key = api_key

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, idempotency_key: str, on_behalf_of: str | None = None) -> dict[str, str]:
        headers = {"Idempotency-Key": idempotency_key}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if on_behalf_of:
            headers["Connected-Account"] = on_behalf_of
        return headers

    async def _post(self, operation: str, path: str, body: dict, headers: dict[str, str]) -> dict:
        start = perf_counter()
        outcome = "error"
        try:
            resp = await self._client.post(path, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise GatewayError(
                f"gateway {operation} timed out", ErrorKind.NETWORK_TIMEOUT, {"operation": operation}
            ) from exc
        except httpx.TransportError as exc:
            raise GatewayError(
                f"gateway {operation} unreachable: {exc}",
                ErrorKind.TEMPORARILY_UNAVAILABLE,
                {"operation": operation},
            ) from exc
        else:
            if resp.status_code >= 400:
                try:
                    payload = resp.json()
                except ValueError:
                    payload = {}
                if not isinstance(payload, dict):
                    payload = {}
                error = payload.get("error")
                error_code = error.get("code") if isinstance(error, dict) else payload.get("code")
                message = error.get("message") if isinstance(error, dict) else payload.get("message")
                kind = kind_for_response(resp.status_code, error_code)
                logger.warning(
                    "gateway_error operation=%s status=%s code=%s kind=%s",
                    operation,
                    resp.status_code,
                    error_code,
                    kind.value,
                )
                raise GatewayError(
                    f"gateway {operation} failed: {resp.status_code} {message or resp.reason_phrase}",
                    kind,
                    {"operation": operation, "status_code": resp.status_code, "code": error_code},
                    status_code=resp.status_code,
                )
            outcome = "ok"
            data = resp.json()
            return data.get("data", data)
        finally:
            gateway_call_seconds.labels(service="payouts", operation=operation, outcome=outcome).observe(
                max(0.0, perf_counter() - start)
            )

    async def transfer(
        self,
        destination: str,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> TransferResult:
        data = await self._post(
            "transfer",
            "/v1/transfers",
            {"destination": destination, "amount": amount, "currency": currency, "metadata": metadata},
            self._headers(idempotency_key),
        )
        return TransferResult(id=data["id"], status=data.get("status", "paid"))

    async def payout(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        on_behalf_of: str,
        idempotency_key: str,
    ) -> GatewayPayout:
        data = await self._post(
            "payout",
            "/v1/payouts",
            {"amount": amount, "currency": currency, "metadata": metadata},
            self._headers(idempotency_key, on_behalf_of=on_behalf_of),
        )
        status = data.get("status", "pending")
        if status in FAILED_PAYOUT_STATUSES:
            raise GatewayError(
                f"gateway payout {data.get('id')} returned status {status}",
                ErrorKind.GATEWAY_REJECTED,
                {"operation": "payout", "payout_ref": data.get("id"), "status": status},
            )
        return GatewayPayout(
            id=data["id"],
            status=status,
            arrival_date=parse_gateway_time(data.get("arrival_date")),
            created_at=parse_gateway_time(data.get("created")),
        )
