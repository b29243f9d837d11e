"""HTTP client for the funding platform backend."""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from paysync.config import Settings
from paysync.schemas.bid import BidRecord, SafeTxStatus
from paysync.utils.errors import AuthError, MalformedDataError, TransientError

logger = logging.getLogger(__name__)

_AUTH_STATUSES = {401, 403}
_MAX_ERROR_TEXT = 400
PAYMENT_METHODS = {"safe", "eoa"}


class BackendClient:
    """Thin async wrapper around the backend REST API.

    401/403 answers raise :class:`AuthError`; every other failure (non-2xx,
    timeout, connection error) raises :class:`TransientError`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        headers = {"Accept": "application/json"}
        if settings.BACKEND_API_TOKEN:
            headers["Authorization"] = f"Bearer {settings.BACKEND_API_TOKEN}"
        self._http = httpx.AsyncClient(
            base_url=settings.BACKEND_API_BASE_URL,
            headers=headers,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- transport -----------------------------------------------------------

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        message = f"HTTP {response.status_code}"
        text = response.text
        if text and text.strip():
            message = text[:_MAX_ERROR_TEXT]
        if "application/json" in response.headers.get("content-type", ""):
            try:
                body = response.json()
            except ValueError:
                return message
            if isinstance(body, Mapping) and (body.get("error") or body.get("message")):
                return str(body.get("error") or body.get("message"))
        return message

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        if "application/json" not in response.headers.get("content-type", ""):
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Backend timeout on {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"Backend unreachable on {method} {path}: {exc}") from exc

        if response.status_code in _AUTH_STATUSES:
            raise AuthError(f"HTTP {response.status_code}", status_code=response.status_code)
        if not response.is_success:
            raise TransientError(self._error_message(response), status_code=response.status_code)
        return self._json_body(response)

    # -- endpoints -----------------------------------------------------------

    async def reconcile_safe(self) -> dict[str, Any]:
        """Ask the backend to refresh the execution status of queued multisig payouts."""

        body = await self._request("POST", self.settings.BACKEND_RECONCILE_PATH)
        return dict(body) if isinstance(body, Mapping) else {}

    async def get_bid(self, bid_id: int) -> BidRecord:
        """Fetch the authoritative bid, bypassing any intermediate cache."""

        payload = await self._request(
            "GET",
            f"/bids/{quote(str(int(bid_id)))}",
            params={"_ts": str(time.time_ns())},
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
        )
        if not isinstance(payload, Mapping):
            raise MalformedDataError(f"Bid {bid_id} payload is not an object")
        try:
            return BidRecord.model_validate(dict(payload))
        except ValidationError as exc:
            raise MalformedDataError(f"Bid {bid_id} payload is invalid: {exc}") from exc

    async def pay_milestone(self, bid_id: int, milestone_index: int, method: str = "safe") -> dict[str, Any]:
        """Queue the payout of a milestone (``safe`` multisig or direct ``eoa`` transfer)."""

        if method not in PAYMENT_METHODS:
            raise ValueError(f"Unsupported payment method: {method}")
        if milestone_index < 0:
            raise ValueError("milestone_index must be >= 0")
        body = await self._request(
            "POST",
            f"/bids/{quote(str(int(bid_id)))}/pay-milestone",
            json={"milestoneIndex": milestone_index, "method": method},
        )
        logger.info(
            "Milestone payment queued on backend",
            extra={"bid_id": bid_id, "milestone_index": milestone_index, "method": method},
        )
        return dict(body) if isinstance(body, Mapping) else {}

    async def get_safe_tx(self, safe_tx_hash: str) -> SafeTxStatus:
        """Look up a multisig transaction's execution status."""

        payload = await self._request("GET", f"/safe/tx/{quote(safe_tx_hash, safe='')}")
        if not isinstance(payload, Mapping):
            return SafeTxStatus()
        tx_hash = payload.get("txHash") or payload.get("tx_hash")
        return SafeTxStatus(
            is_executed=bool(payload.get("isExecuted") or payload.get("is_executed")),
            tx_hash=str(tx_hash) if tx_hash else None,
        )


__all__ = ["BackendClient", "PAYMENT_METHODS"]
