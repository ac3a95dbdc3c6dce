"""JSON-RPC ledger client over httpx."""

from __future__ import annotations

import asyncio
import base64
import itertools
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from academy.config import Settings, get_settings
from academy.errors import ExternalServiceError, LedgerRejection

logger = structlog.get_logger()

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class ConfirmationResult:
    signature: str
    err: Any = None

    @property
    def ok(self) -> bool:
        return self.err is None


class LedgerClient:
    """The four ledger operations certificate issuance depends on.

    Transport failures, RPC errors and confirmation timeouts raise
    ExternalServiceError. A send rejected during preflight raises
    LedgerRejection. A transaction that lands but fails is returned as a
    ConfirmationResult with ``err`` set.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> LedgerClient:
        settings = settings or get_settings()
        return cls(
            settings.ledger_rpc_url,
            timeout=settings.ledger_timeout_seconds,
            poll_interval=settings.ledger_poll_interval_seconds,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:  # noqa: ANN401
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ledger_rpc_failed", method=method, error=str(e))
            msg = f"Ledger RPC {method} failed"
            raise ExternalServiceError(msg) from e

        if "error" in body:
            error = body["error"]
            logger.warning("ledger_rpc_error", method=method, error=error)
            if method == "sendTransaction":
                raise LedgerRejection(f"Transaction rejected: {error.get('message', error)}")
            msg = f"Ledger RPC {method} returned an error: {error.get('message', error)}"
            raise ExternalServiceError(msg)
        return body.get("result")

    async def get_rent_exempt_minimum(self, account_size: int) -> int:
        return int(await self._call("getMinimumBalanceForRentExemption", [account_size]))

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        return str(result["value"]["blockhash"])

    async def send_transaction(self, signed: bytes) -> str:
        encoded = base64.b64encode(signed).decode("ascii")
        result = await self._call("sendTransaction", [encoded, {"encoding": "base64"}])
        return str(result)

    async def confirm_transaction(self, signature: str, commitment: str = "finalized") -> ConfirmationResult:
        """Poll signature status until ``commitment`` is reached or an error is reported."""
        target = _COMMITMENT_RANK.get(commitment)
        if target is None:
            msg = f"Unknown commitment level: {commitment}"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            result = await self._call(
                "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
            )
            status = (result or {}).get("value", [None])[0]
            if status is not None:
                if status.get("err") is not None:
                    return ConfirmationResult(signature=signature, err=status["err"])
                reached = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "", -1)
                if reached >= target:
                    return ConfirmationResult(signature=signature)
            if loop.time() >= deadline:
                logger.warning("ledger_confirm_timeout", signature=signature, commitment=commitment)
                msg = f"Transaction {signature} was not {commitment} within {self.timeout}s"
                raise ExternalServiceError(msg)
            await asyncio.sleep(self.poll_interval)
