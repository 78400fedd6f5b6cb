from __future__ import annotations

import random
import time
from typing import Any, Callable, Dict, Optional

import httpx

from ledger.client import RegistryClient
from proofs.errors import LedgerFailure, NotFoundError, REVERT_TASK_MISSING, error_from_revert
from proofs.schemas import Receipt, Task


class HttpRegistryClient(RegistryClient):
    """Ledger gateway client: submit a transaction, then poll until it is final."""

    def __init__(
        self,
        endpoint: str,
        account: str,
        confirmation_timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
        max_retries: int = 3,
        initial_backoff_s: float = 0.5,
        max_backoff_s: float = 5.0,
        request_timeout_s: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(account)
        self.endpoint = endpoint.rstrip("/")
        self.confirmation_timeout_s = float(confirmation_timeout_s)
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self.max_retries = max(0, int(max_retries))
        self.initial_backoff_s = max(0.0, float(initial_backoff_s))
        self.max_backoff_s = max(0.0, float(max_backoff_s))
        self.request_timeout_s = request_timeout_s
        self._transport = transport
        self._sleep = sleep
        self._http: Optional[httpx.Client] = None

    def open(self) -> "HttpRegistryClient":
        if self._http is None:
            self._http = httpx.Client(
                base_url=self.endpoint,
                timeout=httpx.Timeout(self.request_timeout_s),
                transport=self._transport,
            )
        super().open()
        return self

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None
        super().close()

    @staticmethod
    def _is_retryable_status(status_code: int) -> bool:
        return status_code in {408, 425, 429} or status_code >= 500

    def _sleep_before_retry(self, attempt: int) -> None:
        base = self.initial_backoff_s * (2**attempt)
        wait_s = min(self.max_backoff_s, base)
        if wait_s <= 0:
            return
        jitter_max = min(1.0, wait_s * 0.25)
        wait_s += random.uniform(0.0, jitter_max)
        self._sleep(wait_s)

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        retry: bool = True,
    ) -> httpx.Response:
        """Send one request; with `retry`, resend on transport errors and retryable statuses."""

        max_retries = self.max_retries if retry else 0
        for attempt in range(max_retries + 1):
            try:
                response = self._http.request(method, path, json=payload)
            except httpx.RequestError as exc:
                if attempt >= max_retries:
                    raise LedgerFailure(f"Ledger gateway unreachable ({method} {path}): {exc}") from exc
                self._sleep_before_retry(attempt)
                continue

            if self._is_retryable_status(response.status_code) and attempt < max_retries:
                self._sleep_before_retry(attempt)
                continue
            return response
        raise LedgerFailure(f"Ledger gateway request exhausted retries: {method} {path}")

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise LedgerFailure(f"Ledger gateway returned invalid JSON ({response.status_code})") from exc
        if not isinstance(payload, dict):
            raise LedgerFailure("Ledger gateway returned non-object JSON")
        return payload

    def _transact(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        # Sent once: the gateway may apply the transaction even when the response is lost.
        response = self._request(
            "POST",
            "/transactions",
            {"from": self.account, "method": method, "args": args},
            retry=False,
        )
        if response.status_code >= 400:
            detail = self._json_or_text(response)
            if isinstance(detail, dict) and detail.get("revertReason"):
                # Rejected during simulation, before broadcast.
                raise error_from_revert(detail["revertReason"])
            raise LedgerFailure(f"Ledger gateway error {response.status_code} submitting {method}: {detail}")
        tx_hash = self._json(response).get("txHash")
        if not tx_hash:
            raise LedgerFailure(f"Ledger gateway did not return a transaction hash for {method}")
        return self._wait_for_finality(tx_hash)

    @staticmethod
    def _json_or_text(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:2000]

    def _wait_for_finality(self, tx_hash: str) -> Dict[str, Any]:
        """Poll the transaction until confirmed/reverted or the timeout elapses."""

        deadline = time.monotonic() + self.confirmation_timeout_s
        while True:
            response = self._request("GET", f"/transactions/{tx_hash}")
            if response.status_code == 200:
                record = self._json(response)
                if record.get("status") in {"confirmed", "reverted"}:
                    record.setdefault("txHash", tx_hash)
                    return record
            elif response.status_code != 404:
                raise LedgerFailure(f"Ledger gateway error {response.status_code} polling {tx_hash}")
            if time.monotonic() >= deadline:
                raise LedgerFailure(
                    f"Transaction {tx_hash} not confirmed within {self.confirmation_timeout_s:g}s"
                )
            self._sleep(self.poll_interval_s)

    def _fetch_task(self, task_id: int) -> Task:
        response = self._request("GET", f"/tasks/{task_id}")
        if response.status_code == 404:
            raise NotFoundError(REVERT_TASK_MISSING)
        if response.status_code >= 400:
            raise LedgerFailure(f"Ledger gateway error {response.status_code} reading task {task_id}")
        try:
            return Task.from_dict(self._json(response))
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerFailure(f"Malformed task record for {task_id}") from exc

    def _fetch_receipt(self, task_id: int) -> Optional[Receipt]:
        response = self._request("GET", f"/receipts/{task_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise LedgerFailure(f"Ledger gateway error {response.status_code} reading receipt {task_id}")
        try:
            return Receipt.from_dict(self._json(response))
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerFailure(f"Malformed receipt record for {task_id}") from exc
