"""
Ledger Synchronizer

Fire-and-forget anchoring of completed ownership transfers to an external
ledger. The off-chain registry is authoritative; the anchor is advisory.

    orchestrator ── submit(TransferAnchor) ──▶ queue ──▶ worker thread
                                                          │
                               Retry ▶ CircuitBreaker ▶ Timeout ▶ adapter.anchor()
                                                          │
                                         on_anchored(anchor, receipt) | log + count

``submit`` never raises and never blocks: a full queue drops the anchor with
an error log. Failures inside the worker are logged and counted in
``metrics``; they are never surfaced to the workflow transition that queued
the anchor.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from landreg.config import LandregConfig
from landreg.core import canonical_digest, to_iso
from landreg.observability import EngineLayer, get_logger
from landreg.resilience import (
    BackoffStrategy,
    CircuitBreaker,
    CircuitBreakerError,
    RetryExhaustedError,
    RetryPolicy,
    Timeout,
)

log = get_logger("synchronizer", EngineLayer.LEDGER)


@dataclass(frozen=True)
class TransferAnchor:
    """The fact a completed transfer commits to the ledger."""
    case_id: int
    asset_id: int
    new_owner: str
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "asset_id": self.asset_id,
            "new_owner": self.new_owner,
            "completed_at": to_iso(self.completed_at),
        }

    @property
    def digest(self) -> str:
        return canonical_digest(self.to_dict())


@runtime_checkable
class LedgerAdapter(Protocol):
    """Anchors ``(asset_id, owner, timestamp)``; returns a receipt id or raises."""

    def anchor(self, asset_id: int, owner: str, timestamp: datetime) -> str:
        ...


class LedgerUnavailable(Exception):
    """Raised by adapters when the ledger rejects or cannot take a write."""


class InMemoryLedgerAdapter:
    """
    Ledger adapter for tests and the demo.

    ``fail_next(n)`` makes the next ``n`` calls raise ``LedgerUnavailable``;
    ``delay_seconds`` simulates a slow ledger.
    """

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds
        self.entries: List[Dict[str, Any]] = []
        self.calls = 0
        self._failures_remaining = 0
        self._lock = threading.Lock()

    def fail_next(self, n: int) -> None:
        with self._lock:
            self._failures_remaining = n

    def anchor(self, asset_id: int, owner: str, timestamp: datetime) -> str:
        with self._lock:
            self.calls += 1
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                raise LedgerUnavailable("ledger rejected the write")
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        with self._lock:
            receipt = "0x" + canonical_digest({
                "seq": len(self.entries) + 1,
                "asset_id": asset_id,
                "owner": owner,
                "timestamp": to_iso(timestamp),
            })
            self.entries.append({
                "receipt": receipt,
                "asset_id": asset_id,
                "owner": owner,
                "timestamp": to_iso(timestamp),
            })
            return receipt


@dataclass
class LedgerMetrics:
    submitted: int = 0
    anchored: int = 0
    failed: int = 0
    dropped: int = 0
    retries: int = 0
    circuit_rejections: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitted": self.submitted,
            "anchored": self.anchored,
            "failed": self.failed,
            "dropped": self.dropped,
            "retries": self.retries,
            "circuit_rejections": self.circuit_rejections,
            "last_error": self.last_error,
        }


_STOP = object()


class LedgerSynchronizer:
    """Background worker that anchors completed transfers."""

    def __init__(
        self,
        adapter: LedgerAdapter,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 30.0,
        queue_size: int = 1000,
        breaker_failure_threshold: int = 5,
        breaker_reset_seconds: float = 60.0,
        on_anchored: Optional[Callable[[TransferAnchor, str], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.on_anchored = on_anchored
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()
        self._metrics = LedgerMetrics()

        self.breaker = CircuitBreaker(
            "ledger-anchor",
            failure_threshold=breaker_failure_threshold,
            reset_timeout_seconds=breaker_reset_seconds,
            on_state_change=lambda old, new: log.warning(
                "Ledger circuit changed state", old_state=old.name, new_state=new.name
            ),
        )
        self.retry = RetryPolicy(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            backoff_strategy=BackoffStrategy.EXPONENTIAL_JITTER,
            non_retryable_exceptions=(CircuitBreakerError,),
            on_retry=self._on_retry,
            sleep=sleep,
        )
        self.timeout = Timeout(seconds=timeout_seconds, name="ledger-anchor")

    @classmethod
    def from_config(
        cls,
        adapter: LedgerAdapter,
        config: LandregConfig,
        on_anchored: Optional[Callable[[TransferAnchor, str], None]] = None,
    ) -> "LedgerSynchronizer":
        ledger = config.ledger
        return cls(
            adapter,
            timeout_seconds=ledger.timeout_seconds.get(),
            max_attempts=ledger.max_retry_attempts.get(),
            base_delay_seconds=ledger.base_delay_seconds.get(),
            max_delay_seconds=ledger.max_delay_seconds.get(),
            queue_size=ledger.queue_size.get(),
            breaker_failure_threshold=ledger.breaker_failure_threshold.get(),
            breaker_reset_seconds=ledger.breaker_reset_seconds.get(),
            on_anchored=on_anchored,
        )

    @property
    def metrics(self) -> LedgerMetrics:
        with self._lock:
            return LedgerMetrics(**self._metrics.__dict__)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(
                target=self._process_loop,
                daemon=True,
                name="ledger-synchronizer",
            )
            self._worker.start()
        log.info("Ledger synchronizer started")

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            worker = self._worker
            self._worker = None
        deadline = time.monotonic() + timeout
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            log.warning(
                "Ledger queue full, worker not signalled to stop",
                pending=self._queue.qsize(),
                timeout_seconds=timeout,
            )
        if worker:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))
        log.info("Ledger synchronizer stopped", pending=self._queue.qsize())

    def submit(self, anchor: TransferAnchor) -> bool:
        """Queue ``anchor``; returns False (and logs) if it could not be queued."""
        if not self._running:
            self.start()
        try:
            self._queue.put_nowait(anchor)
        except queue.Full:
            with self._lock:
                self._metrics.dropped += 1
            log.error(
                "Ledger queue full, anchor dropped",
                error_code="ledger_queue_full",
                case_id=anchor.case_id,
                asset_id=anchor.asset_id,
            )
            return False
        with self._lock:
            self._metrics.submitted += 1
        return True

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued anchor has been processed."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def _on_retry(self, attempt: int, exc: BaseException, delay: float) -> None:
        with self._lock:
            self._metrics.retries += 1
        log.warning("Retrying ledger anchor", attempt=attempt, error=str(exc), delay_seconds=round(delay, 3))

    def _process_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._process(item)
            finally:
                self._queue.task_done()

    def _anchor_once(self, anchor: TransferAnchor) -> str:
        return self.breaker.call(lambda: self.timeout.execute(
            lambda: self.adapter.anchor(anchor.asset_id, anchor.new_owner, anchor.completed_at)
        ))

    def _process(self, anchor: TransferAnchor) -> None:
        try:
            receipt = self.retry.execute(lambda: self._anchor_once(anchor))
        except CircuitBreakerError as e:
            with self._lock:
                self._metrics.failed += 1
                self._metrics.circuit_rejections += 1
                self._metrics.last_error = str(e)
            log.error("Ledger circuit open, anchor skipped", error_code="ledger_circuit_open",
                      case_id=anchor.case_id, asset_id=anchor.asset_id)
            return
        except RetryExhaustedError as e:
            with self._lock:
                self._metrics.failed += 1
                self._metrics.last_error = str(e.last_exception)
            log.error("Ledger anchor failed", error_code="ledger_anchor_failed",
                      case_id=anchor.case_id, asset_id=anchor.asset_id, attempts=e.attempts,
                      error=str(e.last_exception))
            return
        except Exception as e:
            with self._lock:
                self._metrics.failed += 1
                self._metrics.last_error = str(e)
            log.error("Ledger anchor raised", error_code="ledger_anchor_error", exc_info=True,
                      case_id=anchor.case_id, asset_id=anchor.asset_id)
            return

        with self._lock:
            self._metrics.anchored += 1
        log.info("Transfer anchored", case_id=anchor.case_id, asset_id=anchor.asset_id,
                 receipt=receipt, digest=anchor.digest)

        if self.on_anchored is not None:
            try:
                self.on_anchored(anchor, receipt)
            except Exception:
                log.error("Recording ledger receipt failed", error_code="ledger_receipt_error",
                          exc_info=True, case_id=anchor.case_id)
