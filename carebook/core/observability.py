import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class TransactionContext:
    """Per-operation record of a transactional unit of work.

    Built once per service call and handed to the observer on every lifecycle
    event, so nothing about in-flight transactions lives in module state.
    """

    operation: str
    context: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=time.monotonic)
    attempts: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((time.monotonic() - self.started_at) * 1000, 2)


class TransactionObserver(Protocol):
    """Receives start/retry/success/error events for transactional operations."""

    def started(self, tx: TransactionContext) -> None:
        ...

    def retrying(self, tx: TransactionContext, error: BaseException) -> None:
        ...

    def succeeded(self, tx: TransactionContext, result: Optional[Dict[str, Any]] = None) -> None:
        ...

    def failed(self, tx: TransactionContext, error: BaseException) -> None:
        ...


class LoggingTransactionObserver:
    """Default observer: writes transaction events through `logging`."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def _prefix(self, tx: TransactionContext) -> str:
        if tx.correlation_id:
            return f"[Transaction {tx.transaction_id} req={tx.correlation_id}]"
        return f"[Transaction {tx.transaction_id}]"

    def started(self, tx: TransactionContext) -> None:
        self._log.info(f"{self._prefix(tx)} Started {tx.operation} context={tx.context}")

    def retrying(self, tx: TransactionContext, error: BaseException) -> None:
        self._log.warning(
            f"{self._prefix(tx)} Write conflict on attempt {tx.attempts} of {tx.operation}, "
            f"retrying: {type(error).__name__}: {error}"
        )

    def succeeded(self, tx: TransactionContext, result: Optional[Dict[str, Any]] = None) -> None:
        self._log.info(
            f"{self._prefix(tx)} Completed {tx.operation} in {tx.elapsed_ms}ms "
            f"after {tx.attempts} attempt(s) result={result or {}}"
        )

    def failed(self, tx: TransactionContext, error: BaseException) -> None:
        code = getattr(error, "code", None)
        self._log.error(
            f"{self._prefix(tx)} Failed {tx.operation} in {tx.elapsed_ms}ms "
            f"code={code} error={type(error).__name__}: {error}"
        )


default_observer = LoggingTransactionObserver()
