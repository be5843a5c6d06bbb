"""Explicit session/transaction handle for one conversation's kernel work."""
import threading
from typing import Optional

from ..app.config import ConfigurationError
from ..kernel.client import KernelClient, KernelError, KernelUnavailableError
from ..utils.logger import get_logger

logger = get_logger("tools.context")


class KernelContext:
    """Holds the kernel session id and the current transaction id.

    One context belongs to one orchestrator. Lazy creation of the session and
    transaction happens under ``_lock`` so concurrent callers never open two.
    """

    def __init__(self, terminal_id: str, operator_id: str, currency: str):
        self.terminal_id = terminal_id
        self.operator_id = operator_id
        self.currency = currency
        self.session_id: Optional[str] = None
        self.transaction_id: Optional[str] = None
        self._lock = threading.Lock()

    def _ensure_session(self, kernel: KernelClient) -> str:
        if self.session_id:
            return self.session_id
        try:
            session = kernel.create_session(self.terminal_id, self.operator_id)
        except KernelUnavailableError:
            raise
        except KernelError as e:
            raise KernelUnavailableError(f"POS KERNEL SERVICE NOT AVAILABLE: could not create session: {e}") from e
        self.session_id = session.session_id
        logger.info(f"[KERNEL] session ready for terminal {self.terminal_id}")
        return self.session_id

    def ensure_transaction(self, kernel: KernelClient) -> str:
        with self._lock:
            session_id = self._ensure_session(kernel)
            if self.transaction_id:
                return self.transaction_id
            if not self.currency:
                raise ConfigurationError(
                    "DESIGN DEFICIENCY: store currency is not configured; cannot start a kernel transaction"
                )
            txn = kernel.start_transaction(session_id, self.currency)
            self.transaction_id = txn.transaction_id
            logger.info(f"[KERNEL] transaction {self.transaction_id[:8]} started in {self.currency}")
            return self.transaction_id

    @property
    def has_transaction(self) -> bool:
        return bool(self.session_id and self.transaction_id)

    def clear_transaction(self) -> None:
        with self._lock:
            self.transaction_id = None

    def close(self, kernel: KernelClient) -> None:
        with self._lock:
            if self.session_id:
                kernel.close_session(self.session_id)
            self.session_id = None
            self.transaction_id = None
