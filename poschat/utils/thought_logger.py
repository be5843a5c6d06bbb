"""Buffered reasoning trace.

Pipeline stages push short "thoughts" here instead of writing to the log
directly. A daemon timer drains the queue on a fixed interval so that a slow
log sink never holds up a customer turn.
"""
import queue
import threading
from datetime import datetime
from typing import Callable, List, Optional

from .logger import get_logger


class ThoughtLogger:
    """Queue-backed trace logger flushed by a background timer."""

    def __init__(self, interval: float = 0.1, sink: Optional[Callable[[str], None]] = None, autostart: bool = True):
        self.interval = interval
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._sink = sink or get_logger("thoughts").info
        self._timer: Optional[threading.Timer] = None
        self._closed = False
        self._lock = threading.Lock()
        if autostart:
            self._schedule()

    def log_thought(self, thought: str, confidence: float = None) -> None:
        if confidence is not None:
            thought = f"{thought} (confidence: {confidence:.2f})"
        stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self._queue.put(f"[{stamp}] {thought}")

    def log_step(self, step: int, description: str) -> None:
        self.log_thought(f"Step {step}: {description}")

    def log_decision(self, decision: str, reasoning: str) -> None:
        self.log_thought(f"Decision: {decision} | Reasoning: {reasoning}")

    def flush(self) -> int:
        """Drain everything queued so far into the sink. Returns the number of entries written."""
        batch: List[str] = []
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break
        for entry in batch:
            try:
                self._sink(entry)
            except Exception:
                # Trace output is best effort
                continue
        return len(batch)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.flush()

    def _schedule(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._timer = threading.Timer(self.interval, self._tick)
            self._timer.daemon = True
            self._timer.start()

    def _tick(self) -> None:
        try:
            self.flush()
        finally:
            self._schedule()
