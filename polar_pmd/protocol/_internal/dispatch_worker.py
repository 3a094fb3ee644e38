# polar_pmd/protocol/_internal/dispatch_worker.py
from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from polar_pmd.protocol.engine import LoopResult, ProtocolEngine


class DispatchWorker(threading.Thread):
    """Thread that runs the dispatch loop for a background session."""

    def __init__(self, engine: "ProtocolEngine", handler: Any):
        super().__init__(daemon=True, name="pmd-dispatch")
        self.engine = engine
        self.handler = handler
        self._stop_event = threading.Event()
        self.result: Optional["LoopResult"] = None
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.result = self.engine.run(self.handler, stop_event=self._stop_event)
        except Exception as e:
            self.error = e
            self.engine._log.exception("DISPATCH_WORKER_EXCEPTION")

    def stop(self) -> None:
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> Optional["LoopResult"]:
        """Join the thread; re-raise what ended it, if it did not end cleanly."""
        self.join(timeout)
        if self.error is not None:
            raise self.error
        return self.result
