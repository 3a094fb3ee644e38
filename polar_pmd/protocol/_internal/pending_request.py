# polar_pmd/protocol/_internal/pending_request.py
from __future__ import annotations

import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..errors import CommandTimeout

if TYPE_CHECKING:
    from ..core.messages import ControlResponse
    from ..registry import RequestToken


class PendingRequest:
    """Holds a Future for one outstanding control exchange."""

    def __init__(self, token: "RequestToken", timeout_s: float):
        self.token = token
        self.timeout_s = float(timeout_s)
        self.created_at = time.perf_counter()
        self.future: Future = Future()

    @property
    def request_id(self) -> int:
        return self.token.request_id

    @property
    def cmd_name(self) -> str:
        return self.token.command.describe()

    def add_done_callback(self, cb: Callable[[Future], Any]) -> Any:
        """Forward callback registration to the underlying Future."""
        return self.future.add_done_callback(cb)

    def done(self) -> bool:
        return self.future.done()

    def resolve(self, response: "ControlResponse") -> None:
        if not self.future.done():
            self.future.set_result(response)

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    def wait(self, timeout: Optional[float] = None) -> "ControlResponse":
        """Block until the response arrives; raises CommandTimeout or the failure set by the engine."""
        t = self.timeout_s if timeout is None else float(timeout)
        try:
            return self.future.result(timeout=t)
        except FutureTimeout:
            raise CommandTimeout(self.cmd_name, t) from None
