"""
In-flight request tracking.

The tracker answers the one question drain depends on: "is any admitted
request still running?"

    begin("GET /slow")  ──► token        (admitted, counted)
    ...handler runs...
    end(token)                           (count - 1, waiters notified)

    close()                              no more admissions:
    begin(...)          ──► None         caller answers 503

    wait_idle(timeout)                   blocks until count == 0

    with hold():                         not counted, but keeps wait_idle()
        ...write the response...         from returning until the bytes
                                         are on the wire

Admission and closing share one lock, so there is no window in which a
request is admitted after close() returned, and wait_idle() can never
miss a request that was admitted before it.
"""

import itertools
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional


@dataclass(frozen=True)
class InFlightRequest:
    """Identity of one admitted request, as reported on forced shutdown."""

    token: int
    label: str
    started_at: float

    def describe(self, now: float) -> str:
        return f"{self.label} ({now - self.started_at:.1f}s)"


class InFlightTracker:
    """
    Counts admitted requests and lets one thread wait for them to finish.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._cond = threading.Condition(threading.Lock())
        self._active: Dict[int, InFlightRequest] = {}
        self._tokens = itertools.count(1)
        self._closed = False
        self._holds = 0

    @property
    def count(self) -> int:
        with self._cond:
            return len(self._active)

    @property
    def closed(self) -> bool:
        return self._closed

    def begin(self, label: str) -> Optional[int]:
        """
        Admit a request.

        Returns:
            A token to pass to end(), or None if admissions are closed.
        """
        with self._cond:
            if self._closed:
                return None
            token = next(self._tokens)
            self._active[token] = InFlightRequest(token, label, self._clock())
            return token

    def end(self, token: int) -> None:
        """Release an admitted request. Unknown tokens are ignored."""
        with self._cond:
            self._active.pop(token, None)
            if self._idle():
                self._cond.notify_all()

    def close(self) -> int:
        """
        Stop admitting requests.

        Returns:
            The number of requests still in flight at the moment of closing.
        """
        with self._cond:
            self._closed = True
            return len(self._active)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no request is in flight.

        Returns:
            True when idle, False if ``timeout`` elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(self._idle, timeout=timeout)

    def snapshot(self) -> List[str]:
        """Human readable list of in-flight requests, oldest first."""
        now = self._clock()
        with self._cond:
            requests = sorted(self._active.values(), key=lambda r: r.started_at)
        return [r.describe(now) for r in requests]

    @contextmanager
    def hold(self) -> Iterator[None]:
        """
        Delay idleness while the caller finishes a response.

        The drain guard releases its token as soon as the handler returns;
        the connection still has to send the bytes. Holding the tracker
        around handle-and-send keeps the process from exiting in between.
        A hold taken after close() does not count: nothing taken then can
        be admitted, and late 503s must not stretch the drain.
        """
        with self._cond:
            counted = not self._closed
            if counted:
                self._holds += 1
        try:
            yield
        finally:
            if counted:
                with self._cond:
                    self._holds -= 1
                    if self._idle():
                        self._cond.notify_all()

    def _idle(self) -> bool:
        """Caller must hold ``_cond``."""
        return not self._active and self._holds == 0
