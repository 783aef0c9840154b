"""
=============================================================================
SERVICE LIFECYCLE AND GRACEFUL SHUTDOWN
=============================================================================

The LifecycleCoordinator owns the process phase and is the only code that
changes it. Everything an orchestrator observes (probe answers, the exit
status, how long shutdown takes) follows from this state machine:

    ┌──────────┐  listen ok   ┌───────┐  SIGTERM/SIGINT  ┌──────────┐
    │ STARTING │ ───────────► │ READY │ ───────────────► │ DRAINING │
    └────┬─────┘              └───┬───┘                  └────┬─────┘
         │ SIGTERM/SIGINT         │                           │
         └────────────────────────┼──────────────────────────►│
         │ listen fails           │ uncaught fault            │ drain done → exit 0
         ▼                        ▼                           │ deadline   → exit 1
    ┌─────────────────────────────────────────────────────────▼─────┐
    │                            STOPPED                            │
    └───────────────────────────────────────────────────────────────┘

    liveness  = phase != STOPPED
    readiness = phase == READY

=============================================================================
SHUTDOWN SEQUENCE
=============================================================================

    signal handler (main thread)
        └─► hands the signal name to a short-lived thread, returns at once
                └─► on_termination_signal()
                        ├─ under lock: READY → DRAINING, record signal and
                        │  deadline, arm the deadline timer
                        └─ server.drain(on_drain_complete)   (non-blocking)

    whichever happens first wins, the loser sees STOPPED and does nothing:

        on_drain_complete()      cancel timer, STOPPED, exit 0
        on_deadline()            log what is still in flight, STOPPED, exit 1

=============================================================================
THE DRAIN TARGET
=============================================================================

The coordinator drives any object providing:

    listen() -> (host, port)       bind; raises OSError on failure
    drain(on_complete) -> None     stop admitting requests; call
                                   on_complete() once none is in flight
    in_flight() -> list[str]       labels of requests still running

HTTPServer is the production implementation; tests use a fake.

=============================================================================
"""

import logging
import os
import resource
import signal
import sys
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_FAILURE = 1

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Phase(Enum):
    """Discrete lifecycle states, in the only order they may occur."""

    STARTING = "starting"
    READY = "ready"
    DRAINING = "draining"
    STOPPED = "stopped"


# Allowed transitions; anything not listed is rejected.
_TRANSITIONS = {
    Phase.STARTING: frozenset({Phase.READY, Phase.DRAINING, Phase.STOPPED}),
    Phase.READY: frozenset({Phase.DRAINING, Phase.STOPPED}),
    Phase.DRAINING: frozenset({Phase.STOPPED}),
    Phase.STOPPED: frozenset(),
}


class StartupError(Exception):
    """The listening socket could not be bound. Fatal, never retried."""


@dataclass
class ProcessState:
    """
    The coordinator's mutable state.

    Attributes:
        phase: Current lifecycle phase.
        ready_at: Clock reading at STARTING → READY. Set once.
        shutdown_signal: Name of the signal that started the drain.
        shutdown_deadline: Clock reading after which shutdown is forced.
                           Set once, on entering DRAINING.
        exit_code: Status the process exits with, once STOPPED.
    """

    phase: Phase = Phase.STARTING
    ready_at: Optional[float] = None
    shutdown_signal: Optional[str] = None
    shutdown_deadline: Optional[float] = None
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class LivenessReport:
    """Answer to "is this process alive?" plus best-effort diagnostics."""

    alive: bool
    phase: Phase
    uptime: float
    diagnostics: Dict[str, Any] = field(default_factory=dict)


def hard_exit(code: int) -> None:
    """
    Flush logs and terminate the whole process immediately.

    ``sys.exit`` would only end the calling thread when invoked from the
    drain waiter or the deadline timer, so ``os._exit`` is used instead.
    """
    logging.shutdown()
    os._exit(code)


class LifecycleCoordinator:
    """
    Drives ProcessState through its phases and enforces a bounded shutdown.

    Usage:
        coordinator = LifecycleCoordinator(server, grace_period=30.0)
        coordinator.install_signal_handlers()
        coordinator.install_fault_handlers()
        coordinator.start()             # binds, then READY

    Args:
        server: The drain target (see module docstring).
        grace_period: Seconds between the termination signal and forced exit.
        exit_func: Called with the exit status once STOPPED. Defaults to
                   hard_exit; tests pass a recorder.
        clock: Monotonic clock used for uptime and the deadline.
        timer_factory: ``threading.Timer``-compatible factory for the
                       deadline timer.
    """

    def __init__(
        self,
        server,
        grace_period: float = 30.0,
        exit_func: Optional[Callable[[int], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        if grace_period <= 0:
            raise ValueError("grace_period must be > 0")

        self._server = server
        self.grace_period = grace_period
        self._exit = exit_func or hard_exit
        self._clock = clock
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._state = ProcessState()
        self._epoch = clock()
        self._timer = None

        self._stopped = threading.Event()
        self._stop_listeners: List[Callable[[], None]] = []

        self._original_signal_handlers: Dict[int, Any] = {}
        self._original_excepthooks: Optional[Tuple[Any, Any]] = None

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def state(self) -> ProcessState:
        """A consistent copy of the current state."""
        with self._lock:
            return replace(self._state)

    @property
    def exit_code(self) -> Optional[int]:
        return self._state.exit_code

    @property
    def time_remaining(self) -> Optional[float]:
        """Seconds left before forced shutdown, None when not draining."""
        deadline = self._state.shutdown_deadline
        if deadline is None or self._state.phase is not Phase.DRAINING:
            return None
        return max(0.0, deadline - self._clock())

    def add_stop_listener(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the process reaches STOPPED, before exit."""
        self._stop_listeners.append(callback)

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until STOPPED; False on timeout."""
        return self._stopped.wait(timeout)

    def _transition(self, target: Phase, *expected: Phase) -> bool:
        """
        Compare-and-swap on the phase. Caller must hold ``_lock``.

        Succeeds only if the current phase is one of ``expected`` and the
        move is in the transition table.
        """
        current = self._state.phase
        if current not in expected or target not in _TRANSITIONS[current]:
            return False

        self._state.phase = target
        logger.debug(f"Phase {current.value} -> {target.value}")
        return True

    # =========================================================================
    # STARTUP
    # =========================================================================

    def start(self) -> bool:
        """
        Bind the server's listening socket and become READY.

        Returns:
            True if READY was reached; False if a termination signal
            arrived during startup (the process is already DRAINING).

        Raises:
            StartupError: If binding failed. The process is STOPPED and
                          must exit with EXIT_FAILURE.
        """
        try:
            host, port = self._server.listen()
        except OSError as e:
            with self._lock:
                stopped = self._transition(Phase.STOPPED, Phase.STARTING)
                if stopped:
                    self._state.exit_code = EXIT_FAILURE
            logger.critical(f"Startup failed, cannot listen: {e}", extra={"error": str(e)})
            if stopped:
                self._notify_stopped()
            raise StartupError(str(e)) from e

        with self._lock:
            if not self._transition(Phase.READY, Phase.STARTING):
                logger.warning(f"Listening on {host}:{port} but already {self._state.phase.value}")
                return False
            self._state.ready_at = self._clock()

        logger.info(
            f"Server started on {host}:{port}",
            extra={"host": host, "port": port, "pid": os.getpid()},
        )
        return True

    # =========================================================================
    # PROBES
    # =========================================================================

    def report_liveness(self) -> LivenessReport:
        """
        Liveness with uptime and diagnostics. Never raises.

        A diagnostic that cannot be collected is left out of the report;
        the liveness answer itself depends only on the phase.
        """
        phase = self._state.phase
        diagnostics: Dict[str, Any] = {"pid": os.getpid()}

        collectors = (
            ("memory", self._memory_snapshot),
            ("in_flight", lambda: len(self._server.in_flight())),
            ("threads", threading.active_count),
        )
        for name, collect in collectors:
            try:
                diagnostics[name] = collect()
            except Exception as e:
                logger.debug(f"Diagnostic '{name}' unavailable: {e}")

        return LivenessReport(
            alive=phase is not Phase.STOPPED,
            phase=phase,
            uptime=max(0.0, self._clock() - self._epoch),
            diagnostics=diagnostics,
        )

    def report_readiness(self) -> bool:
        """True only while READY. Never raises."""
        return self._state.phase is Phase.READY

    @staticmethod
    def _memory_snapshot() -> Dict[str, int]:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is kilobytes on Linux, bytes on macOS
        scale = 1 if sys.platform == "darwin" else 1024
        snapshot = {"max_rss_bytes": usage.ru_maxrss * scale}

        try:
            with open("/proc/self/statm") as f:
                pages = int(f.read().split()[1])
            snapshot["rss_bytes"] = pages * resource.getpagesize()
        except (OSError, ValueError, IndexError):
            pass  # No procfs

        return snapshot

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def on_termination_signal(self, signal_name: str = "SIGTERM") -> bool:
        """
        Begin graceful shutdown. Idempotent.

        Returns:
            True if this call started the drain, False if a shutdown was
            already in progress or the process is STOPPED.
        """
        with self._lock:
            if not self._transition(Phase.DRAINING, Phase.STARTING, Phase.READY):
                phase = self._state.phase
                logger.info(f"{signal_name} received while {phase.value}, ignoring")
                return False

            self._state.shutdown_signal = signal_name
            self._state.shutdown_deadline = self._clock() + self.grace_period

            self._timer = self._timer_factory(self.grace_period, self.on_deadline)
            self._timer.daemon = True
            self._timer.start()

        logger.info(
            f"{signal_name} received, starting graceful shutdown "
            f"(grace period {self.grace_period:g}s)",
            extra={"signal": signal_name, "grace_period": self.grace_period, "pid": os.getpid()},
        )

        self._server.drain(self.on_drain_complete)
        return True

    def on_drain_complete(self) -> bool:
        """
        Called by the server once no request is in flight.

        Returns:
            True if this call stopped the process with EXIT_OK.
        """
        with self._lock:
            if not self._transition(Phase.STOPPED, Phase.DRAINING):
                return False

            if self._timer is not None:
                self._timer.cancel()
            self._state.exit_code = EXIT_OK
            drained_in = self.grace_period - (self._state.shutdown_deadline - self._clock())

        logger.info(
            "Server closed gracefully",
            extra={"drain_seconds": round(max(0.0, drained_in), 3)},
        )
        self._finish(EXIT_OK)
        return True

    def on_deadline(self) -> bool:
        """
        Deadline timer callback: force shutdown if still draining.

        Returns:
            True if this call stopped the process with EXIT_FAILURE.
        """
        with self._lock:
            if not self._transition(Phase.STOPPED, Phase.DRAINING):
                return False
            self._state.exit_code = EXIT_FAILURE

        try:
            requests = list(self._server.in_flight())
        except Exception as e:
            logger.warning(f"Could not list in-flight requests: {e}")
            requests = []

        logger.error(
            f"Forced shutdown: grace period of {self.grace_period:g}s exceeded "
            f"with {len(requests)} request(s) in flight",
            extra={"in_flight": len(requests), "requests": requests},
        )
        self._finish(EXIT_FAILURE)
        return True

    # =========================================================================
    # FATAL FAULTS
    # =========================================================================

    def on_fatal_fault(self, exc: BaseException, origin: str = "main thread") -> bool:
        """
        Log an uncaught fault and terminate with EXIT_FAILURE.

        Returns:
            True if this call stopped the process, False if it was
            already STOPPED.
        """
        logger.critical(
            f"Uncaught exception in {origin}: {exc!r}",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"origin": origin},
        )

        with self._lock:
            if not self._transition(Phase.STOPPED, Phase.STARTING, Phase.READY, Phase.DRAINING):
                return False

            if self._timer is not None:
                self._timer.cancel()
            self._state.exit_code = EXIT_FAILURE

        self._finish(EXIT_FAILURE)
        return True

    def _notify_stopped(self) -> None:
        self._stopped.set()
        for listener in list(self._stop_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Stop listener failed")

    def _finish(self, code: int) -> None:
        self._notify_stopped()
        self._exit(code)

    # =========================================================================
    # PROCESS HOOKS
    # =========================================================================

    def install_signal_handlers(self, signals=TERMINATION_SIGNALS) -> None:
        """
        Route SIGTERM and SIGINT to on_termination_signal.

        Must be called from the main thread. The handler itself only starts
        a thread, so the interrupted code resumes immediately.
        """
        def handler(signum, frame):
            name = signal.Signals(signum).name
            threading.Thread(
                target=self.on_termination_signal,
                args=(name,),
                name=f"signal-{name}",
                daemon=True,
            ).start()

        for sig in signals:
            self._original_signal_handlers[sig] = signal.signal(sig, handler)

    def restore_signal_handlers(self) -> None:
        for sig, original in self._original_signal_handlers.items():
            signal.signal(sig, original)
        self._original_signal_handlers.clear()

    def install_fault_handlers(self) -> None:
        """
        Treat any exception that escapes a thread as fatal.

        Covers the main thread (sys.excepthook) and every other thread
        (threading.excepthook).
        """
        self._original_excepthooks = (sys.excepthook, threading.excepthook)

        def main_hook(exc_type, exc, tb):
            self.on_fatal_fault(exc, "main thread")

        def thread_hook(args):
            if args.exc_type is SystemExit:
                return
            name = args.thread.name if args.thread is not None else "unknown"
            self.on_fatal_fault(args.exc_value, f"thread {name}")

        sys.excepthook = main_hook
        threading.excepthook = thread_hook

    def restore_fault_handlers(self) -> None:
        if self._original_excepthooks is not None:
            sys.excepthook, threading.excepthook = self._original_excepthooks
            self._original_excepthooks = None
