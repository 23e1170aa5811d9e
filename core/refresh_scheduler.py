"""
refresh_scheduler.py — keeps the displayed code and countdown in step with
the 30-second TOTP windows.

Model
-----
- Two states: IDLE (no secret) and RUNNING (bound to one secret).
- Every run owns a cancellation Event and, unless interval is None, one
  daemon thread that ticks once per second.
- A tick computes the countdown, recomputes the code when a new window has
  begun, and publishes an OtpTick. Publishing goes through one lock and is
  refused for any run that is no longer current, so a computation that
  finishes after stop() or a secret switch is dropped.
- Observers either poll snapshot(), pass a listener, or iterate a
  Subscription (ends when the run stops).

Example:
    scheduler = RefreshScheduler(TotpEngine())
    scheduler.start("AB12CD34EF56GH78")
    for tick in scheduler.subscribe():
        print(tick.code, tick.seconds_remaining)
"""

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from .otp_core import TotpEngine, seconds_remaining, time_step

logger = logging.getLogger(__name__)

# --- Config / constants ----------------------------------------------------
TICK_INTERVAL = 1.0         # seconds between ticks (1 Hz)
HIGHLIGHT_SECONDS = 0.25    # how long `refreshed` stays set after a new code
SUBSCRIPTION_BACKLOG = 64   # unread ticks kept per subscription; oldest dropped first
PLACEHOLDER_CODE = "------"
_END = object()


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class OtpTick:
    code: str
    seconds_remaining: int
    time_step: int
    refreshed: bool = False

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "remaining": self.seconds_remaining,
            "timeStep": self.time_step,
            "refreshed": self.refreshed,
        }


class Subscription:
    """
    Blocking iterator over published ticks; stops when the run ends.

    Callers should close() a subscription they stop reading. Until then it
    stays registered, holding at most `backlog` unread ticks (a slow reader
    loses the oldest ones, never the end marker).
    """

    def __init__(self, scheduler: "RefreshScheduler", backlog: int = SUBSCRIPTION_BACKLOG):
        self._scheduler = scheduler
        self._queue = queue.Queue(maxsize=backlog)
        self.closed = False

    def _offer(self, item) -> None:
        # Only the publisher puts, so after dropping one item the put fits
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def _put(self, tick: OtpTick) -> None:
        self._offer(tick)

    def _end(self) -> None:
        self._offer(_END)

    def get(self, timeout: float = None) -> Optional[OtpTick]:
        """
        Next tick, or None once the stream has ended.

        Raises:
            queue.Empty: nothing arrived within `timeout`
        """
        if self.closed:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _END:
            self.closed = True
            return None
        return item

    def __iter__(self):
        return self

    def __next__(self) -> OtpTick:
        tick = self.get()
        if tick is None:
            raise StopIteration
        return tick

    def close(self) -> None:
        self._scheduler.unsubscribe(self)
        self.closed = True


class _Run:
    """Per-secret state; never shared between two secrets."""

    def __init__(self, secret: str):
        self.secret = secret
        self.cancelled = threading.Event()
        self.tick_lock = threading.Lock()
        self.code = None
        self.time_step = None
        self.thread = None
        self.highlight_timer = None
        self.subscribers = []


class RefreshScheduler:
    """
    Drives periodic TOTP recomputation for the active secret.

    Arguments:
        engine: TotpEngine used for every computation
        clock: returns epoch seconds (default time.time)
        interval: seconds between ticks; None disables the timer thread so
            callers drive tick() themselves
        highlight_seconds: lifetime of the `refreshed` flag; None keeps it
            until the next tick
        listener: called with every published OtpTick, from the publishing
            thread while the publish lock is held; exceptions are logged
    """

    def __init__(
        self,
        engine: TotpEngine = None,
        clock: Callable[[], float] = time.time,
        interval: Optional[float] = TICK_INTERVAL,
        highlight_seconds: Optional[float] = HIGHLIGHT_SECONDS,
        listener: Callable[[OtpTick], None] = None,
    ):
        self.engine = engine or TotpEngine()
        self._clock = clock
        self._interval = interval
        self._highlight_seconds = highlight_seconds
        self._listener = listener
        self._lock = threading.RLock()
        self._run = None
        self._latest = None
        self._subscribers: List[Subscription] = []

    # --- lifecycle ---------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._run is not None else SchedulerState.IDLE

    @property
    def active_secret(self) -> Optional[str]:
        run = self._run
        return run.secret if run is not None else None

    def start(self, secret: str) -> OtpTick:
        """
        Enter RUNNING for `secret`, replacing any previous run.

        The previous run is fully cancelled (timer, pending highlight,
        subscribers) before the new one computes its first code.

        Returns:
            the first published tick
        """
        with self._lock:
            previous = self._detach()
            run = _Run(secret)
            self._run = run
        self._finish(previous)
        logger.info("OTP refresh started for key %s...", secret[:4])

        first = self._tick(run)
        if self._interval is not None and not run.cancelled.is_set():
            run.thread = threading.Thread(
                target=self._loop, args=(run,), name="otp-refresh", daemon=True
            )
            run.thread.start()
        return first

    def stop(self) -> None:
        """Back to IDLE. Safe to call when already idle."""
        with self._lock:
            previous = self._detach()
        if previous is not None:
            self._finish(previous)
            logger.info("OTP refresh stopped")

    def close(self, timeout: float = 1.0) -> None:
        """Stop and wait briefly for the timer thread to exit."""
        run = self._run
        self.stop()
        if run is not None and run.thread is not None and run.thread is not threading.current_thread():
            run.thread.join(timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _detach(self) -> Optional[_Run]:
        # caller holds self._lock
        run, self._run = self._run, None
        if run is None:
            return None
        run.cancelled.set()
        if run.highlight_timer is not None:
            run.highlight_timer.cancel()
            run.highlight_timer = None
        self._latest = None
        run.subscribers, self._subscribers = self._subscribers, []
        return run

    def _finish(self, run: Optional[_Run]) -> None:
        if run is None:
            return
        for sub in run.subscribers:
            sub._end()
        run.subscribers = []

    # --- ticking -----------------------------------------------------------
    def tick(self) -> Optional[OtpTick]:
        """Process one tick for the current run (None when idle or cancelled)."""
        run = self._run
        if run is None:
            return None
        return self._tick(run)

    def _loop(self, run: _Run) -> None:
        while not run.cancelled.wait(self._next_delay()):
            self._tick(run)
        logger.debug("Refresh thread for key %s... exiting", run.secret[:4])

    def _next_delay(self) -> float:
        # Land just after the next wall-clock second
        now = self._clock()
        return self._interval - (now % self._interval) + 0.001

    def _tick(self, run: _Run) -> Optional[OtpTick]:
        with run.tick_lock:
            if run.cancelled.is_set():
                return None
            now = self._clock()
            step = time_step(now)
            remaining = seconds_remaining(now)
            refreshed = False

            if step != run.time_step:
                # New window (remaining == 30), or the first tick of the run
                code = self._compute(run, step)
                if run.cancelled.is_set():
                    logger.debug("Dropping code for step %d: run was cancelled", step)
                    return None
                if code is not None:
                    run.code = code
                    run.time_step = step
                    refreshed = True

            tick = OtpTick(
                code=run.code or PLACEHOLDER_CODE,
                seconds_remaining=remaining,
                time_step=run.time_step if run.time_step is not None else step,
                refreshed=refreshed,
            )
            if not self._publish(run, tick):
                return None
            if refreshed:
                self._schedule_highlight_clear(run, tick)
            return tick

    def _compute(self, run: _Run, step: int) -> Optional[str]:
        try:
            return self.engine.compute(run.secret, step)
        except Exception:
            # Keep the previous code; the thread must survive engine failures
            logger.exception("OTP computation failed for step %d", step)
            return None

    # --- publishing --------------------------------------------------------
    def _publish(self, run: _Run, tick: OtpTick) -> bool:
        with self._lock:
            if run is not self._run or run.cancelled.is_set():
                return False
            self._latest = tick
            for sub in self._subscribers:
                sub._put(tick)
            if self._listener is not None:
                try:
                    self._listener(tick)
                except Exception:
                    logger.exception("OTP listener failed for step %d", tick.time_step)
            return True

    def _schedule_highlight_clear(self, run: _Run, tick: OtpTick) -> None:
        if self._highlight_seconds is None:
            return
        with self._lock:
            if run.cancelled.is_set():
                return
            if run.highlight_timer is not None:
                run.highlight_timer.cancel()
            timer = threading.Timer(self._highlight_seconds, self._clear_highlight, args=(run, tick))
            timer.daemon = True
            run.highlight_timer = timer
            timer.start()

    def _clear_highlight(self, run: _Run, tick: OtpTick) -> None:
        with self._lock:
            if self._latest is not tick:
                return
            run.highlight_timer = None
            self._publish(run, replace(tick, refreshed=False))

    # --- observation -------------------------------------------------------
    def snapshot(self) -> Optional[OtpTick]:
        return self._latest

    def subscribe(self) -> Subscription:
        """
        New subscription, primed with the latest tick.

        Subscribing while IDLE returns an already-ended subscription.
        """
        sub = Subscription(self)
        with self._lock:
            if self._run is None:
                sub._end()
                return sub
            if self._latest is not None:
                sub._put(self._latest)
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)
