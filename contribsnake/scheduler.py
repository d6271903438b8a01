"""Background tick loop, periodic autosave, and the final-save shutdown hook.

Each scheduler owns one daemon thread and a ``threading.Event`` used as its
cancellation token, so ``stop()`` is deterministic and tests can drive them
without waiting on real intervals.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from . import config
from .board import Board
from .engine import DecisionLoop, Outcome, TickResult
from .persistence import PersistenceStore, SaveResult
from .qlearning import QLearningAgent

logger = logging.getLogger(__name__)


class TickScheduler:
    """Drive ``loop.tick`` strictly one tick at a time at the loop's cadence."""

    def __init__(
        self,
        loop: DecisionLoop,
        board_provider: Callable[[], Board],
        *,
        on_tick: Optional[Callable[[TickResult], None]] = None,
    ) -> None:
        self.loop = loop
        self.board_provider = board_provider
        self.on_tick = on_tick
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _step(self) -> TickResult:
        board = self.board_provider()
        result = self.loop.tick(board)
        self.ticks += 1
        if self.on_tick is not None:
            self.on_tick(result)
        return result

    def run_for(self, ticks: int) -> int:
        """Run up to ``ticks`` ticks synchronously with no sleeping; returns ticks run."""
        self._stop.clear()
        done = 0
        while done < ticks and not self._stop.is_set():
            if self._step().outcome is Outcome.IDLE:
                break
            done += 1
        return done

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self._step()
            except Exception:
                logger.exception("Tick failed; stopping scheduler")
                self._stop.set()
                break
            delay = self.loop.interval(self.board_provider()) - (time.monotonic() - started)
            if self._stop.wait(max(0.0, delay)):
                break

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="snake-ticks", daemon=True)
        self._thread.start()

    def wait(self, poll: float = 0.5) -> None:
        """Block until the tick thread exits (polling keeps Ctrl-C responsive)."""
        thread = self._thread
        while thread is not None and thread.is_alive():
            thread.join(timeout=poll)

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None


class AutoSaver:
    """Fire-and-forget snapshot writer.

    Saves every ``interval`` seconds and whenever ``request()`` is called. Writes
    happen on the saver's own thread; failures are logged and not retried until
    the next trigger.
    """

    def __init__(
        self,
        store: PersistenceStore,
        agent: QLearningAgent,
        *,
        interval: float = config.AUTOSAVE_INTERVAL,
    ) -> None:
        self.store = store
        self.agent = agent
        self.interval = float(interval)
        self.saves = 0
        self.failures = 0
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._save_lock = threading.Lock()
        self._saving_on: Optional[int] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _save(self, reason: str, timeout: Optional[float] = None) -> SaveResult:
        if self._saving_on == threading.get_ident():
            logger.warning("Save (%s) skipped: this thread is already saving", reason)
            return SaveResult(ok=False, error="save already in progress")
        if not self._save_lock.acquire(timeout=-1 if timeout is None else timeout):
            logger.warning("Save (%s) skipped: previous save still running after %.1fs", reason, timeout)
            return SaveResult(ok=False, error="save already in progress")
        self._saving_on = threading.get_ident()
        try:
            result = self.store.save(self.agent.to_snapshot())
        except Exception as exc:
            logger.error("Autosave (%s) failed: %s", reason, exc)
            self.failures += 1
            return SaveResult(ok=False, error=str(exc))
        finally:
            self._saving_on = None
            self._save_lock.release()
        if result.ok:
            self.saves += 1
            logger.debug("Autosave (%s) wrote %s", reason, result.path)
        else:
            self.failures += 1
            logger.error("Autosave (%s) failed: %s", reason, result.error)
        return result

    def _run(self) -> None:
        while not self._stop.is_set():
            requested = self._wake.wait(timeout=self.interval)
            if self._stop.is_set():
                break
            self._wake.clear()
            self._save("request" if requested else "interval")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="snake-autosave", daemon=True)
        self._thread.start()

    def request(self) -> None:
        """Ask for a save without blocking the caller."""
        self._wake.set()

    def flush(self) -> SaveResult:
        """One synchronous best-effort save."""
        return self._save("flush")

    def final_save(self, timeout: float = config.FINAL_SAVE_TIMEOUT) -> SaveResult:
        """Shutdown save, safe to call from a signal handler.

        Skips immediately when the calling thread is itself mid-save (the signal
        interrupted that save) and waits at most ``timeout`` seconds for a save
        running on another thread.
        """
        return self._save("shutdown", timeout=timeout)

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None


class ShutdownHook:
    """Run a callback at most once, from a signal handler or at interpreter exit."""

    def __init__(self, callback: Callable[[], object]) -> None:
        self.callback = callback
        self._lock = threading.Lock()
        self.fired = False
        self._previous: Dict[int, object] = {}

    def __call__(self) -> None:
        with self._lock:
            if self.fired:
                return
            self.fired = True
        try:
            self.callback()
        except Exception as exc:
            logger.error("Final save failed: %s", exc)

    def uninstall(self) -> None:
        """Put back the handlers that were active before installation."""
        atexit.unregister(self)
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()


def install_shutdown_handlers(
    callback: Callable[[], object],
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> ShutdownHook:
    """Register ``callback`` for SIGINT/SIGTERM and interpreter exit.

    After the callback runs, the previously installed handler takes over, so
    Ctrl-C still raises KeyboardInterrupt and SIGTERM still exits.
    """
    hook = ShutdownHook(callback)
    atexit.register(hook)

    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on the main thread; skipping signal handlers")
        return hook

    for sig in signals:
        previous = signal.getsignal(sig)
        hook._previous[sig] = previous

        def _handler(signum, frame, _previous=previous):
            logger.info("Received signal %d; saving before exit", signum)
            hook()
            if callable(_previous):
                _previous(signum, frame)
            elif _previous != signal.SIG_IGN:
                raise SystemExit(128 + signum)

        signal.signal(sig, _handler)
    return hook
