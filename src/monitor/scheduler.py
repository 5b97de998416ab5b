"""Monitor scheduler — runs batched probe cycles against the live registry.

States:
    Idle     waiting for the interval timer or a wake signal
    Running  a cycle's probes are in flight
    Stopped  terminal

A cycle snapshots the registry, fans probes out to a bounded thread pool,
writes results back as they resolve and notifies subscribers once when the
cycle ends. Cycles never overlap. A recheck request that arrives while a
cycle is running is coalesced into exactly one follow-up cycle; while idle it
cancels the pending timer and starts a cycle at once. An interval change
re-arms the idle timer without probing.
The probe order rotates by one service per cycle, so under a tight deadline
the same services are not always last in line for a concurrency slot.

Probes still outstanding at the cycle deadline are abandoned and their
results discarded: the service keeps its previous status.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections.abc import Callable, Collection
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.config import settings

from .aggregator import build_view
from .errors import PersistenceError, ValidationError
from .models import MonitorView, OverallStatus, ProbeResult, Service, Status
from .probe import check

if TYPE_CHECKING:
    from .registry import ServiceRegistry
    from .store import StateStore

logger = logging.getLogger(__name__)

ProbeFn = Callable[..., ProbeResult]
Subscriber = Callable[[MonitorView], Any]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class MonitorScheduler:
    """Owns the background check loop and the subscriber list.

    Lifecycle:
        scheduler = MonitorScheduler(registry, store)
        await scheduler.start()
        ...
        await scheduler.stop()

    ``request_recheck`` and ``request_reschedule`` are safe to call from any
    thread.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        store: StateStore | None = None,
        probe_fn: ProbeFn = check,
        probe_timeout: float | None = None,
        max_concurrency: int | None = None,
        safety_margin: float | None = None,
        http_strict: bool | None = None,
        http_method: str | None = None,
        https_ports: Collection[int] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self._probe_fn = probe_fn
        self._probe_timeout = probe_timeout or settings.probe_timeout_seconds
        self._max_concurrency = max_concurrency or settings.max_concurrent_probes
        self._safety_margin = (
            settings.cycle_safety_margin_seconds if safety_margin is None else safety_margin
        )
        self._http_strict = settings.http_strict if http_strict is None else http_strict
        self._http_method = http_method or settings.http_method
        self._https_ports = tuple(settings.https_ports if https_ports is None else https_ports)
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_concurrency, thread_name_prefix="probe",
        )

        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._published_version = -1

        # Pending wake reasons. Flags are the source of truth; the asyncio
        # event only wakes the loop up to read them.
        self._signal_lock = threading.Lock()
        self._recheck_pending = False
        self._reschedule_pending = False

        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._state = SchedulerState.IDLE
        self._last_overall: OverallStatus | None = None
        self.cycle_count = 0

    # -- public API ------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the loop; the first cycle runs immediately."""
        if self.is_running:
            return
        if self._state == SchedulerState.STOPPED:
            raise RuntimeError("Scheduler was stopped and cannot be restarted")
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="labwatch-scheduler")
        logger.info(
            "Scheduler started (interval=%ds, concurrency=%d, probe_timeout=%.1fs)",
            self.registry.config.interval_seconds, self._max_concurrency, self._probe_timeout,
        )

    async def stop(self) -> None:
        """Cancel the timer and abandon in-flight probes without waiting for them."""
        self._state = SchedulerState.STOPPED
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Scheduler stopped after %d cycles", self.cycle_count)

    def request_recheck(self) -> None:
        """Ask for an out-of-cycle check. Coalesced while a cycle is running."""
        with self._signal_lock:
            self._recheck_pending = True
        self._poke()

    def request_reschedule(self) -> None:
        """Re-arm the idle timer after an interval change."""
        with self._signal_lock:
            self._reschedule_pending = True
        self._poke()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a view listener; returns a function that unsubscribes it."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, view: MonitorView) -> bool:
        """Deliver a view to every subscriber. Callback errors are logged, never raised.

        Views reach subscribers in registry-version order: one older than the
        last view delivered is dropped and False is returned.
        """
        with self._publish_lock:
            if view.version < self._published_version:
                logger.debug("Dropping stale view v%d (last published v%d)", view.version, self._published_version)
                return False
            self._published_version = view.version
            with self._subscribers_lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(view)
                except Exception:
                    logger.exception("Subscriber callback error")
        return True

    def current_view(self) -> MonitorView:
        return build_view(self.registry.snapshot())

    # -- cycle -----------------------------------------------------------------

    def _budget(self, interval: int) -> tuple[float, float]:
        """Return (cycle deadline, per-probe timeout), both below the interval."""
        if interval > self._safety_margin > 0:
            deadline = interval - self._safety_margin
        else:
            deadline = interval * 0.9
        return deadline, min(self._probe_timeout, deadline)

    async def run_cycle(self) -> MonitorView:
        """Probe every registered service once and publish the resulting view."""
        if self._state != SchedulerState.STOPPED:
            self._state = SchedulerState.RUNNING
        snap = self.registry.snapshot()
        deadline, probe_timeout = self._budget(snap.config.interval_seconds)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        tasks = [
            asyncio.create_task(self._probe_service(svc, probe_timeout, semaphore))
            for svc in self._rotated(snap.services)
        ]
        changed = False
        try:
            if tasks:
                done, pending = await asyncio.wait(tasks, timeout=deadline)
                if pending:
                    logger.warning(
                        "%d of %d probes missed the %.1fs cycle deadline; keeping previous status",
                        len(pending), len(tasks), deadline,
                    )
                changed = any(t.result() for t in done)
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            if self._state != SchedulerState.STOPPED:
                self._state = SchedulerState.IDLE

        self.cycle_count += 1
        view = self.current_view()
        self._log_cycle(view)
        if changed:
            self._save(view)
        self.publish(view)
        return view

    def _rotated(self, services: tuple[Service, ...]) -> tuple[Service, ...]:
        """Start each cycle one service further along so slow tails take turns."""
        if not services:
            return services
        offset = self.cycle_count % len(services)
        return services[offset:] + services[:offset]

    async def _probe_service(
        self, svc: Service, timeout: float, semaphore: asyncio.Semaphore,
    ) -> bool:
        """Probe one service and write the result back. Returns True on status change."""
        async with semaphore:
            loop = asyncio.get_running_loop()
            call = functools.partial(
                self._probe_fn, svc.address, svc.port, svc.protocol, timeout,
                method=self._http_method, strict=self._http_strict, https_ports=self._https_ports,
            )
            try:
                result = await loop.run_in_executor(self._executor, call)
            except ValidationError as e:
                result = ProbeResult(status=Status.DOWN, latency_ms=0, message=f"Invalid target: {e}")
            except Exception as e:
                logger.exception("Probe error: %s (%s)", svc.name, svc.target)
                result = ProbeResult(
                    status=Status.DOWN, latency_ms=0,
                    message=f"Probe error: {type(e).__name__}: {e}",
                )

        changed = self.registry.write_result(
            svc.id,
            result.status,
            result.message or f"{svc.target} unreachable",
            result.timestamp,
            latency_ms=result.latency_ms,
            revision=svc.revision,
        )
        if changed and result.status == Status.DOWN:
            logger.warning("%s (%s) is DOWN: %s", svc.name, svc.target, result.message)
        elif changed and svc.last_status == Status.DOWN:
            logger.info("%s (%s) recovered", svc.name, svc.target)
        else:
            logger.debug(
                "Check %s (%s): %s (%.1fms)",
                svc.name, svc.target, result.status.value, result.latency_ms,
            )
        return changed

    def _log_cycle(self, view: MonitorView) -> None:
        if view.services and view.overall == OverallStatus.HEALTHY:
            if self._last_overall != OverallStatus.HEALTHY:
                logger.info("All systems normal (%d services)", len(view.services))
        elif view.overall == OverallStatus.DEGRADED:
            down = sum(1 for s in view.services if s.last_status != Status.UP)
            logger.debug("Cycle %d: %d of %d services not up", self.cycle_count, down, len(view.services))
        self._last_overall = view.overall

    def _save(self, view: MonitorView) -> None:
        if self.store is None:
            return
        try:
            self.store.save(view.services, view.config, version=view.version)
        except PersistenceError as e:
            logger.error("Failed to persist state: %s", e)

    # -- loop ------------------------------------------------------------------

    def _poke(self) -> None:
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wake.set()
        else:
            loop.call_soon_threadsafe(wake.set)

    def _take_signals(self) -> tuple[bool, bool]:
        with self._signal_lock:
            recheck, reschedule = self._recheck_pending, self._reschedule_pending
            self._recheck_pending = self._reschedule_pending = False
        return recheck, reschedule

    async def _run_loop(self) -> None:
        assert self._loop is not None and self._wake is not None
        loop, wake = self._loop, self._wake
        last_cycle_end = loop.time()
        next_due = last_cycle_end  # run immediately on start

        while self._state != SchedulerState.STOPPED:
            timed_out = False
            try:
                await asyncio.wait_for(wake.wait(), timeout=max(0.0, next_due - loop.time()))
            except asyncio.TimeoutError:
                timed_out = True
            except asyncio.CancelledError:
                break
            wake.clear()
            recheck, reschedule = self._take_signals()

            due = timed_out or loop.time() >= next_due
            if not (due or recheck):
                if reschedule:
                    next_due = last_cycle_end + self.registry.config.interval_seconds
                    logger.debug(
                        "Timer re-armed: next check in %.1fs", max(0.0, next_due - loop.time()),
                    )
                continue

            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Check cycle failed")
            last_cycle_end = loop.time()
            next_due = last_cycle_end + self.registry.config.interval_seconds
