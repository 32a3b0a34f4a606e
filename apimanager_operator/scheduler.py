"""
The ReconcileScheduler runs reconciliation passes on a pool of worker threads
while making sure that there is never more than one pass running for the same
APIManager
"""

# Standard
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Union
import os
import threading

# First Party
import aconfig
import alog

# Local
from . import config
from .components import PassResult
from .reconcile import ReconcileManager

log = alog.use_channel("SCHED")

# Callback type invoked with (identity, result) after every pass
RESULT_CALLBACK = Callable[[str, PassResult], None]


class ReconcileScheduler:  # pylint: disable=too-many-instance-attributes
    """Single-flight scheduling of passes per APIManager identity.

    A request for an identity with a running pass is parked as that identity's
    pending request. There is at most one pending request per identity and a
    newer manifest replaces the older one. The pending request starts as soon
    as the running pass ends.
    """

    def __init__(
        self,
        reconcile_manager: Optional[ReconcileManager] = None,
        on_result: Optional[RESULT_CALLBACK] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            reconcile_manager:  Optional[ReconcileManager]
                The manager used to run each pass
            on_result:  Optional[RESULT_CALLBACK]
                Called with (identity, result) after every pass
            max_workers:  Optional[int]
                Size of the worker pool. Defaults to max_concurrent_reconciles
                from the config, or the number of cpus.
        """
        self.reconcile_manager = reconcile_manager or ReconcileManager()
        self.on_result = on_result
        self.max_workers = (
            max_workers or config.max_concurrent_reconciles or os.cpu_count()
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="reconcile"
        )

        # All bookkeeping below is guarded by the lock
        self._lock = threading.RLock()
        self._running: Dict[str, Future] = {}
        self._pending: Dict[str, Union[dict, aconfig.Config]] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._idle = threading.Condition(self._lock)
        self._stopped = False

        # Shared by every pass so that stop() reaches in-flight passes
        self.cancel_event = threading.Event()

    ## Interface ###############################################################

    @staticmethod
    def identity(resource: Union[dict, aconfig.Config]) -> str:
        """The single-flight key of an APIManager: namespace/name"""
        metadata = resource.get("metadata") or {}
        return f"{metadata.get('namespace')}/{metadata.get('name')}"

    def submit(self, resource: Union[dict, aconfig.Config]) -> bool:
        """Request a pass for the given APIManager

        Args:
            resource:  Union[dict, aconfig.Config]
                The current manifest of the APIManager

        Returns:
            started:  bool
                True if a pass started right away, False if the request was
                parked behind a running pass (or the scheduler is stopped)
        """
        identity = self.identity(resource)
        with self._lock:
            if self._stopped:
                log.warning("Scheduler stopped. Dropping request for %s", identity)
                return False

            # An explicit request supersedes a scheduled requeue
            timer = self._timers.pop(identity, None)
            if timer is not None:
                timer.cancel()

            if identity in self._running:
                log.debug2("Pass running for %s. Parking request.", identity)
                self._pending[identity] = resource
                return False

            self._start(identity, resource)
            return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no pass is running or pending

        Returns:
            idle:  bool
                False if the timeout expired first
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._running and not self._pending, timeout=timeout
            )

    def stop(self, wait: bool = True):
        """Cancel in-flight passes at their next store call, drop pending
        requests and scheduled requeues, and shut the pool down
        """
        log.info("Stopping reconcile scheduler")
        with self._lock:
            self._stopped = True
            self.cancel_event.set()
            self._pending.clear()
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        self._executor.shutdown(wait=wait)

    ## Implementation Details ##################################################

    def _start(self, identity: str, resource: Union[dict, aconfig.Config]):
        """Start a pass. Must be called with the lock held."""
        log.debug("Starting pass for %s", identity)
        future = self._executor.submit(
            self.reconcile_manager.safe_reconcile, resource, self.cancel_event
        )
        self._running[identity] = future
        future.add_done_callback(
            lambda done: self._handle_done(identity, resource, done)
        )

    def _handle_done(
        self, identity: str, resource: Union[dict, aconfig.Config], future: Future
    ):
        result = future.result()
        log.debug("Pass for %s done. Succeeded: %s", identity, result.succeeded)

        if self.on_result is not None:
            try:
                self.on_result(identity, result)
            except Exception as err:  # pylint: disable=broad-except
                log.error("Result callback failed for %s: %s", identity, err)

        with self._lock:
            self._running.pop(identity, None)
            if self._stopped:
                self._idle.notify_all()
                return

            pending = self._pending.pop(identity, None)
            if pending is not None:
                log.debug2("Starting parked request for %s", identity)
                self._start(identity, pending)
            elif result.requeue and config.requeue_on_error:
                self._schedule_requeue(identity, resource, result)
            self._idle.notify_all()

    def _schedule_requeue(
        self, identity: str, resource: Union[dict, aconfig.Config], result: PassResult
    ):
        """Resubmit after the requested delay. Must be called with the lock
        held.
        """
        delay = result.requeue_params.requeue_after.total_seconds()
        log.info("Requeuing %s in %ss", identity, delay)
        timer = threading.Timer(delay, self._fire_requeue, args=(identity, resource))
        timer.daemon = True
        self._timers[identity] = timer
        timer.start()

    def _fire_requeue(self, identity: str, resource: Union[dict, aconfig.Config]):
        with self._lock:
            if self._timers.pop(identity, None) is None:
                # Cancelled or superseded
                return
        self.submit(resource)
