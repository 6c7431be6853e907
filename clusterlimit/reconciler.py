"""Reconciliation logic for the ClusterLimit Controller."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from functools import partial
from typing import Optional, Callable, List, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import (
    LIMIT_RANGE_NAME,
    MAX_WORKERS,
    PASS_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)
from .models import (
    ClusterLimitPolicy,
    NamespaceResult,
    PassResult,
    CREATED,
    UPDATED,
    UNCHANGED,
    ABSENT,
    DELETED,
    CONFLICT,
    ERROR,
    DRY_RUN,
)
from .projector import (
    LimitEntry,
    ProjectionError,
    project,
    build_limit_range,
    limits_match,
    is_owned,
)
from .scanner import NamespaceScanner
from .writer import LimitRangeWriter, OwnershipConflict, classify
from . import writer as write_results

logger = logging.getLogger(__name__)

# Writer outcome -> per-namespace action
_ACTIONS = {
    write_results.CREATED: CREATED,
    write_results.UPDATED: UPDATED,
    write_results.DELETED: DELETED,
    write_results.NOT_FOUND: ABSENT,
    write_results.DRY_RUN: DRY_RUN,
}

# How often a waiting pass checks for stop()
_WAIT_SLICE_SECONDS = 0.5


class LimitRangeReconciler:
    """Converges managed LimitRanges to a ClusterLimit policy."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        dry_run: bool = False,
        max_workers: int = MAX_WORKERS,
        pass_timeout: float = PASS_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS
    ):
        """
        Initialize the reconciler.

        Args:
            core_api: CoreV1Api shared by the writer and scanner
            dry_run: If True, don't make actual changes
            max_workers: Number of namespaces processed concurrently
            pass_timeout: Seconds a pass waits for its namespace tasks
            request_timeout: Seconds allowed for each API call
        """
        core_api = core_api or client.CoreV1Api()
        self.dry_run = dry_run
        self.max_workers = max_workers
        self.pass_timeout = pass_timeout
        self.request_timeout = request_timeout
        self.writer = LimitRangeWriter(core_api, dry_run=dry_run, request_timeout=request_timeout)
        self.scanner = NamespaceScanner(core_api, request_timeout=request_timeout)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Abort in-flight passes; queued namespace tasks are not started."""
        self._stop_event.set()

    def converge(self, policy: ClusterLimitPolicy) -> PassResult:
        """
        Run one convergence pass for a policy.

        Every target namespace ends up with exactly one managed LimitRange
        matching the policy's limits, and managed LimitRanges outside the
        target set are removed. A failure in one namespace never stops the
        others.

        Returns:
            PassResult with one entry per namespace touched
        """
        result = PassResult(policy=policy.name, kind="converge")

        try:
            entries = project(policy.limits)
        except ProjectionError as e:
            logger.error(f"Invalid limits in ClusterLimit {policy.name}: {e}")
            result.error = str(e)
            return result

        try:
            targets = self.scanner.target_set(policy)
            owned = self.writer.list_owned()
        except ApiException as e:
            logger.error(f"Error listing cluster state for ClusterLimit {policy.name}: {e}")
            result.error = f"cannot list cluster state: {e.status} {e.reason}"
            return result

        result.target_namespaces = targets
        target_set = set(targets)

        managed = {}
        stale = []
        for lr in owned:
            namespace = lr.metadata.namespace
            if namespace in target_set and lr.metadata.name == LIMIT_RANGE_NAME:
                managed[namespace] = lr
            else:
                stale.append((namespace, lr.metadata.name))

        tasks = [
            (namespace, partial(self._ensure, namespace, entries, managed.get(namespace)))
            for namespace in targets
        ]
        tasks += [
            (namespace, partial(self._remove, namespace, name))
            for namespace, name in stale
        ]

        result.results = self._run_tasks(tasks)
        self._log_result(result)
        return result

    def cleanup(self, policy_name: str = "") -> PassResult:
        """
        Delete every managed LimitRange in every namespace.

        Used once the policy is gone. Individual failures are reported and
        left for the next trigger.
        """
        result = PassResult(policy=policy_name, kind="cleanup")

        try:
            owned = self.writer.list_owned()
        except ApiException as e:
            logger.error(f"Error listing managed LimitRanges: {e}")
            result.error = f"cannot list managed LimitRanges: {e.status} {e.reason}"
            return result

        logger.info(f"Cleaning up {len(owned)} managed LimitRange(s)")
        tasks = [
            (lr.metadata.namespace, partial(self._remove, lr.metadata.namespace, lr.metadata.name))
            for lr in owned
        ]

        result.results = self._run_tasks(tasks)
        self._log_result(result)
        return result

    def _ensure(self, namespace: str, entries: List[LimitEntry], existing=None) -> NamespaceResult:
        """Make the namespace's managed LimitRange match the entries."""
        if existing is None:
            existing = self.writer.get(namespace)

        body = build_limit_range(namespace, entries)

        if existing is None:
            outcome = self.writer.apply(body)
        elif not is_owned(existing):
            raise OwnershipConflict(namespace)
        elif limits_match(entries, existing):
            logger.debug(f"LimitRange {namespace}/{LIMIT_RANGE_NAME} already matches policy")
            return NamespaceResult(namespace, UNCHANGED)
        else:
            logger.info(f"LimitRange {namespace}/{LIMIT_RANGE_NAME} differs from policy, updating")
            outcome = self.writer.update(body, existing.metadata.resource_version)
            if outcome == write_results.NOT_FOUND:
                outcome = self.writer.apply(body)

        if outcome not in _ACTIONS:
            return NamespaceResult(namespace, ERROR, f"LimitRange still {outcome} after retrying")
        return NamespaceResult(namespace, _ACTIONS[outcome])

    def _remove(self, namespace: str, name: str) -> NamespaceResult:
        """Delete one managed LimitRange."""
        outcome = self.writer.delete(namespace, name)
        return NamespaceResult(namespace, _ACTIONS[outcome], name if name != LIMIT_RANGE_NAME else "")

    def _guarded(self, namespace: str, task: Callable[[], NamespaceResult]) -> NamespaceResult:
        """Run a namespace task, turning its failure into a result."""
        if self._stop_event.is_set():
            return NamespaceResult(namespace, ERROR, "cancelled")

        try:
            return task()
        except OwnershipConflict as e:
            logger.warning(f"Skipping namespace {namespace}: {e}")
            return NamespaceResult(namespace, CONFLICT, str(e))
        except ApiException as e:
            logger.error(f"API error in namespace {namespace}: {e.status} {e.reason}")
            return NamespaceResult(namespace, ERROR, f"{classify(e)}: {e.status} {e.reason}")
        except Exception as e:
            logger.error(f"Unexpected error in namespace {namespace}: {e}")
            return NamespaceResult(namespace, ERROR, str(e))

    def _run_tasks(self, tasks: List[Tuple[str, Callable[[], NamespaceResult]]]) -> List[NamespaceResult]:
        """
        Run namespace tasks concurrently and wait for all of them.

        Tasks still pending when the pass timeout expires or stop() is
        called are cancelled. Tasks already running get one more request
        timeout to finish; whatever is still unfinished after that is
        reported as an error.
        """
        if not tasks:
            return []

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(tasks))),
            thread_name_prefix="limitrange"
        )
        futures = {
            executor.submit(self._guarded, namespace, task): namespace
            for namespace, task in tasks
        }

        deadline = time.monotonic() + self.pass_timeout
        pending = set(futures)
        try:
            while pending and not self._stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                _, pending = wait(pending, timeout=min(remaining, _WAIT_SLICE_SECONDS), return_when=FIRST_COMPLETED)
        finally:
            for future in pending:
                future.cancel()
            if pending:
                _, pending = wait(pending, timeout=self.request_timeout)
            executor.shutdown(wait=False)

        reason = "cancelled" if self._stop_event.is_set() else "timed out"
        results = []
        for future, namespace in futures.items():
            if future in pending or future.cancelled():
                logger.error(f"Namespace {namespace} {reason} before finishing")
                results.append(NamespaceResult(namespace, ERROR, reason))
            else:
                results.append(future.result())
        return results

    def _log_result(self, result: PassResult) -> None:
        """Log the pass summary, as a warning when anything failed."""
        if result.ok:
            logger.info(result.summary())
        else:
            logger.warning(result.summary())
