"""Main controller logic for the ClusterLimit Controller."""

import logging
import threading
from typing import Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import (
    DEFAULT_POLICY_NAME,
    MAX_WORKERS,
    PASS_TIMEOUT_SECONDS,
    RECONCILE_INTERVAL_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    WATCH_ERROR_BACKOFF_SECONDS,
    WATCH_TIMEOUT_SECONDS,
)
from .crd_client import ClusterLimitClient
from .models import ClusterLimitPolicy, PassResult
from .reconciler import LimitRangeReconciler

logger = logging.getLogger(__name__)


class ClusterLimitController:
    """
    CRD-based controller that watches the ClusterLimit policy and the
    namespace set, and keeps a managed LimitRange in every namespace the
    policy targets.
    """

    def __init__(
        self,
        policy_name: str = DEFAULT_POLICY_NAME,
        dry_run: bool = False,
        interval: float = RECONCILE_INTERVAL_SECONDS,
        max_workers: int = MAX_WORKERS,
        pass_timeout: float = PASS_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        core_api: Optional[client.CoreV1Api] = None,
        custom_api: Optional[client.CustomObjectsApi] = None
    ):
        """
        Initialize the controller.

        Args:
            policy_name: Name of the ClusterLimit that drives enforcement
            dry_run: If True, don't make actual changes
            interval: Seconds between periodic reconciliations
            max_workers: Number of namespaces processed concurrently
            pass_timeout: Seconds a pass waits for its namespace tasks
            request_timeout: Seconds allowed for each API call
        """
        self.policy_name = policy_name
        self.dry_run = dry_run
        self.interval = interval
        self.v1 = core_api or client.CoreV1Api()

        self.policy_client = ClusterLimitClient(custom_api, request_timeout=request_timeout)
        self.reconciler = LimitRangeReconciler(
            self.v1,
            dry_run=dry_run,
            max_workers=max_workers,
            pass_timeout=pass_timeout,
            request_timeout=request_timeout
        )

        self._stop_event = threading.Event()
        self._pass_lock = threading.Lock()

    def reconcile(self, name: Optional[str] = None) -> PassResult:
        """
        Bring the cluster in line with a ClusterLimit.

        Converges when the policy exists, and removes every managed
        LimitRange when it is gone or being deleted. API errors are
        reported in the result and retried on the next trigger.
        """
        name = name or self.policy_name

        with self._pass_lock:
            try:
                policy_obj = self.policy_client.get_policy(name)
            except ApiException as e:
                return PassResult(policy=name, error=f"cannot fetch ClusterLimit: {e.status} {e.reason}")

            if policy_obj is None:
                logger.info(f"ClusterLimit {name} not found, cleaning up managed LimitRanges")
                return self.reconciler.cleanup(name)

            policy = ClusterLimitPolicy.from_crd(policy_obj)
            if policy.deleting:
                logger.info(f"ClusterLimit {name} is being deleted, cleaning up managed LimitRanges")
                return self.reconciler.cleanup(name)

            result = self.reconciler.converge(policy)
            self._update_policy_status(policy, result)
            return result

    def _update_policy_status(self, policy: ClusterLimitPolicy, result: PassResult) -> None:
        """Record applied namespaces and the observed generation when either changed."""
        if self.dry_run or result.error:
            return

        applied = result.applied_namespaces
        if sorted(policy.applied_namespaces) == applied and policy.observed_generation == policy.generation:
            return

        self.policy_client.update_policy_status(policy.name, applied, policy.generation)

    def handle_policy_event(self, event_type: str, policy_obj: dict) -> None:
        """
        Handle a ClusterLimit watch event.

        Args:
            event_type: ADDED, MODIFIED, or DELETED
            policy_obj: The policy object from the event
        """
        name = (policy_obj.get("metadata") or {}).get("name", "")

        if name != self.policy_name:
            logger.warning(f"Ignoring ClusterLimit {name}; this controller manages {self.policy_name}")
            return

        if event_type in ("ADDED", "MODIFIED", "DELETED"):
            logger.info(f"ClusterLimit {event_type}: {name}")
            self.reconcile(name)

    def handle_namespace_event(self, event_type: str, namespace) -> None:
        """
        Handle a Namespace watch event.

        Only new namespaces need work; LimitRanges go away with their
        namespace.
        """
        if event_type != "ADDED":
            return

        logger.info(f"Namespace ADDED: {namespace.metadata.name}")
        self.reconcile()

    def watch_policies(self) -> None:
        """Watch for ClusterLimit events in a loop."""
        logger.info("Starting policy watcher...")
        resource_version = None
        resync = False

        while not self._stop_event.is_set():
            try:
                if resource_version is None:
                    listing = self.policy_client.list_policies()
                    resource_version = (listing.get("metadata") or {}).get("resourceVersion")
                    if resync:
                        # Changes made while the watch was expired were never seen
                        resync = False
                        self.reconcile()

                for event in self.policy_client.watch_policies(
                    resource_version=resource_version,
                    timeout=WATCH_TIMEOUT_SECONDS
                ):
                    if self._stop_event.is_set():
                        break

                    event_type = event["type"]
                    policy_obj = event["object"]
                    if event_type in ("BOOKMARK", "ERROR"):
                        continue

                    resource_version = policy_obj["metadata"].get("resourceVersion", resource_version)
                    self.handle_policy_event(event_type, policy_obj)

            except ApiException as e:
                if e.status == 410:
                    logger.info("Policy watch expired, relisting")
                    resource_version = None
                    resync = True
                    continue
                logger.error(f"Policy watch error: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in policy watcher: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)

    def watch_namespaces(self) -> None:
        """Watch for Namespace events in a loop."""
        logger.info("Starting namespace watcher...")
        resource_version = None
        resync = False

        while not self._stop_event.is_set():
            w = watch.Watch()
            try:
                if resource_version is None:
                    listing = self.v1.list_namespace(limit=1)
                    resource_version = listing.metadata.resource_version
                    if resync:
                        resync = False
                        self.reconcile()

                for event in w.stream(
                    self.v1.list_namespace,
                    resource_version=resource_version,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS
                ):
                    if self._stop_event.is_set():
                        break

                    event_type = event["type"]
                    namespace = event["object"]
                    if event_type in ("BOOKMARK", "ERROR"):
                        continue

                    resource_version = namespace.metadata.resource_version or resource_version
                    self.handle_namespace_event(event_type, namespace)

            except ApiException as e:
                if e.status == 410:
                    logger.info("Namespace watch expired, relisting")
                    resource_version = None
                    resync = True
                    continue
                logger.error(f"Namespace watch error: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in namespace watcher: {e}")
                self._stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
            finally:
                w.stop()

    def periodic_reconcile(self) -> None:
        """Periodically reconcile the policy to repair drift."""
        logger.info(f"Starting periodic reconciler (interval: {self.interval}s)")

        while not self._stop_event.wait(self.interval):
            logger.debug("Running periodic reconciliation...")
            try:
                self.reconcile()
            except Exception as e:
                logger.error(f"Unexpected error in periodic reconciler: {e}")

    def run(self) -> None:
        """Run the controller."""
        logger.info("=" * 60)
        logger.info("Starting ClusterLimit Controller")
        logger.info("=" * 60)
        logger.info(f"Policy: {self.policy_name}")
        logger.info(f"Dry run: {self.dry_run}")

        # Initial pass before any event arrives
        self.reconcile()

        threads = [
            threading.Thread(target=self.watch_policies, name="policy-watcher", daemon=True),
            threading.Thread(target=self.watch_namespaces, name="namespace-watcher", daemon=True),
            threading.Thread(target=self.periodic_reconcile, name="periodic-reconciler", daemon=True),
        ]
        for thread in threads:
            thread.start()

        logger.info("Controller is running. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while not self._stop_event.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Shutdown requested...")
            self.stop()

    def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping controller...")
        self._stop_event.set()
        self.reconciler.stop()
