"""Client for interacting with the ClusterLimit CRD."""

import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_VERSION, CRD_PLURAL, REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ClusterLimitClient:
    """Client for cluster-scoped ClusterLimit custom resources."""

    def __init__(self, custom_api: Optional[client.CustomObjectsApi] = None, request_timeout: float = REQUEST_TIMEOUT_SECONDS):
        """Initialize the CRD client."""
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.request_timeout = request_timeout

    def list_policies(self) -> Dict[str, Any]:
        """
        List all ClusterLimit objects.

        Returns:
            The raw list response (items and list metadata)

        Raises:
            ApiException: on any API error
        """
        try:
            return self.custom_api.list_cluster_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                logger.warning("ClusterLimit CRD not found. Please install the CRD first.")
            raise

    def get_policy(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific ClusterLimit.

        Returns:
            Policy object or None if not found

        Raises:
            ApiException: on errors other than not found
        """
        try:
            return self.custom_api.get_cluster_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                name=name,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Error getting ClusterLimit {name}: {e.status} {e.reason}")
            raise

    def update_policy_status(self, name: str, applied_namespaces: List[str], observed_generation: int = 0) -> bool:
        """
        Update the status of a ClusterLimit.

        Args:
            name: Policy name
            applied_namespaces: Namespaces currently carrying a managed LimitRange
            observed_generation: Policy generation this status describes

        Returns:
            True if successful, False otherwise
        """
        status = {
            "appliedNamespaces": sorted(applied_namespaces),
            "lastReconciled": datetime.now(timezone.utc).isoformat(),
            "observedGeneration": observed_generation,
        }

        try:
            self.custom_api.patch_cluster_custom_object_status(
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                name=name,
                body={"status": status},
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            logger.error(f"Error updating ClusterLimit status: {e.status} {e.reason}")
            return False

        logger.debug(f"Updated status for ClusterLimit {name}: {len(applied_namespaces)} namespace(s)")
        return True

    def watch_policies(self, resource_version: Optional[str] = None, timeout: int = 300):
        """
        Create a watch stream for ClusterLimit objects.

        Args:
            resource_version: Resume point, None to start from now
            timeout: Watch timeout in seconds

        Yields:
            Watch events
        """
        w = watch.Watch()
        kwargs = {"timeout_seconds": timeout}
        if resource_version:
            kwargs["resource_version"] = resource_version

        try:
            for event in w.stream(
                self.custom_api.list_cluster_custom_object,
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                **kwargs
            ):
                yield event
        finally:
            w.stop()
