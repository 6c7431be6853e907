"""Namespace discovery for ClusterLimit policies."""

import logging
from typing import List, Optional

from kubernetes import client

from .config import REQUEST_TIMEOUT_SECONDS
from .filters import target_namespaces
from .models import ClusterLimitPolicy

logger = logging.getLogger(__name__)


class NamespaceScanner:
    """Reads the live namespace set and filters it for a policy."""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None, request_timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.v1 = core_api or client.CoreV1Api()
        self.request_timeout = request_timeout

    def list_namespaces(self) -> List[str]:
        """
        List namespace names, skipping namespaces being terminated.

        Raises:
            ApiException: if namespaces cannot be listed
        """
        response = self.v1.list_namespace(_request_timeout=self.request_timeout)

        names = []
        for ns in response.items:
            phase = ns.status.phase if ns.status else None
            if phase == "Terminating":
                logger.debug(f"Skipping terminating namespace {ns.metadata.name}")
                continue
            names.append(ns.metadata.name)
        return names

    def target_set(self, policy: ClusterLimitPolicy) -> List[str]:
        """Compute the namespaces the policy currently applies to."""
        targets = target_namespaces(policy, self.list_namespaces())
        logger.debug(f"Policy {policy.name} targets {len(targets)} namespace(s)")
        return targets
