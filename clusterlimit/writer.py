"""Idempotent create/update/delete of managed LimitRanges."""

import logging
from typing import Optional, List

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import (
    LIMIT_RANGE_NAME,
    MANAGED_LABEL_KEY,
    MANAGED_LABEL_VALUE,
    REQUEST_TIMEOUT_SECONDS,
)
from .projector import is_owned

logger = logging.getLogger(__name__)

# Write outcomes
CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
ALREADY_EXISTS = "already_exists"
NOT_FOUND = "not_found"
DRY_RUN = "dry-run"

# Error classes
CONFLICT = "conflict"
TRANSIENT = "transient"


class OwnershipConflict(Exception):
    """Raised when a LimitRange without the ownership label occupies the managed name."""

    def __init__(self, namespace: str, name: str = LIMIT_RANGE_NAME):
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"LimitRange {namespace}/{name} exists but is not managed by this controller"
        )


def classify(error: ApiException) -> str:
    """
    Classify an API error.

    409 on create means the object already exists; on update it is an
    optimistic-concurrency conflict. Both are told apart by the reason
    the API server puts in the response body.
    """
    if error.status == 404:
        return NOT_FOUND
    if error.status == 409:
        if "AlreadyExists" in str(error.body or "") or error.reason == "AlreadyExists":
            return ALREADY_EXISTS
        return CONFLICT
    return TRANSIENT


class LimitRangeWriter:
    """Thin wrapper over the LimitRange API with idempotent semantics."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        dry_run: bool = False,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS
    ):
        """
        Initialize the writer.

        Args:
            core_api: CoreV1Api to use (a new one by default)
            dry_run: If True, log writes instead of performing them
            request_timeout: Timeout in seconds for every API call
        """
        self.v1 = core_api or client.CoreV1Api()
        self.dry_run = dry_run
        self.request_timeout = request_timeout

    def get(self, namespace: str, name: str = LIMIT_RANGE_NAME) -> Optional[client.V1LimitRange]:
        """Get a LimitRange, or None if it does not exist."""
        try:
            return self.v1.read_namespaced_limit_range(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def list_owned(self) -> List[client.V1LimitRange]:
        """List every LimitRange carrying the ownership label, in all namespaces."""
        response = self.v1.list_limit_range_for_all_namespaces(
            label_selector=f"{MANAGED_LABEL_KEY}={MANAGED_LABEL_VALUE}",
            _request_timeout=self.request_timeout
        )
        return [lr for lr in response.items if is_owned(lr)]

    def create(self, body: client.V1LimitRange) -> str:
        """Create a LimitRange. Returns CREATED or ALREADY_EXISTS."""
        namespace = body.metadata.namespace

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would create LimitRange {namespace}/{body.metadata.name}")
            return DRY_RUN

        # Left over when falling back from a failed update
        body.metadata.resource_version = None
        try:
            self.v1.create_namespaced_limit_range(
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 409:
                return ALREADY_EXISTS
            raise

        logger.info(f"Created LimitRange {namespace}/{body.metadata.name}")
        return CREATED

    def update(self, body: client.V1LimitRange, resource_version: Optional[str] = None) -> str:
        """Replace a LimitRange. Returns UPDATED or NOT_FOUND."""
        namespace = body.metadata.namespace
        name = body.metadata.name

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would update LimitRange {namespace}/{name}")
            return DRY_RUN

        body.metadata.resource_version = resource_version
        try:
            self.v1.replace_namespaced_limit_range(
                name=name,
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return NOT_FOUND
            raise

        logger.info(f"Updated LimitRange {namespace}/{name}")
        return UPDATED

    def delete(self, namespace: str, name: str = LIMIT_RANGE_NAME) -> str:
        """Delete a LimitRange. A missing object counts as deleted."""
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would delete LimitRange {namespace}/{name}")
            return DRY_RUN

        try:
            self.v1.delete_namespaced_limit_range(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status != 404:
                raise
            logger.debug(f"LimitRange {namespace}/{name} already gone")
            return NOT_FOUND

        logger.info(f"Deleted LimitRange {namespace}/{name}")
        return DELETED

    def apply(self, body: client.V1LimitRange) -> str:
        """
        Create a LimitRange, falling back to an update if it already exists.

        The fallback re-reads the object first so a foreign LimitRange
        created in the meantime is never overwritten.

        Raises:
            OwnershipConflict: if the existing object is not ours
        """
        result = self.create(body)
        if result != ALREADY_EXISTS:
            return result

        namespace = body.metadata.namespace
        logger.info(f"LimitRange {namespace}/{body.metadata.name} already exists, updating it")

        existing = self.get(namespace, body.metadata.name)
        if existing is None:
            # Deleted between the two calls
            return self.create(body)
        if not is_owned(existing):
            raise OwnershipConflict(namespace, body.metadata.name)

        result = self.update(body, existing.metadata.resource_version)
        if result == NOT_FOUND:
            return self.create(body)
        return result
