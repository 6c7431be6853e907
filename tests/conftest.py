"""Pytest configuration for ClusterLimit Controller tests.

Provides in-memory stand-ins for CoreV1Api and CustomObjectsApi that keep
LimitRanges, namespaces and ClusterLimits in dicts and raise real
ApiExceptions, so reconciliation can be tested without a cluster.
"""

import copy
import sys
from pathlib import Path

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

# Add the project root to the path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from clusterlimit.config import LIMIT_RANGE_NAME, MANAGED_LABEL_KEY, MANAGED_LABEL_VALUE


def api_error(status: int, reason: str, body_reason: str = "") -> ApiException:
    error = ApiException(status=status, reason=reason)
    if body_reason:
        error.body = f'{{"kind": "Status", "reason": "{body_reason}"}}'
    return error


def _copy_limit_range(lr: client.V1LimitRange, resource_version: str = None) -> client.V1LimitRange:
    items = []
    for item in (lr.spec.limits if lr.spec else None) or []:
        items.append(client.V1LimitRangeItem(
            type=item.type,
            default=dict(item.default) if item.default else None,
            default_request=dict(item.default_request) if item.default_request else None,
            max=dict(item.max) if item.max else None,
            min=dict(item.min) if item.min else None,
            max_limit_request_ratio=dict(item.max_limit_request_ratio) if item.max_limit_request_ratio else None,
        ))
    return client.V1LimitRange(
        api_version="v1",
        kind="LimitRange",
        metadata=client.V1ObjectMeta(
            name=lr.metadata.name,
            namespace=lr.metadata.namespace,
            labels=dict(lr.metadata.labels) if lr.metadata.labels else None,
            resource_version=resource_version or lr.metadata.resource_version,
        ),
        spec=client.V1LimitRangeSpec(limits=items),
    )


def make_limit_range(namespace: str, name: str = LIMIT_RANGE_NAME, owned: bool = True, limits=None) -> client.V1LimitRange:
    """Build a LimitRange the way it could exist in a cluster."""
    if limits is None:
        limits = [client.V1LimitRangeItem(type="Container", default={"cpu": "1"})]
    return client.V1LimitRange(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels={MANAGED_LABEL_KEY: MANAGED_LABEL_VALUE} if owned else {"team": "payments"},
        ),
        spec=client.V1LimitRangeSpec(limits=limits),
    )


class FakeCoreV1Api:
    """In-memory namespaces and LimitRanges."""

    def __init__(self, namespaces=()):
        self.namespaces = {name: "Active" for name in namespaces}
        self.limit_ranges = {}
        self.writes = []
        self.failures = {}
        self._version = 0

    # Test helpers

    def add_limit_range(self, lr: client.V1LimitRange) -> None:
        self._version += 1
        key = (lr.metadata.namespace, lr.metadata.name)
        self.limit_ranges[key] = _copy_limit_range(lr, str(self._version))

    def fail(self, method: str, namespace: str, error: Exception) -> None:
        """Make a method raise for one namespace ("*" for any)."""
        self.failures[(method, namespace)] = error

    def owned_namespaces(self):
        return sorted(
            ns for (ns, name), lr in self.limit_ranges.items()
            if (lr.metadata.labels or {}).get(MANAGED_LABEL_KEY) == MANAGED_LABEL_VALUE
        )

    def _check_failure(self, method: str, namespace: str = "*") -> None:
        error = self.failures.get((method, namespace)) or self.failures.get((method, "*"))
        if error is not None:
            raise error

    # CoreV1Api surface

    def list_namespace(self, **kwargs):
        self._check_failure("list_namespace")
        items = [
            client.V1Namespace(
                metadata=client.V1ObjectMeta(name=name, resource_version="1"),
                status=client.V1NamespaceStatus(phase=phase),
            )
            for name, phase in sorted(self.namespaces.items())
        ]
        return client.V1NamespaceList(items=items, metadata=client.V1ListMeta(resource_version="1"))

    def list_limit_range_for_all_namespaces(self, label_selector=None, **kwargs):
        self._check_failure("list_limit_range")
        items = []
        for lr in self.limit_ranges.values():
            if label_selector:
                key, _, value = label_selector.partition("=")
                if (lr.metadata.labels or {}).get(key) != value:
                    continue
            items.append(_copy_limit_range(lr))
        return client.V1LimitRangeList(items=items)

    def read_namespaced_limit_range(self, name, namespace, **kwargs):
        self._check_failure("read", namespace)
        lr = self.limit_ranges.get((namespace, name))
        if lr is None:
            raise api_error(404, "Not Found")
        return _copy_limit_range(lr)

    def create_namespaced_limit_range(self, namespace, body, **kwargs):
        self._check_failure("create", namespace)
        if namespace not in self.namespaces:
            raise api_error(404, "Not Found")
        if (namespace, body.metadata.name) in self.limit_ranges:
            raise api_error(409, "Conflict", "AlreadyExists")
        self.writes.append(("create", namespace, body.metadata.name))
        self.add_limit_range(body)
        return _copy_limit_range(self.limit_ranges[(namespace, body.metadata.name)])

    def replace_namespaced_limit_range(self, name, namespace, body, **kwargs):
        self._check_failure("replace", namespace)
        current = self.limit_ranges.get((namespace, name))
        if current is None:
            raise api_error(404, "Not Found")
        if body.metadata.resource_version and body.metadata.resource_version != current.metadata.resource_version:
            raise api_error(409, "Conflict", "Conflict")
        self.writes.append(("replace", namespace, name))
        self.add_limit_range(body)
        return _copy_limit_range(self.limit_ranges[(namespace, name)])

    def delete_namespaced_limit_range(self, name, namespace, **kwargs):
        self._check_failure("delete", namespace)
        if (namespace, name) not in self.limit_ranges:
            raise api_error(404, "Not Found")
        self.writes.append(("delete", namespace, name))
        del self.limit_ranges[(namespace, name)]


class FakeCustomObjectsApi:
    """In-memory cluster-scoped ClusterLimits."""

    def __init__(self):
        self.policies = {}
        self.status_patches = []
        self.failures = {}

    def get_cluster_custom_object(self, group, version, plural, name, **kwargs):
        if "get" in self.failures:
            raise self.failures["get"]
        if name not in self.policies:
            raise api_error(404, "Not Found")
        return copy.deepcopy(self.policies[name])

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        return {"items": copy.deepcopy(list(self.policies.values())), "metadata": {"resourceVersion": "7"}}

    def patch_cluster_custom_object_status(self, group, version, plural, name, body, **kwargs):
        if name not in self.policies:
            raise api_error(404, "Not Found")
        self.status_patches.append((name, copy.deepcopy(body)))
        self.policies[name].setdefault("status", {}).update(body["status"])
        return copy.deepcopy(self.policies[name])


def make_policy(name="global-limits", limits=None, include=None, exclude=None, deleting=False) -> dict:
    """Build a ClusterLimit object as returned by the API."""
    if limits is None:
        limits = [{
            "type": "Container",
            "default": {"cpu": "500m", "memory": "512Mi"},
            "defaultRequest": {"cpu": "100m", "memory": "128Mi"},
            "max": {"cpu": "2", "memory": "2Gi"},
        }]
    metadata = {"name": name, "generation": 1, "resourceVersion": "5"}
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "apiVersion": "jicki.cn/v1",
        "kind": "ClusterLimit",
        "metadata": metadata,
        "spec": {
            "limits": limits,
            "includeNamespaces": include or [],
            "excludeNamespaces": exclude or [],
        },
    }


@pytest.fixture
def core_api():
    return FakeCoreV1Api(namespaces=["a", "b", "kube-system"])


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()
