"""Parsed ClusterLimit objects and reconciliation outcomes."""

from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class LimitRule:
    """One entry of a ClusterLimit's spec.limits."""
    type: str = ""
    default: Dict[str, str] = field(default_factory=dict)
    default_request: Dict[str, str] = field(default_factory=dict)
    max: Dict[str, str] = field(default_factory=dict)
    min: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "LimitRule":
        """Create LimitRule from a spec.limits entry."""
        return cls(
            type=item.get("type") or "",
            default=dict(item.get("default") or {}),
            default_request=dict(item.get("defaultRequest") or {}),
            max=dict(item.get("max") or {}),
            min=dict(item.get("min") or {}),
        )


@dataclass
class ClusterLimitPolicy:
    """Parsed ClusterLimit specification."""
    name: str
    limits: List[LimitRule] = field(default_factory=list)
    include_namespaces: List[str] = field(default_factory=list)
    exclude_namespaces: List[str] = field(default_factory=list)
    applied_namespaces: List[str] = field(default_factory=list)
    generation: int = 0
    observed_generation: int = 0
    deleting: bool = False

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "ClusterLimitPolicy":
        """Create ClusterLimitPolicy from CRD object."""
        metadata = crd_object.get("metadata") or {}
        spec = crd_object.get("spec") or {}
        status = crd_object.get("status") or {}

        return cls(
            name=metadata.get("name", ""),
            limits=[LimitRule.from_dict(item) for item in spec.get("limits") or []],
            include_namespaces=list(spec.get("includeNamespaces") or []),
            exclude_namespaces=list(spec.get("excludeNamespaces") or []),
            applied_namespaces=list(status.get("appliedNamespaces") or []),
            generation=metadata.get("generation", 0),
            observed_generation=status.get("observedGeneration", 0),
            deleting=bool(metadata.get("deletionTimestamp")),
        )


# Per-namespace actions
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
DELETED = "deleted"
ABSENT = "absent"
CONFLICT = "conflict"
ERROR = "error"
DRY_RUN = "dry-run"

WRITE_ACTIONS = (CREATED, UPDATED, DELETED)


@dataclass
class NamespaceResult:
    """Outcome of the work done for one namespace during a pass."""
    namespace: str
    action: str
    message: str = ""


@dataclass
class PassResult:
    """Outcome of one convergence or cleanup pass."""
    policy: str
    kind: str = "converge"
    target_namespaces: List[str] = field(default_factory=list)
    results: List[NamespaceResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True when the pass ran to the end without any failed namespace."""
        return self.error is None and not self.failed

    @property
    def failed(self) -> List[NamespaceResult]:
        """Namespaces whose task ended in an error."""
        return [r for r in self.results if r.action == ERROR]

    @property
    def conflicts(self) -> List[NamespaceResult]:
        """Namespaces holding a LimitRange this controller does not own."""
        return [r for r in self.results if r.action == CONFLICT]

    @property
    def writes(self) -> int:
        """Number of create/update/delete calls that changed the cluster."""
        return sum(1 for r in self.results if r.action in WRITE_ACTIONS)

    @property
    def applied_namespaces(self) -> List[str]:
        """
        Namespaces carrying a managed LimitRange after this pass.

        Namespaces whose ensure task failed are left out; the next pass
        recomputes them anyway.
        """
        present = (CREATED, UPDATED, UNCHANGED)
        return sorted(
            r.namespace for r in self.results
            if r.action in present and r.namespace in self.target_namespaces
        )

    def summary(self) -> str:
        """One-line description of the pass for logging."""
        if self.error:
            return f"{self.kind} for {self.policy} aborted: {self.error}"
        counts: Dict[str, int] = {}
        for r in self.results:
            counts[r.action] = counts.get(r.action, 0) + 1
        detail = ", ".join(f"{action}={count}" for action, count in sorted(counts.items()))
        return f"{self.kind} for {self.policy} finished: {detail or 'nothing to do'}"
