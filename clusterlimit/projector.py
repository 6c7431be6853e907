"""Projection of ClusterLimit rules into LimitRange objects."""

import logging
import re
from decimal import Decimal
from typing import Dict, Any, List, NamedTuple, Optional
from dataclasses import dataclass, field

from kubernetes import client
from kubernetes.utils import parse_quantity as _k8s_parse_quantity

from .config import (
    LIMIT_RANGE_NAME,
    LIMIT_TYPES,
    MANAGED_LABEL_KEY,
    MANAGED_LABEL_VALUE,
)
from .models import LimitRule

logger = logging.getLogger(__name__)

# (rule attribute, wire field name)
QUANTITY_FIELDS = (
    ("default", "default"),
    ("default_request", "defaultRequest"),
    ("max", "max"),
    ("min", "min"),
)


# Kubernetes quantity grammar: signed decimal, then an exponent or SI/binary suffix
_QUANTITY_PATTERN = re.compile(r"^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+|[numkMGTPE]|[KMGTPE]i)?$")


class QuantityError(ValueError):
    """Raised when a string is not a valid non-negative resource quantity."""


class ProjectionError(ValueError):
    """Raised when a ClusterLimit's rules cannot be turned into a LimitRange."""

    def __init__(self, index: int, field_name: str, resource: str = "", value: Any = None, reason: str = ""):
        self.index = index
        self.field_name = field_name
        self.resource = resource
        self.value = value
        self.reason = reason
        location = f"limits[{index}].{field_name}"
        if resource:
            location += f"[{resource}]"
            message = f"{location}: invalid quantity {value!r}: {reason}"
        else:
            message = f"{location}: {reason}"
        super().__init__(message)


class Quantity(NamedTuple):
    """A quantity as written by the user, plus its exact amount."""
    text: str
    amount: Decimal


@dataclass
class LimitEntry:
    """A fully resolved LimitRange item."""
    type: str
    default: Dict[str, Quantity] = field(default_factory=dict)
    default_request: Dict[str, Quantity] = field(default_factory=dict)
    max: Dict[str, Quantity] = field(default_factory=dict)
    min: Dict[str, Quantity] = field(default_factory=dict)

    def to_item(self) -> client.V1LimitRangeItem:
        def texts(quantities: Dict[str, Quantity]) -> Optional[Dict[str, str]]:
            return {name: q.text for name, q in quantities.items()} or None

        return client.V1LimitRangeItem(
            type=self.type,
            default=texts(self.default),
            default_request=texts(self.default_request),
            max=texts(self.max),
            min=texts(self.min),
        )


def parse_quantity(raw: Any) -> Decimal:
    """
    Parse a Kubernetes resource quantity into an exact Decimal.

    Examples:
        "500m" -> Decimal("0.5")
        "128Mi" -> Decimal("134217728")
        "2" -> Decimal("2")
    """
    text = str(raw).strip() if raw is not None else ""
    if not text:
        raise QuantityError("empty quantity")
    if not _QUANTITY_PATTERN.match(text):
        raise QuantityError(f"{text} is not a valid quantity")

    try:
        amount = _k8s_parse_quantity(text)
    except ValueError as e:
        raise QuantityError(str(e)) from e

    if not amount.is_finite():
        raise QuantityError(f"{text} is not a finite quantity")
    if amount < 0:
        raise QuantityError(f"{text} is negative")
    return amount


def project(rules: List[LimitRule]) -> List[LimitEntry]:
    """
    Translate ClusterLimit rules into resolved LimitRange entries.

    The whole projection fails on the first invalid rule so that a
    partially valid rule set is never written. Rule order is preserved.

    Raises:
        ProjectionError: on an unknown type or an unparsable quantity
    """
    entries = []

    for index, rule in enumerate(rules):
        if rule.type not in LIMIT_TYPES:
            raise ProjectionError(
                index, "type",
                reason=f"unsupported limit type {rule.type!r}, expected one of {', '.join(LIMIT_TYPES)}"
            )

        entry = LimitEntry(type=rule.type)
        for attr, wire_name in QUANTITY_FIELDS:
            resolved = {}
            for resource, raw in getattr(rule, attr).items():
                try:
                    resolved[resource] = Quantity(str(raw).strip(), parse_quantity(raw))
                except QuantityError as e:
                    raise ProjectionError(index, wire_name, resource, raw, str(e)) from e
            setattr(entry, attr, resolved)
        entries.append(entry)

    return entries


def build_limit_range(namespace: str, entries: List[LimitEntry]) -> client.V1LimitRange:
    """Build the managed LimitRange for a namespace."""
    return client.V1LimitRange(
        api_version="v1",
        kind="LimitRange",
        metadata=client.V1ObjectMeta(
            name=LIMIT_RANGE_NAME,
            namespace=namespace,
            labels={MANAGED_LABEL_KEY: MANAGED_LABEL_VALUE},
        ),
        spec=client.V1LimitRangeSpec(limits=[entry.to_item() for entry in entries]),
    )


def is_owned(limit_range) -> bool:
    """Check if a LimitRange carries this controller's ownership label."""
    labels = (limit_range.metadata.labels if limit_range.metadata else None) or {}
    return labels.get(MANAGED_LABEL_KEY) == MANAGED_LABEL_VALUE


def _apply_server_defaults(limit_type: str, amounts: Dict[str, Dict[str, Decimal]]) -> Dict[str, Dict[str, Decimal]]:
    """
    Mirror the API server's defaulting of Container limits.

    A missing default limit falls back to max, and a missing default
    request falls back to the default limit, then to min.
    """
    if limit_type != "Container":
        return amounts

    default = dict(amounts["default"])
    default_request = dict(amounts["default_request"])
    for name, value in amounts["max"].items():
        default.setdefault(name, value)
    for name, value in default.items():
        default_request.setdefault(name, value)
    for name, value in amounts["min"].items():
        default_request.setdefault(name, value)

    return dict(amounts, default=default, default_request=default_request)


def _unmanaged_fields(item) -> List[str]:
    """Names of set LimitRangeItem fields that projection never writes."""
    managed = {"type"} | {attr for attr, _ in QUANTITY_FIELDS}
    return sorted(
        attr for attr in getattr(item, "attribute_map", {})
        if attr not in managed and getattr(item, attr, None)
    )


def _entry_amounts(entry: LimitEntry) -> Dict[str, Dict[str, Decimal]]:
    """Desired amounts per quantity field, as the API server would store them."""
    amounts = {
        attr: {name: q.amount for name, q in getattr(entry, attr).items()}
        for attr, _ in QUANTITY_FIELDS
    }
    return _apply_server_defaults(entry.type, amounts)


def _item_amounts(item) -> Dict[str, Dict[str, Decimal]]:
    """Live amounts per quantity field of a LimitRangeItem."""
    amounts = {
        attr: {name: parse_quantity(value) for name, value in (getattr(item, attr) or {}).items()}
        for attr, _ in QUANTITY_FIELDS
    }
    return _apply_server_defaults(item.type, amounts)


def limits_match(entries: List[LimitEntry], limit_range) -> bool:
    """
    Compare desired entries with a live LimitRange.

    Quantities are compared by amount since the API server rewrites
    them into canonical form ("0.5" becomes "500m"). Any other item
    field, such as maxLimitRequestRatio, must be unset.
    """
    live_items = (limit_range.spec.limits if limit_range.spec else None) or []
    if len(live_items) != len(entries):
        return False

    for entry, item in zip(entries, live_items):
        if entry.type != item.type:
            return False
        extra = _unmanaged_fields(item)
        if extra:
            logger.debug(f"Live LimitRange sets unmanaged fields: {', '.join(extra)}")
            return False
        try:
            if _entry_amounts(entry) != _item_amounts(item):
                return False
        except QuantityError as e:
            logger.debug(f"Live LimitRange holds an unparsable quantity: {e}")
            return False

    return True
