"""Parse gateway external references into typed resource references.

Several reference formats were issued over time and are still in
flight in the gateway, so every one of them must keep resolving.
"""
import enum
from dataclasses import dataclass
from typing import Optional


class ResourceKind(str, enum.Enum):
    """Resource a payment refers to."""

    BOOKING = "booking"
    PURCHASE = "purchase"


@dataclass(frozen=True)
class ResourceRef:
    """Resolved (kind, id) pair."""

    kind: ResourceKind
    id: str
    # True when the id carried no prefix at all
    bare: bool = False


# Checked in order; the first matching prefix wins
_PREFIXES = (
    ("booking:purchase:", ResourceKind.PURCHASE),
    ("purchase:", ResourceKind.PURCHASE),
    ("credit_", ResourceKind.PURCHASE),
    ("booking:", ResourceKind.BOOKING),
)


def resolve_reference(reference: Optional[str]) -> Optional[ResourceRef]:
    """
    Resolve an external reference string.

    Args:
        reference: Raw ``externalReference`` from the gateway

    Returns:
        ResourceRef, or None for empty input or an empty id after the prefix

    Examples:
        >>> resolve_reference("booking:purchase:abc")
        ResourceRef(kind=<ResourceKind.PURCHASE: 'purchase'>, id='abc', bare=False)
        >>> resolve_reference("xyz").kind.value
        'booking'
        >>> resolve_reference("") is None
        True
    """
    if reference is None:
        return None
    reference = reference.strip()
    if not reference:
        return None

    for prefix, kind in _PREFIXES:
        if reference.startswith(prefix):
            resource_id = reference[len(prefix):].strip()
            if not resource_id:
                return None
            return ResourceRef(kind=kind, id=resource_id)

    return ResourceRef(kind=ResourceKind.BOOKING, id=reference, bare=True)
