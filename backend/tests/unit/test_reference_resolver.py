"""Unit tests for external reference parsing."""
import pytest

from roombook.services.reference_resolver import ResourceKind, ResourceRef, resolve_reference


@pytest.mark.parametrize(
    "reference,expected",
    [
        ("booking:abc-123", ResourceRef(ResourceKind.BOOKING, "abc-123")),
        ("purchase:cr-9", ResourceRef(ResourceKind.PURCHASE, "cr-9")),
        ("booking:purchase:cr-9", ResourceRef(ResourceKind.PURCHASE, "cr-9")),
        ("credit_cr-9", ResourceRef(ResourceKind.PURCHASE, "cr-9")),
        ("abc-123", ResourceRef(ResourceKind.BOOKING, "abc-123", bare=True)),
    ],
)
def test_reference_formats(reference, expected):
    """Every issued reference format resolves to its kind and id."""
    assert resolve_reference(reference) == expected


def test_nested_purchase_prefix_wins_over_booking():
    """booking:purchase: is a purchase, not a booking with id 'purchase:...'."""
    ref = resolve_reference("booking:purchase:xyz")

    assert ref.kind is ResourceKind.PURCHASE
    assert ref.id == "xyz"


@pytest.mark.parametrize("reference", [None, "", "   "])
def test_empty_reference(reference):
    """Missing references resolve to nothing."""
    assert resolve_reference(reference) is None


@pytest.mark.parametrize("reference", ["booking:", "purchase:", "credit_", "booking:purchase:"])
def test_prefix_without_id(reference):
    """A prefix with nothing after it is not a reference."""
    assert resolve_reference(reference) is None


def test_surrounding_whitespace_is_stripped():
    """Whitespace around the reference is ignored."""
    assert resolve_reference("  booking:abc  ") == ResourceRef(ResourceKind.BOOKING, "abc")
