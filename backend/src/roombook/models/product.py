"""Product catalog model (single slots and hour packages)."""
import enum

from sqlalchemy import Boolean, Column, Enum as SQLEnum, ForeignKey, Integer, String

from roombook.models.base import Base


class ProductType(enum.Enum):
    """Sellable product types."""

    HOURLY_RATE = "hourly_rate"
    PACKAGE_10H = "package_10h"
    PACKAGE_20H = "package_20h"
    PACKAGE_40H = "package_40h"
    SHIFT_FIXED = "shift_fixed"
    DAY_PASS = "day_pass"
    SATURDAY_HOUR = "saturday_hour"
    SATURDAY_5H = "saturday_5h"
    SATURDAY_SHIFT = "saturday_shift"


# Products whose payment mints a credit balance instead of paying a single slot
PACKAGE_PRODUCT_TYPES = frozenset(
    {
        ProductType.PACKAGE_10H,
        ProductType.PACKAGE_20H,
        ProductType.PACKAGE_40H,
        ProductType.SHIFT_FIXED,
        ProductType.SATURDAY_5H,
        ProductType.SATURDAY_SHIFT,
    }
)

# Included hours when the product row does not set hours_included
DEFAULT_PACKAGE_HOURS = {
    ProductType.PACKAGE_10H: 10,
    ProductType.PACKAGE_20H: 20,
    ProductType.PACKAGE_40H: 40,
    ProductType.SHIFT_FIXED: 16,
    ProductType.SATURDAY_5H: 5,
    ProductType.SATURDAY_SHIFT: 16,
}


class Product(Base):
    """Product sold through the booking flow."""

    __tablename__ = "products"

    name = Column(String, nullable=False)
    type = Column(SQLEnum(ProductType), nullable=False, index=True)
    price = Column(Integer, nullable=False)  # Centavos
    hours_included = Column(Integer, nullable=True)
    validity_days = Column(Integer, nullable=True)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=True, index=True)
    active = Column(Boolean, nullable=False, default=True)

    @property
    def is_package(self) -> bool:
        """Whether confirming this product mints credits."""
        return self.type in PACKAGE_PRODUCT_TYPES

    def __repr__(self) -> str:
        """String representation."""
        return f"<Product(id={self.id}, type={self.type.value}, price={self.price})>"
