"""SQLAlchemy ORM models for the booking platform."""
# Import all models here to ensure they are registered with Alembic

from roombook.models.base import Base
from roombook.models.user import User
from roombook.models.room import Room
from roombook.models.product import Product, ProductType
from roombook.models.booking import Booking, BookingStatus, FinancialStatus
from roombook.models.payment import Payment, PaymentStatus
from roombook.models.credit import Credit, CreditStatus, CreditUsageType
from roombook.models.refund import Refund, RefundGateway, RefundStatus
from roombook.models.coupon import Coupon, CouponUsage, CouponUsageContext, CouponUsageStatus
from roombook.models.webhook_event import WebhookEvent, WebhookEventStatus
from roombook.models.audit_log import AuditLog
from roombook.models.conversion_event import ConversionEvent, ConversionStatus
from roombook.models.activation_token import ActivationToken

__all__ = [
    "Base",
    "User",
    "Room",
    "Product",
    "ProductType",
    "Booking",
    "BookingStatus",
    "FinancialStatus",
    "Payment",
    "PaymentStatus",
    "Credit",
    "CreditStatus",
    "CreditUsageType",
    "Refund",
    "RefundGateway",
    "RefundStatus",
    "Coupon",
    "CouponUsage",
    "CouponUsageContext",
    "CouponUsageStatus",
    "WebhookEvent",
    "WebhookEventStatus",
    "AuditLog",
    "ConversionEvent",
    "ConversionStatus",
    "ActivationToken",
]
