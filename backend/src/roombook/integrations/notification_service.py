"""Booking confirmation notifications."""
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.integrations.email_client import EmailClient
from roombook.models.booking import Booking
from roombook.models.room import Room
from roombook.models.user import User
from roombook.utils.currency import format_amount

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Sends the booking confirmation email.

    Booking.email_sent_at is the dedup guard: it is only set after the
    provider accepted the message, so a crash before that resends and a
    second delivery after that is skipped.
    """

    def __init__(self, db: AsyncSession, email_client: Optional[EmailClient] = None):
        self.db = db
        self.email = email_client or EmailClient()

    async def send_booking_confirmation(self, booking_id: str) -> bool:
        """
        Send the confirmation email for a paid booking.

        Args:
            booking_id: Booking id

        Returns:
            True if the email was sent now or earlier, False otherwise
        """
        booking = await self.db.get(Booking, booking_id)
        if booking is None:
            logger.warning("confirmation_booking_not_found", booking_id=booking_id)
            return False
        if booking.email_sent_at is not None:
            logger.info("confirmation_email_already_sent", booking_id=booking_id, sent_at=booking.email_sent_at.isoformat())
            return True

        user = await self.db.get(User, booking.user_id)
        if user is None or not user.email:
            logger.warning("confirmation_user_without_email", booking_id=booking_id)
            return False
        room = await self.db.get(Room, booking.room_id)

        subject = f"Reserva confirmada - {room.name if room else 'sala'}"
        html = (
            f"<p>Olá {user.name or ''},</p>"
            f"<p>Sua reserva de {booking.start_time:%d/%m/%Y %H:%M} a {booking.end_time:%H:%M} "
            f"foi confirmada.</p>"
            f"<p>Valor pago: {format_amount(booking.amount_paid or 0)}</p>"
        )
        await self.email.send(user.email, subject, html, tags={"type": "booking_confirmation"})

        booking.email_sent_at = datetime.utcnow()
        await self.db.commit()
        logger.info("confirmation_email_sent", booking_id=booking_id)
        return True
