"""
Notification service for booking workflow side effects.

Workflow services never notify inline: they build `NotificationEvent`
objects describing who should hear about what, and hand the list to
`NotificationService.dispatch` after their own transaction has committed.
Delivery is best effort: every failure is logged and swallowed so a
notification problem can never undo or fail a booking state change.

Each event becomes one in-app `Notification` row per recipient, plus an email
through the configured `EmailProvider` for events flagged `email=True`.
"""
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from labportal.lib.logging import get_logger
from labportal.lib.settings import settings
from labportal.models.bookings import BookingRequest
from labportal.models.notifications import Notification, NotificationType
from labportal.models.users import User, UserStatus, UserType


logger = get_logger(__name__)


class NotificationDeliveryError(Exception):
    """A best-effort side effect failed. Never propagates past dispatch()."""


@dataclass(frozen=True)
class NotificationEvent:
    """
    One thing to tell one or more users.

    Attributes:
        type: Inbox category
        title: Short headline
        message: Body text
        related_entity_type: Entity the notification links to ("booking")
        related_entity_id: Id of that entity
        recipient_ids: Explicit recipients
        to_admins: Also fan out to every active lab administrator
        email: Also send an email to each recipient
    """
    type: NotificationType
    title: str
    message: str
    related_entity_type: str
    related_entity_id: str
    recipient_ids: Tuple[UUID, ...] = field(default_factory=tuple)
    to_admins: bool = False
    email: bool = False


class AdminDirectory(ABC):
    """Source of the administrators that admin-facing events fan out to."""

    @abstractmethod
    def list_active_admin_ids(self) -> Set[UUID]:
        pass


class SqlAdminDirectory(AdminDirectory):
    """Active lab administrators from the users table."""

    def __init__(self, db: Session):
        self.db = db

    def list_active_admin_ids(self) -> Set[UUID]:
        stmt = select(User.id).where(
            User.user_type == UserType.LAB_ADMINISTRATOR,
            User.status == UserStatus.ACTIVE,
        )
        return set(self.db.execute(stmt).scalars().all())


class StaticAdminDirectory(AdminDirectory):
    """Fixed admin list, for scripts and tests."""

    def __init__(self, admin_ids: Iterable[UUID]):
        self._admin_ids = set(admin_ids)

    def list_active_admin_ids(self) -> Set[UUID]:
        return set(self._admin_ids)


class EmailProvider(ABC):
    """
    Abstract base class for email delivery providers.
    """

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        """
        Send one plain-text email.

        Raises:
            NotificationDeliveryError: If the message could not be delivered
        """
        pass


class ConsoleEmailProvider(EmailProvider):
    """
    Console email provider for development/testing.
    Logs messages instead of sending them.
    """

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Email logged to console", extra={"to": to, "subject": subject})


class SMTPEmailProvider(EmailProvider):
    """Email provider using SMTP (STARTTLS on 587, SSL on 465)."""

    def __init__(self):
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    def send(self, to: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to

        try:
            self._send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryError(f"SMTP delivery to {to} failed: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, OSError)),
        reraise=True,
    )
    def _send_message(self, msg: MIMEText) -> None:
        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)


def get_email_provider() -> Optional[EmailProvider]:
    """Email provider selected by settings.email_provider (console, smtp, none)."""
    provider = settings.email_provider.lower()
    if provider == "smtp":
        return SMTPEmailProvider()
    if provider == "none":
        return None
    return ConsoleEmailProvider()


class NotificationService:
    """
    Dispatches workflow notification events.

    Handles:
    - Recipient resolution (explicit ids and admin fan-out)
    - In-app notification rows
    - Optional email delivery
    """

    def __init__(
        self,
        db: Session,
        admin_directory: Optional[AdminDirectory] = None,
        email_provider: Optional[EmailProvider] = None,
    ):
        self.db = db
        self.admin_directory = admin_directory or SqlAdminDirectory(db)
        self.email_provider = email_provider

    def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        """
        Deliver events best effort.

        Must be called after the caller's transaction has committed: a failed
        event rolls back only its own notification rows.

        Returns:
            Number of in-app notifications written
        """
        written = 0
        for event in events:
            try:
                written += self._deliver(event)
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Failed to deliver {event.type.value} notification: {e}",
                    extra={
                        "notification_type": event.type.value,
                        "related_entity_id": event.related_entity_id,
                    },
                    exc_info=True,
                )
        return written

    def _resolve_recipients(self, event: NotificationEvent) -> List[UUID]:
        recipients = list(dict.fromkeys(event.recipient_ids))
        if event.to_admins:
            for admin_id in sorted(self.admin_directory.list_active_admin_ids(), key=str):
                if admin_id not in recipients:
                    recipients.append(admin_id)
        return recipients

    def _deliver(self, event: NotificationEvent) -> int:
        recipients = self._resolve_recipients(event)
        if not recipients:
            logger.warning(
                "Notification has no recipients",
                extra={"notification_type": event.type.value, "related_entity_id": event.related_entity_id},
            )
            return 0

        rows = [
            Notification(
                user_id=user_id,
                type=event.type,
                related_entity_type=event.related_entity_type,
                related_entity_id=event.related_entity_id,
                title=event.title,
                message=event.message,
                email_sent=False,
            )
            for user_id in recipients
        ]
        self.db.add_all(rows)
        self.db.commit()

        logger.info(
            "Notifications created",
            extra={
                "notification_type": event.type.value,
                "related_entity_id": event.related_entity_id,
                "recipients": len(rows),
            },
        )

        if event.email and self.email_provider is not None:
            self._send_emails(event, rows)

        return len(rows)

    def _send_emails(self, event: NotificationEvent, rows: List[Notification]) -> None:
        user_ids = [row.user_id for row in rows]
        emails = dict(
            self.db.execute(select(User.id, User.email).where(User.id.in_(user_ids))).all()
        )

        for row in rows:
            address = emails.get(row.user_id)
            if not address:
                continue
            try:
                self.email_provider.send(address, event.title, event.message)
            except NotificationDeliveryError as e:
                logger.warning(
                    f"Email delivery failed: {e}",
                    extra={"notification_id": str(row.id), "notification_type": event.type.value},
                )
                continue
            row.email_sent = True

        self.db.commit()


# ===== Event builders =====

def _booking_event(
    booking: BookingRequest,
    type: NotificationType,
    title: str,
    message: str,
    to_owner: bool = True,
    to_admins: bool = False,
    email: bool = False,
) -> NotificationEvent:
    return NotificationEvent(
        type=type,
        title=title,
        message=message,
        related_entity_type="booking",
        related_entity_id=str(booking.id),
        recipient_ids=(booking.user_id,) if to_owner else (),
        to_admins=to_admins,
        email=email,
    )


def _quantity_change(original: int, new: int, increased: str, decreased: str) -> str:
    verb = increased if new > original else decreased
    return f"{verb} from {original} to {new}"


def booking_completed(booking: BookingRequest) -> NotificationEvent:
    return _booking_event(
        booking,
        NotificationType.BOOKING_COMPLETED,
        "Booking Completed",
        f"All results for booking {booking.reference_number} are ready. "
        f"You can now view and download your results.",
        email=True,
    )


def modification_requested_for_user(
    booking: BookingRequest,
    service_name: str,
    original_quantity: int,
    new_quantity: int,
) -> NotificationEvent:
    change = _quantity_change(original_quantity, new_quantity, "increased", "decreased")
    return _booking_event(
        booking,
        NotificationType.SERVICE_MODIFICATION_REQUESTED,
        "Modification Request",
        f'The lab has requested to modify "{service_name}" - quantity {change}. '
        f"Please review and respond.",
    )


def modification_requested_for_admins(
    booking: BookingRequest,
    service_name: str,
    customer_name: str,
    original_quantity: int,
    new_quantity: int,
    reason: str,
) -> NotificationEvent:
    change = _quantity_change(original_quantity, new_quantity, "increase", "decrease")
    short_reason = reason[:100] + ("..." if len(reason) > 100 else "")
    return _booking_event(
        booking,
        NotificationType.SERVICE_MODIFICATION_REQUESTED,
        "User Modification Request",
        f'{customer_name} requested a modification for "{service_name}" '
        f"({booking.reference_number}) - {change}. Reason: {short_reason}",
        to_owner=False,
        to_admins=True,
    )


def modification_resolved_for_admins(
    booking: BookingRequest,
    service_name: str,
    customer_name: str,
    approved: bool,
    new_quantity: int,
) -> NotificationEvent:
    if approved:
        title = "Modification Approved"
        message = (
            f'{customer_name} approved the modification for "{service_name}" '
            f"({booking.reference_number}). Quantity changed to {new_quantity}."
        )
    else:
        title = "Modification Rejected"
        message = (
            f'{customer_name} rejected the modification for "{service_name}" '
            f"({booking.reference_number}). Booking remains unchanged."
        )
    return _booking_event(
        booking,
        NotificationType.SERVICE_MODIFICATION_RESOLVED,
        title,
        message,
        to_owner=False,
        to_admins=True,
    )


def modification_resolved_for_user(
    booking: BookingRequest,
    service_name: str,
    approved: bool,
    new_quantity: int,
) -> NotificationEvent:
    if approved:
        title = "Modification Request Approved"
        message = (
            f'Your request to change "{service_name}" on booking {booking.reference_number} '
            f"was approved. Quantity is now {new_quantity}."
        )
    else:
        title = "Modification Request Rejected"
        message = (
            f'Your request to change "{service_name}" on booking {booking.reference_number} '
            f"was rejected. Booking remains unchanged."
        )
    return _booking_event(
        booking,
        NotificationType.SERVICE_MODIFICATION_RESOLVED,
        title,
        message,
    )


def booking_cancelled_by_user_confirmation(
    booking: BookingRequest,
    reason: Optional[str],
) -> NotificationEvent:
    message = f"Your booking {booking.reference_number} has been cancelled."
    if reason:
        message += f" Reason: {reason}"
    return _booking_event(
        booking,
        NotificationType.BOOKING_CANCELLED,
        "Booking Cancelled",
        message,
        email=True,
    )


def booking_cancelled_admin_alert(
    booking: BookingRequest,
    customer_name: str,
    reason: Optional[str],
) -> NotificationEvent:
    message = f"{customer_name} cancelled booking {booking.reference_number}."
    if reason:
        message += f" Reason: {reason}"
    return _booking_event(
        booking,
        NotificationType.BOOKING_CANCELLED,
        "Booking Cancelled by Customer",
        message,
        to_owner=False,
        to_admins=True,
        email=True,
    )


def booking_cancelled_by_admin(
    booking: BookingRequest,
    reason: Optional[str],
) -> NotificationEvent:
    message = f"Your booking {booking.reference_number} has been cancelled by the lab."
    if reason:
        message += f" Reason: {reason}"
    return _booking_event(
        booking,
        NotificationType.BOOKING_CANCELLED,
        "Booking Cancelled",
        message,
        email=True,
    )


def booking_reviewed(
    booking: BookingRequest,
    type: NotificationType,
    title: str,
    comment: Optional[str],
) -> NotificationEvent:
    message = f"Booking {booking.reference_number}: {title.lower()}."
    if comment:
        message += f" Comment: {comment}"
    return _booking_event(booking, type, title, message, email=True)


def booking_resubmitted(booking: BookingRequest, customer_name: str) -> NotificationEvent:
    return _booking_event(
        booking,
        NotificationType.BOOKING_SUBMITTED,
        "Booking Resubmitted",
        f"{customer_name} resubmitted booking {booking.reference_number} for review.",
        to_owner=False,
        to_admins=True,
    )
