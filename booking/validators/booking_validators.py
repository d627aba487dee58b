"""
Booking request validation.

Field-level checks run before any store write. Every failure raises
ValidationError naming the offending field, so the booking form can point
the client at it; unknown ids raise NotFoundError.

Checks:
- client name: at least 2 characters after stripping
- client phone: parseable and valid, normalized to E.164
- client email (optional): well-formed
- service / staff ids present, entities exist and are active
- staff performs the service (when the staff has a service list)
- start_time present and not in the past
- requested duration (optional) equals the service duration
"""

import logging
import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import phonenumbers

from booking.models import ClientInfo, Service, StaffMember
from shared.exceptions import ValidationError

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_phone(phone: str, region: str = "RU") -> str | None:
    """
    Normalize phone number to E.164 format.

    Args:
        phone: Phone number in any format ("8 (912) 345-67-89", "+79123456789")
        region: Default region for numbers without a country code

    Returns:
        E.164 formatted phone number (e.g., "+79123456789") or None if invalid
    """
    try:
        parsed = phonenumbers.parse(phone, region)

        if not phonenumbers.is_valid_number(parsed):
            logger.warning(f"Invalid phone number: {phone}")
            return None

        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException as e:
        logger.warning(f"Failed to parse phone number '{phone}': {e}")
        return None


def validate_client(info: ClientInfo, region: str = "RU") -> ClientInfo:
    """
    Validate and normalize the client block of a booking request.

    Returns:
        ClientInfo with stripped name, E.164 phone and lower-cased email

    Raises:
        ValidationError: field "client.name", "client.phone" or "client.email"
    """
    name = (info.name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError("client.name", "Name must be at least 2 characters")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("client.name", f"Name must be at most {MAX_NAME_LENGTH} characters")

    if not info.phone or not info.phone.strip():
        raise ValidationError("client.phone", "Phone number is required")
    phone = normalize_phone(info.phone.strip(), region)
    if phone is None:
        raise ValidationError("client.phone", f"Invalid phone number: {info.phone}")

    email = (info.email or "").strip() or None
    if email is not None:
        if not EMAIL_RE.match(email):
            raise ValidationError("client.email", f"Invalid email: {email}")
        email = email.lower()

    return ClientInfo(name=name, phone=phone, email=email)


def localize_start_time(start_time: datetime | None, tz: ZoneInfo) -> datetime:
    """
    Require a start time; naive values are wall-clock times in the salon zone.

    Raises:
        ValidationError: field "start_time"
    """
    if start_time is None:
        raise ValidationError("start_time", "start_time is required")
    if start_time.tzinfo is None:
        return start_time.replace(tzinfo=tz)
    return start_time


def validate_not_in_past(start_time: datetime, now: datetime) -> None:
    if start_time <= now:
        raise ValidationError(
            "start_time", f"Cannot book in the past: {start_time.isoformat()}"
        )


def validate_service(service: Service) -> None:
    if not service.is_active:
        raise ValidationError("service_id", f"Service is not available: {service.name}")


def validate_staff(staff: StaffMember, service: Service) -> None:
    if not staff.is_active:
        raise ValidationError("staff_id", f"Staff member is not available: {staff.name}")
    if not staff.performs(service.id):
        raise ValidationError(
            "staff_id", f"{staff.name} does not perform service {service.name}"
        )


def validate_duration(requested: timedelta | None, service: Service) -> timedelta:
    """
    The booked duration is always the service duration; a client-sent value
    must agree with it.

    Raises:
        ValidationError: field "duration"
    """
    if requested is not None and requested != service.duration:
        raise ValidationError(
            "duration",
            f"Duration {requested} does not match service duration {service.duration}",
        )
    return service.duration
