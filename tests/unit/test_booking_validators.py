"""
Unit tests for booking validators.
"""

from datetime import datetime, timedelta

import pytest

from booking.models import ClientInfo, Service, StaffMember
from booking.validators.booking_validators import (
    localize_start_time,
    normalize_phone,
    validate_client,
    validate_duration,
    validate_not_in_past,
    validate_staff,
)
from shared.exceptions import ValidationError
from conftest import MOSCOW_TZ, at


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+79123456789", "+79123456789"),
        ("8 (912) 345-67-89", "+79123456789"),
        ("9123456789", "+79123456789"),
        ("not a phone", None),
        ("+7 123", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_validate_client_normalizes_fields():
    info = validate_client(ClientInfo(name="  Анна ", phone="8 912 345 67 89", email=" A@B.RU "))

    assert info == ClientInfo(name="Анна", phone="+79123456789", email="a@b.ru")


def test_validate_client_empty_email_is_none():
    info = validate_client(ClientInfo(name="Анна", phone="+79123456789", email="  "))
    assert info.email is None


def test_name_too_long():
    with pytest.raises(ValidationError) as exc_info:
        validate_client(ClientInfo(name="А" * 101, phone="+79123456789"))
    assert exc_info.value.field == "client.name"


def test_localize_start_time():
    naive = datetime(2026, 10, 19, 10, 0)
    assert localize_start_time(naive, MOSCOW_TZ) == at(10)
    assert localize_start_time(at(10), MOSCOW_TZ) is not None


def test_start_time_equal_to_now_is_past():
    with pytest.raises(ValidationError):
        validate_not_in_past(at(10), at(10))
    validate_not_in_past(at(10, 1), at(10))


def test_staff_without_service_list_performs_everything():
    service = Service(name="Стрижка", duration=60)
    validate_staff(StaffMember(name="Ирина"), service)


def test_inactive_staff_rejected():
    service = Service(name="Стрижка", duration=60)
    with pytest.raises(ValidationError) as exc_info:
        validate_staff(StaffMember(name="Ирина", is_active=False), service)
    assert exc_info.value.field == "staff_id"


def test_validate_duration_defaults_to_service():
    service = Service(name="Стрижка", duration="01:30:00")
    assert validate_duration(None, service) == timedelta(minutes=90)
    assert validate_duration(timedelta(minutes=90), service) == timedelta(minutes=90)
    with pytest.raises(ValidationError):
        validate_duration(timedelta(minutes=60), service)
