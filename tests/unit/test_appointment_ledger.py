"""
Unit tests for the appointment ledger.

Tests coverage:
- Overlap rejection (half-open intervals: touching is allowed)
- Cancelled appointments never conflict
- Concurrent inserts for the same slot: exactly one wins
- Partial updates (end follows the service duration, re-check overlap)
- Random operation sequences never leave overlapping appointments
- Hard delete
"""

import asyncio
import random
from datetime import timedelta
from uuid import uuid4

import pytest

from booking.models import Appointment, AppointmentPatch, Service
from booking.services.appointment_ledger import AppointmentLedger
from database.models import AppointmentStatus
from database.store import InMemoryBookingStore
from shared.exceptions import ConflictError, NotFoundError, ValidationError
from conftest import at


def _appointment(staff_id, start, end, **kwargs):
    kwargs.setdefault("service_id", uuid4())
    return Appointment(
        client_id=uuid4(),
        staff_id=staff_id,
        start_time=start,
        end_time=end,
        **kwargs,
    )


@pytest.fixture
def staff_id():
    return uuid4()


@pytest.fixture
def ledger(store):
    return AppointmentLedger(store)


class TestInsert:
    async def test_overlapping_insert_rejected(self, ledger, staff_id):
        first = await ledger.insert(_appointment(staff_id, at(10), at(11)))

        with pytest.raises(ConflictError) as exc_info:
            await ledger.insert(_appointment(staff_id, at(10, 30), at(11, 30)))

        assert exc_info.value.conflicting_id == first.id

    async def test_touching_intervals_allowed(self, ledger, staff_id):
        await ledger.insert(_appointment(staff_id, at(10), at(11)))
        await ledger.insert(_appointment(staff_id, at(11), at(12)))
        await ledger.insert(_appointment(staff_id, at(9), at(10)))

    async def test_other_staff_not_affected(self, ledger, staff_id):
        await ledger.insert(_appointment(staff_id, at(10), at(11)))
        await ledger.insert(_appointment(uuid4(), at(10), at(11)))

    async def test_cancelled_appointment_does_not_block(self, ledger, staff_id):
        await ledger.insert(
            _appointment(staff_id, at(10), at(11), status=AppointmentStatus.CANCELLED)
        )
        await ledger.insert(_appointment(staff_id, at(10), at(11)))

    async def test_concurrent_inserts_single_winner(self, staff_id):
        ledger = AppointmentLedger(InMemoryBookingStore(latency=0.01))

        results = await asyncio.gather(
            *[ledger.insert(_appointment(staff_id, at(10), at(11))) for _ in range(5)],
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Appointment)]
        losers = [r for r in results if isinstance(r, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 4

    async def test_store_level_check_without_ledger_lock(self, store, staff_id):
        await store.save_appointment(_appointment(staff_id, at(10), at(11)), check_overlap=True)

        with pytest.raises(ConflictError):
            await store.save_appointment(
                _appointment(staff_id, at(10, 30), at(11, 30)), check_overlap=True
            )


class TestUpdate:
    async def test_move_keeps_length(self, ledger, staff_id):
        appointment = await ledger.insert(_appointment(staff_id, at(10), at(11, 30)))

        moved = await ledger.update(appointment.id, AppointmentPatch(start_time=at(15)))

        assert moved.start_time == at(15)
        assert moved.end_time == at(16, 30)

    async def test_move_onto_other_appointment_rejected(self, ledger, staff_id):
        await ledger.insert(_appointment(staff_id, at(10), at(11)))
        other = await ledger.insert(_appointment(staff_id, at(12), at(13)))

        with pytest.raises(ConflictError):
            await ledger.update(other.id, AppointmentPatch(start_time=at(10, 30)))

    async def test_update_does_not_conflict_with_itself(self, ledger, staff_id):
        appointment = await ledger.insert(_appointment(staff_id, at(10), at(11)))

        updated = await ledger.update(
            appointment.id, AppointmentPatch(start_time=at(10, 30), notes="Окрашивание")
        )

        assert updated.end_time == at(11, 30)
        assert updated.notes == "Окрашивание"

    async def test_reactivating_into_occupied_interval_rejected(self, ledger, staff_id):
        cancelled = await ledger.insert(
            _appointment(staff_id, at(10), at(11), status=AppointmentStatus.CANCELLED)
        )
        await ledger.insert(_appointment(staff_id, at(10), at(11)))

        with pytest.raises(ConflictError):
            await ledger.update(cancelled.id, AppointmentPatch(status=AppointmentStatus.CONFIRMED))

    async def test_end_before_start_rejected(self, ledger, staff_id):
        appointment = await ledger.insert(_appointment(staff_id, at(10), at(11)))

        with pytest.raises(ValidationError) as exc_info:
            await ledger.update(appointment.id, AppointmentPatch(end_time=at(9)))

        assert exc_info.value.field == "end_time"

    async def test_service_change_recomputes_end(self, ledger, store, service, staff_id):
        long_service = await store.save_service(
            Service(name="Окрашивание", price="4000.00", duration=timedelta(hours=2))
        )
        appointment = await ledger.insert(
            _appointment(staff_id, at(10), at(11), service_id=service.id)
        )

        updated = await ledger.update(appointment.id, AppointmentPatch(service_id=long_service.id))

        assert updated.end_time == at(12)
        assert (await store.get_appointment(appointment.id)).end_time == at(12)

    async def test_service_change_into_occupied_interval_rejected(
        self, ledger, store, service, staff_id
    ):
        long_service = await store.save_service(
            Service(name="Окрашивание", price="4000.00", duration=timedelta(hours=2))
        )
        appointment = await ledger.insert(
            _appointment(staff_id, at(10), at(11), service_id=service.id)
        )
        await ledger.insert(_appointment(staff_id, at(11), at(12), service_id=service.id))

        with pytest.raises(ConflictError):
            await ledger.update(appointment.id, AppointmentPatch(service_id=long_service.id))

        assert (await store.get_appointment(appointment.id)).end_time == at(11)

    async def test_end_time_disagreeing_with_service_rejected(
        self, ledger, service, staff_id
    ):
        appointment = await ledger.insert(
            _appointment(staff_id, at(10), at(11), service_id=service.id)
        )

        with pytest.raises(ValidationError) as exc_info:
            await ledger.update(appointment.id, AppointmentPatch(end_time=at(13)))

        assert exc_info.value.field == "end_time"

    async def test_matching_end_time_accepted(self, ledger, service, staff_id):
        appointment = await ledger.insert(
            _appointment(staff_id, at(10), at(11), service_id=service.id)
        )

        moved = await ledger.update(
            appointment.id, AppointmentPatch(start_time=at(15), end_time=at(16))
        )

        assert (moved.start_time, moved.end_time) == (at(15), at(16))

    async def test_nullable_field_can_be_cleared(self, ledger, staff_id):
        appointment = await ledger.insert(_appointment(staff_id, at(10), at(11), notes="x"))

        updated = await ledger.update(appointment.id, AppointmentPatch(notes=None))

        assert updated.notes is None

    async def test_unknown_appointment(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.update(uuid4(), AppointmentPatch(notes="x"))


class TestRemove:
    async def test_remove_frees_interval(self, ledger, staff_id):
        appointment = await ledger.insert(_appointment(staff_id, at(10), at(11)))
        await ledger.remove(appointment.id)

        assert await ledger.find_conflict(staff_id, at(10), at(11)) is None

    async def test_remove_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.remove(uuid4())


def test_overlap_is_half_open():
    appointment = _appointment(uuid4(), at(10), at(11))
    assert appointment.overlaps(at(10, 59), at(12))
    assert not appointment.overlaps(at(11), at(12))
    assert not appointment.overlaps(at(9), at(10))
    assert appointment.duration == timedelta(hours=1)


def _assert_no_overlap(appointments):
    ordered = sorted(appointments, key=lambda a: a.start_time)
    for earlier, later in zip(ordered, ordered[1:]):
        assert earlier.end_time <= later.start_time, (earlier, later)


@pytest.mark.parametrize("seed", [1, 7, 42, 2026])
async def test_random_sequences_never_overlap(store, seed):
    rng = random.Random(seed)
    ledger = AppointmentLedger(store)
    staff_ids = [uuid4(), uuid4()]
    day_start = at(9)

    def random_interval():
        start = day_start + timedelta(minutes=15 * rng.randrange(0, 36))
        return start, start + timedelta(minutes=15 * rng.randint(1, 8))

    for _ in range(200):
        booked = await store.list_appointments(include_cancelled=True)
        action = rng.choice(["insert", "insert", "move", "cancel", "restore", "remove"])
        try:
            if action == "insert" or not booked:
                start, end = random_interval()
                await ledger.insert(_appointment(rng.choice(staff_ids), start, end))
            elif action == "move":
                start, _ = random_interval()
                await ledger.update(rng.choice(booked).id, AppointmentPatch(start_time=start))
            elif action == "cancel":
                await ledger.update(
                    rng.choice(booked).id, AppointmentPatch(status=AppointmentStatus.CANCELLED)
                )
            elif action == "restore":
                await ledger.update(
                    rng.choice(booked).id, AppointmentPatch(status=AppointmentStatus.CONFIRMED)
                )
            else:
                await ledger.remove(rng.choice(booked).id)
        except ConflictError:
            pass

        for staff_id in staff_ids:
            _assert_no_overlap(await store.list_appointments(staff_id=staff_id))
