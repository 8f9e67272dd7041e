"""Test reservation status transitions."""

from datetime import date, datetime, time, timezone

import pytest

from app.models.reservation import Reservation, ReservationStatus

NOW = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)


def make_reservation(status: ReservationStatus) -> Reservation:
    return Reservation(
        tenant_id=1,
        store_id=1,
        staff_id=1,
        date=date(2024, 1, 22),
        start_time=time(10),
        end_time=time(11),
        duration_minutes=60,
        status=status.value,
    )


class TestReservationTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (ReservationStatus.PENDING, ReservationStatus.CONFIRMED),
            (ReservationStatus.PENDING, ReservationStatus.CANCELED),
            (ReservationStatus.PENDING, ReservationStatus.NO_SHOW),
            (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED),
            (ReservationStatus.CONFIRMED, ReservationStatus.CANCELED),
            (ReservationStatus.CONFIRMED, ReservationStatus.NO_SHOW),
        ],
    )
    def test_allowed_transitions(self, current, target):
        reservation = make_reservation(current)

        assert reservation.can_transition_to(target)
        assert reservation.transition_to(target, NOW)
        assert reservation.status == target.value
        assert reservation.status_changed_at == NOW

    @pytest.mark.parametrize(
        "current,target",
        [
            (ReservationStatus.PENDING, ReservationStatus.COMPLETED),
            (ReservationStatus.COMPLETED, ReservationStatus.CANCELED),
            (ReservationStatus.CANCELED, ReservationStatus.CONFIRMED),
            (ReservationStatus.NO_SHOW, ReservationStatus.COMPLETED),
        ],
    )
    def test_rejected_transitions(self, current, target):
        reservation = make_reservation(current)

        assert not reservation.transition_to(target, NOW)
        assert reservation.status == current.value

    def test_cancel_records_reason_and_time(self):
        reservation = make_reservation(ReservationStatus.CONFIRMED)

        reservation.transition_to(ReservationStatus.CANCELED, NOW, reason="sick")

        assert reservation.canceled_at == NOW
        assert reservation.cancel_reason == "sick"
        assert not reservation.is_active

    def test_active_statuses(self):
        assert make_reservation(ReservationStatus.PENDING).is_active
        assert make_reservation(ReservationStatus.COMPLETED).is_active
        assert not make_reservation(ReservationStatus.NO_SHOW).is_active
