from __future__ import annotations

import time
from dataclasses import replace
from datetime import timedelta

from backend.domain.models import ReservationStatus, VehicleType
from backend.services.expiry_service import ExpirySweeper


def test_pending_reservation_is_cancelled_sixteen_minutes_after_start(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(hours=1)
    created = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )
    reservation_id = created.reservation.reservation_id

    engine.clock.set(start + timedelta(minutes=16))
    assert engine.ledger.available(site, VehicleType.CAR) == 0

    assert engine.sweeper.run_once() == [reservation_id]
    assert engine.repository.get_reservation(reservation_id).status is ReservationStatus.CANCELLED
    assert engine.ledger.available(site, VehicleType.CAR) == 1


def test_pending_reservation_inside_grace_window_is_kept(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(hours=1)
    created = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )

    engine.clock.set(start + timedelta(minutes=15))
    assert engine.sweeper.run_once() == []
    assert engine.repository.get_reservation(
        created.reservation.reservation_id
    ).status is ReservationStatus.PENDING


def test_started_reservation_is_never_expired(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(minutes=10)
    created = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )
    engine.reservations.start_reservation(created.reservation.reservation_id, "u1")

    engine.clock.set(start + timedelta(hours=2))
    assert engine.sweeper.run_once() == []
    assert engine.repository.get_reservation(
        created.reservation.reservation_id
    ).status is ReservationStatus.ACTIVE


def test_expire_is_a_no_op_when_reservation_already_moved_on(engine) -> None:
    site = engine.add_site(cars=1)
    created = engine.reservations.create_reservation(
        user_id="u1",
        site_id=site.site_id,
        vehicle_type="car",
        requested_start=engine.clock.now() + timedelta(minutes=5),
    )
    stale = created.reservation
    engine.reservations.cancel_reservation(stale.reservation_id, "u1")

    assert engine.reservations.expire_reservation(stale) is None


def test_one_failing_reservation_does_not_stop_the_sweep(engine, monkeypatch) -> None:
    site = engine.add_site(cars=2)
    first = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=engine.clock.now()
    )
    second = engine.reservations.create_reservation(
        user_id="u2",
        site_id=site.site_id,
        vehicle_type="car",
        requested_start=engine.clock.now() + timedelta(minutes=1),
    )
    real_expire = engine.reservations.expire_reservation

    def flaky(reservation):
        if reservation.reservation_id == first.reservation.reservation_id:
            raise RuntimeError("boom")
        return real_expire(reservation)

    monkeypatch.setattr(engine.reservations, "expire_reservation", flaky)
    engine.clock.advance(hours=1)

    assert engine.sweeper.run_once() == [second.reservation.reservation_id]


def test_background_sweeper_starts_and_stops(engine) -> None:
    site = engine.add_site(cars=1)
    created = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=engine.clock.now()
    )
    engine.clock.advance(minutes=30)

    sweeper = ExpirySweeper(
        reservation_service=engine.reservations,
        repository=engine.repository,
        clock=engine.clock,
        settings=replace(engine.settings, sweep_interval_seconds=0.05),
    )
    sweeper.start()
    try:
        assert sweeper.running is True
        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            current = engine.repository.get_reservation(created.reservation.reservation_id)
            if current.status is ReservationStatus.CANCELLED:
                break
            time.sleep(0.05)
    finally:
        sweeper.stop()

    assert sweeper.running is False
    assert current.status is ReservationStatus.CANCELLED
