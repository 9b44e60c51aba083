"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Mapping, Optional

from backend.domain.errors import DependencyFailureError, OutstandingReservationError
from backend.domain.models import (
    OUTSTANDING_STATUSES,
    Coordinates,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    Site,
    VehicleRate,
    VehicleType,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

# Fixed-width UTC text keeps lexical order identical to chronological order.
_INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

DEMO_SITES: tuple[dict, ...] = (
    {
        "name": "T Nagar Parking Complex",
        "address": "Pondy Bazaar, T Nagar, Chennai",
        "location": Coordinates(latitude=13.0417, longitude=80.2338),
        "rates": {
            VehicleType.CAR: ("50", "30", "300"),
            VehicleType.BIKE: ("20", "10", "100"),
        },
    },
    {
        "name": "Marina Beach Parking",
        "address": "Marina Beach Road, Chennai",
        "location": Coordinates(latitude=13.0557, longitude=80.2830),
        "rates": {
            VehicleType.CAR: ("60", "40", "350"),
            VehicleType.BIKE: ("30", "15", "150"),
        },
    },
    {
        "name": "Phoenix MarketCity Parking",
        "address": "Velachery Main Road, Velachery, Chennai",
        "location": Coordinates(latitude=12.9918, longitude=80.2183),
        "rates": {
            VehicleType.CAR: ("30", "20", "250"),
            VehicleType.BIKE: ("15", "10", "120"),
        },
    },
    {
        "name": "Central Railway Station Parking",
        "address": "Chennai Central, Chennai",
        "location": Coordinates(latitude=13.0831, longitude=80.2765),
        "rates": {
            VehicleType.CAR: ("40", "25", "280"),
            VehicleType.BIKE: ("20", "10", "120"),
        },
    },
    {
        "name": "Anna Nagar Tower Parking",
        "address": "Anna Nagar, Chennai",
        "location": Coordinates(latitude=13.0850, longitude=80.2101),
        "rates": {
            VehicleType.CAR: ("35", "20", "240"),
            VehicleType.BIKE: ("15", "10", "100"),
        },
    },
)


def encode_instant(instant: datetime) -> str:
    if instant.tzinfo is None:
        raise ValueError("instants must be timezone-aware")
    return instant.astimezone(timezone.utc).strftime(_INSTANT_FORMAT)


def decode_instant(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _reservation_from_row(row: sqlite3.Row) -> Reservation:
    return Reservation(
        reservation_id=int(row["id"]),
        user_id=str(row["user_id"]),
        site_id=int(row["site_id"]),
        vehicle_type=VehicleType(row["vehicle_type"]),
        vehicle_plate=row["vehicle_plate"],
        start_time=decode_instant(row["start_time"]),
        end_time=decode_instant(row["end_time"]),
        max_end_time=decode_instant(row["max_end_time"]),
        status=ReservationStatus(row["status"]),
        fee=Decimal(row["fee"]) if row["fee"] is not None else None,
        payment_status=PaymentStatus(row["payment_status"]),
    )


_RESERVATION_COLUMNS = """
    id, user_id, site_id, vehicle_type, vehicle_plate, start_time,
    end_time, max_end_time, status, fee, payment_status
"""


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it.

        Driver errors surface as ``DependencyFailureError``; domain errors
        raised inside the block pass through untouched.
        """
        try:
            connection = sqlite3.connect(self._db_path, timeout=5.0)
        except sqlite3.Error as exc:
            raise DependencyFailureError(f"Reservation store unavailable: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
            connection.commit()
        except sqlite3.Error as exc:
            connection.rollback()
            logger.error("Store operation failed: %s", exc)
            raise DependencyFailureError(f"Reservation store unavailable: {exc}") from exc
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Sites (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    address TEXT NOT NULL DEFAULT '',
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS SiteCapacities (
                    site_id INTEGER NOT NULL,
                    vehicle_type TEXT NOT NULL CHECK (vehicle_type IN ('car', 'bike')),
                    total_spots INTEGER NOT NULL CHECK (total_spots >= 0),
                    first_hour TEXT NOT NULL,
                    additional_hour TEXT NOT NULL,
                    daily_cap TEXT NOT NULL,
                    PRIMARY KEY (site_id, vehicle_type),
                    FOREIGN KEY (site_id) REFERENCES Sites(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Reservations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    site_id INTEGER NOT NULL,
                    vehicle_type TEXT NOT NULL CHECK (vehicle_type IN ('car', 'bike')),
                    vehicle_plate TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    max_end_time TEXT,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'active', 'completed', 'cancelled')),
                    fee TEXT,
                    payment_status TEXT NOT NULL DEFAULT 'unpaid'
                        CHECK (payment_status IN ('unpaid', 'paid')),
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (site_id) REFERENCES Sites(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reservations_site_type_status_start
                ON Reservations(site_id, vehicle_type, status, start_time);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reservations_status_start
                ON Reservations(status, start_time);
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_reservations_user_outstanding
                ON Reservations(user_id)
                WHERE status IN ('pending', 'active');
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    def seed_demo_sites(self) -> int:
        """Insert the demo sites when no site exists yet; returns rows created."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Sites;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Sites already present; skipping demo seed")
                return 0

        for entry in DEMO_SITES:
            self.create_site(
                name=entry["name"],
                address=entry["address"],
                location=entry["location"],
                total_spots={vehicle_type: 1 for vehicle_type in entry["rates"]},
                rates={
                    vehicle_type: VehicleRate(
                        first_hour=Decimal(first),
                        additional_hour=Decimal(additional),
                        daily_cap=Decimal(cap),
                    )
                    for vehicle_type, (first, additional, cap) in entry["rates"].items()
                },
            )
        logger.info("Demo seed completed with %s sites", len(DEMO_SITES))
        return len(DEMO_SITES)

    def create_site(
        self,
        name: str,
        address: str,
        location: Coordinates,
        total_spots: Mapping[VehicleType, int],
        rates: Mapping[VehicleType, VehicleRate],
    ) -> Site:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Sites (name, address, latitude, longitude)
                VALUES (?, ?, ?, ?);
                """,
                (name, address, location.latitude, location.longitude),
            )
            site_id = int(cursor.lastrowid)
            cursor.executemany(
                """
                INSERT INTO SiteCapacities (
                    site_id, vehicle_type, total_spots, first_hour, additional_hour, daily_cap
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        site_id,
                        vehicle_type.value,
                        int(total_spots[vehicle_type]),
                        str(rates[vehicle_type].first_hour),
                        str(rates[vehicle_type].additional_hour),
                        str(rates[vehicle_type].daily_cap),
                    )
                    for vehicle_type in total_spots
                ],
            )
        return Site(
            site_id=site_id,
            name=name,
            address=address,
            location=location,
            total_spots=dict(total_spots),
            rates=dict(rates),
        )

    def _load_sites(self, conn: sqlite3.Connection, site_id: Optional[int]) -> list[Site]:
        cursor = conn.cursor()
        if site_id is None:
            cursor.execute("SELECT id, name, address, latitude, longitude FROM Sites ORDER BY id ASC;")
        else:
            cursor.execute(
                "SELECT id, name, address, latitude, longitude FROM Sites WHERE id = ?;",
                (site_id,),
            )
        site_rows = cursor.fetchall()
        if not site_rows:
            return []

        placeholders = ",".join("?" for _ in site_rows)
        cursor.execute(
            f"""
            SELECT site_id, vehicle_type, total_spots, first_hour, additional_hour, daily_cap
            FROM SiteCapacities
            WHERE site_id IN ({placeholders});
            """,
            tuple(int(row["id"]) for row in site_rows),
        )
        spots_by_site: dict[int, dict[VehicleType, int]] = {}
        rates_by_site: dict[int, dict[VehicleType, VehicleRate]] = {}
        for row in cursor.fetchall():
            key = int(row["site_id"])
            vehicle_type = VehicleType(row["vehicle_type"])
            spots_by_site.setdefault(key, {})[vehicle_type] = int(row["total_spots"])
            rates_by_site.setdefault(key, {})[vehicle_type] = VehicleRate(
                first_hour=Decimal(row["first_hour"]),
                additional_hour=Decimal(row["additional_hour"]),
                daily_cap=Decimal(row["daily_cap"]),
            )

        return [
            Site(
                site_id=int(row["id"]),
                name=str(row["name"]),
                address=str(row["address"]),
                location=Coordinates(
                    latitude=float(row["latitude"]),
                    longitude=float(row["longitude"]),
                ),
                total_spots=spots_by_site.get(int(row["id"]), {}),
                rates=rates_by_site.get(int(row["id"]), {}),
            )
            for row in site_rows
        ]

    def get_site(self, site_id: int) -> Optional[Site]:
        with self._connect() as conn:
            sites = self._load_sites(conn, site_id)
        return sites[0] if sites else None

    def list_sites(self) -> list[Site]:
        with self._connect() as conn:
            return self._load_sites(conn, None)

    def insert_reservation(
        self,
        user_id: str,
        site_id: int,
        vehicle_type: VehicleType,
        vehicle_plate: Optional[str],
        start_time: datetime,
        max_end_time: Optional[datetime],
        status: ReservationStatus,
    ) -> Reservation:
        """Insert a reservation; the partial unique index rejects a second outstanding one."""
        with self._connect() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO Reservations (
                        user_id, site_id, vehicle_type, vehicle_plate,
                        start_time, max_end_time, status
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        user_id,
                        site_id,
                        vehicle_type.value,
                        vehicle_plate,
                        encode_instant(start_time),
                        encode_instant(max_end_time) if max_end_time is not None else None,
                        status.value,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "Reservations.user_id" not in str(exc):
                    raise
                raise OutstandingReservationError(existing_reservation_id=None) from exc
            reservation_id = int(cursor.lastrowid)
        return Reservation(
            reservation_id=reservation_id,
            user_id=user_id,
            site_id=site_id,
            vehicle_type=vehicle_type,
            vehicle_plate=vehicle_plate,
            start_time=start_time,
            end_time=None,
            max_end_time=max_end_time,
            status=status,
            fee=None,
        )

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
                (reservation_id,),
            )
            row = cursor.fetchone()
            return _reservation_from_row(row) if row is not None else None

    def find_outstanding_reservation(self, user_id: str) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations
                WHERE user_id = ? AND status IN (?, ?)
                ORDER BY id ASC
                LIMIT 1;
                """,
                (user_id, *(status.value for status in OUTSTANDING_STATUSES)),
            )
            row = cursor.fetchone()
            return _reservation_from_row(row) if row is not None else None

    def list_reservations_for_user(self, user_id: str) -> list[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations
                WHERE user_id = ?
                ORDER BY start_time DESC, id DESC;
                """,
                (user_id,),
            )
            return [_reservation_from_row(row) for row in cursor.fetchall()]

    def count_active_at(self, site_id: int, vehicle_type: VehicleType, at: datetime) -> int:
        """Active reservations that have started and not ended by ``at``."""
        instant = encode_instant(at)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count
                FROM Reservations
                WHERE site_id = ?
                  AND vehicle_type = ?
                  AND status = 'active'
                  AND start_time <= ?
                  AND (end_time IS NULL OR end_time > ?);
                """,
                (site_id, vehicle_type.value, instant, instant),
            )
            return int(cursor.fetchone()["count"])

    def count_pending_at(self, site_id: int, vehicle_type: VehicleType, at: datetime) -> int:
        """Pending reservations whose scheduled start is at or before ``at``."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count
                FROM Reservations
                WHERE site_id = ?
                  AND vehicle_type = ?
                  AND status = 'pending'
                  AND start_time <= ?;
                """,
                (site_id, vehicle_type.value, encode_instant(at)),
            )
            return int(cursor.fetchone()["count"])

    def count_occupying_at(self, site_id: int, vehicle_type: VehicleType, at: datetime) -> int:
        """Active or pending reservations covering ``at``; used by the forward probe."""
        instant = encode_instant(at)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count
                FROM Reservations
                WHERE site_id = ?
                  AND vehicle_type = ?
                  AND status IN ('active', 'pending')
                  AND start_time <= ?
                  AND (end_time IS NULL OR end_time > ?);
                """,
                (site_id, vehicle_type.value, instant, instant),
            )
            return int(cursor.fetchone()["count"])

    def find_earliest_pending_after(
        self,
        site_id: int,
        vehicle_type: VehicleType,
        after: datetime,
    ) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations
                WHERE site_id = ?
                  AND vehicle_type = ?
                  AND status = 'pending'
                  AND start_time > ?
                ORDER BY start_time ASC, id ASC
                LIMIT 1;
                """,
                (site_id, vehicle_type.value, encode_instant(after)),
            )
            row = cursor.fetchone()
            return _reservation_from_row(row) if row is not None else None

    def transition_reservation(
        self,
        reservation_id: int,
        expected_status: ReservationStatus,
        new_status: ReservationStatus,
        end_time: Optional[datetime] = None,
        fee: Optional[Decimal] = None,
    ) -> Optional[Reservation]:
        """Compare-and-set status update; returns None when the row moved on already."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE Reservations
                SET status = ?,
                    end_time = COALESCE(?, end_time),
                    fee = COALESCE(?, fee)
                WHERE id = ? AND status = ?;
                """,
                (
                    new_status.value,
                    encode_instant(end_time) if end_time is not None else None,
                    str(fee) if fee is not None else None,
                    reservation_id,
                    expected_status.value,
                ),
            )
            if cursor.rowcount == 0:
                return None
            cursor.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
                (reservation_id,),
            )
            return _reservation_from_row(cursor.fetchone())

    def list_expired_pending(self, cutoff: datetime) -> list[Reservation]:
        """Pending reservations scheduled strictly before ``cutoff``."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations
                WHERE status = 'pending' AND start_time < ?
                ORDER BY start_time ASC, id ASC;
                """,
                (encode_instant(cutoff),),
            )
            return [_reservation_from_row(row) for row in cursor.fetchall()]
