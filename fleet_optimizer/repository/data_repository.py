"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import random
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence
from uuid import uuid4

from fleet_optimizer.domain.models import (
    INCIDENT_OPEN_STATUSES,
    DashboardSnapshot,
    Incident,
    OptimizationRule,
    RecommendationSuggestion,
    SearchStat,
    StoredRecommendation,
    TrendPoint,
    TripLoadFactor,
    Vehicle,
)
from fleet_optimizer.utils.config import Settings, get_settings
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

_RULE_COLUMNS = (
    "name",
    "enabled",
    "route_pattern",
    "threshold",
    "auto_apply",
    "min_rest_hours",
    "service_window",
    "metadata",
)


class RepositoryError(RuntimeError):
    """Raised when a write against the store fails."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_db_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(_TIMESTAMP_FORMAT)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.strptime(str(value)[:19], _TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _new_id() -> str:
    return uuid4().hex


class DataRepository:
    """Encapsulates SQLite access so the engine stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=10.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Vehicles (
                        id TEXT PRIMARY KEY,
                        plate TEXT NOT NULL UNIQUE,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        status TEXT DEFAULT 'available'
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Trips (
                        id TEXT PRIMARY KEY,
                        origin TEXT NOT NULL,
                        destination TEXT NOT NULL,
                        departure_at TEXT NOT NULL,
                        price REAL NOT NULL DEFAULT 0,
                        seat_capacity INTEGER NOT NULL CHECK (seat_capacity >= 0),
                        status TEXT DEFAULT 'planned',
                        vehicle_id TEXT,
                        driver_id TEXT,
                        FOREIGN KEY (vehicle_id) REFERENCES Vehicles(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id TEXT PRIMARY KEY,
                        trip_id TEXT NOT NULL,
                        seat_count INTEGER NOT NULL CHECK (seat_count > 0),
                        amount REAL NOT NULL DEFAULT 0,
                        reserved_at TEXT NOT NULL,
                        FOREIGN KEY (trip_id) REFERENCES Trips(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Incidents (
                        id TEXT PRIMARY KEY,
                        trip_id TEXT,
                        incident_type TEXT NOT NULL,
                        severity TEXT DEFAULT 'moderate',
                        status TEXT DEFAULT 'open',
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (trip_id) REFERENCES Trips(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SearchLogs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        origin TEXT,
                        destination TEXT,
                        searched_at TEXT NOT NULL
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS OptimizationRules (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        enabled INTEGER NOT NULL DEFAULT 1,
                        route_pattern TEXT,
                        threshold REAL NOT NULL DEFAULT 1.2,
                        auto_apply INTEGER NOT NULL DEFAULT 0,
                        min_rest_hours INTEGER NOT NULL DEFAULT 8,
                        service_window TEXT NOT NULL DEFAULT '05:00-23:00',
                        metadata TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS OptimizationRecommendations (
                        id TEXT PRIMARY KEY,
                        route_from TEXT NOT NULL,
                        route_to TEXT NOT NULL,
                        recommended_start TEXT NOT NULL,
                        narrative TEXT NOT NULL,
                        reason TEXT NOT NULL,
                        priority INTEGER NOT NULL DEFAULT 0,
                        confidence REAL NOT NULL DEFAULT 0.5,
                        recommended_vehicle_id TEXT,
                        recommended_driver_id TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        metadata TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_trips_departure
                    ON Trips(departure_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_trip
                    ON Reservations(trip_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_incidents_status_created
                    ON Incidents(status, created_at);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self) -> None:
        """Seed a deterministic demo fleet only when the store is empty."""
        rng = random.Random(self._settings.synthetic_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Vehicles;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                vehicles = [
                    (_new_id(), plate, capacity, status)
                    for plate, capacity, status in (
                        ("TN-101-AA", 50, "available"),
                        ("TN-102-AB", 50, "on_route"),
                        ("TN-103-AC", 45, "available"),
                        ("TN-104-AD", 60, "maintenance"),
                        ("TN-105-AE", 40, "available"),
                        ("TN-106-AF", 55, "on_route"),
                        ("TN-107-AG", 50, "available"),
                        ("TN-108-AH", 35, "available"),
                    )
                ]
                cursor.executemany(
                    "INSERT INTO Vehicles (id, plate, capacity, status) VALUES (?, ?, ?, ?);",
                    vehicles,
                )

                routes = [
                    ("tunis", "sousse", 18.0),
                    ("tunis", "sfax", 27.5),
                    ("sousse", "monastir", 6.0),
                    ("sfax", "gabes", 12.0),
                    ("tunis", "bizerte", 8.5),
                    ("nabeul", "hammamet", 4.0),
                ]
                now = _utcnow()
                trip_rows = []
                reservation_rows = []

                # Past trips carry the reservation history behind the trend series.
                for day_offset in range(self._settings.synthetic_trend_days, 0, -1):
                    day = now - timedelta(days=day_offset)
                    weekend_boost = 1.4 if day.weekday() >= 5 else 1.0
                    origin, destination, price = routes[day_offset % len(routes)]
                    vehicle = vehicles[day_offset % len(vehicles)]
                    trip_id = _new_id()
                    trip_rows.append(
                        (
                            trip_id,
                            origin,
                            destination,
                            to_db_timestamp(day.replace(hour=8, minute=0, second=0)),
                            price,
                            vehicle[2],
                            "completed",
                            vehicle[0],
                            None,
                        )
                    )
                    for _ in range(int(rng.randint(8, 16) * weekend_boost)):
                        reservation_rows.append(
                            (
                                _new_id(),
                                trip_id,
                                1,
                                price,
                                to_db_timestamp(day.replace(hour=rng.randint(6, 20))),
                            )
                        )

                upcoming_trip_ids = []
                for index in range(self._settings.synthetic_trip_count):
                    origin, destination, price = routes[index % len(routes)]
                    vehicle = vehicles[index % len(vehicles)]
                    departure = (now + timedelta(days=1 + index % 6)).replace(
                        hour=6 + (index * 3) % 14,
                        minute=0,
                        second=0,
                    )
                    trip_id = _new_id()
                    upcoming_trip_ids.append(trip_id)
                    trip_rows.append(
                        (
                            trip_id,
                            origin,
                            destination,
                            to_db_timestamp(departure),
                            price,
                            vehicle[2],
                            "planned",
                            vehicle[0],
                            f"driver-{index % 5 + 1}",
                        )
                    )
                    load_ratio = rng.choice((0.2, 0.35, 0.55, 0.75, 0.9, 1.0))
                    seats = max(1, int(vehicle[2] * load_ratio))
                    reservation_rows.append(
                        (
                            _new_id(),
                            trip_id,
                            seats,
                            round(price * seats, 2),
                            to_db_timestamp(now - timedelta(hours=rng.randint(1, 72))),
                        )
                    )

                cursor.executemany(
                    """
                    INSERT INTO Trips (
                        id, origin, destination, departure_at, price,
                        seat_capacity, status, vehicle_id, driver_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    trip_rows,
                )
                cursor.executemany(
                    """
                    INSERT INTO Reservations (id, trip_id, seat_count, amount, reserved_at)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    reservation_rows,
                )

                incident_rows = [
                    (
                        _new_id(),
                        upcoming_trip_ids[index * 5 % len(upcoming_trip_ids)],
                        incident_type,
                        severity,
                        status,
                        to_db_timestamp(now - timedelta(hours=index * 7 + 1)),
                    )
                    for index, (incident_type, severity, status) in enumerate(
                        (
                            ("breakdown", "critical", "open"),
                            ("traffic", "moderate", "in_progress"),
                            ("delay", "minor", "open"),
                            ("breakdown", "moderate", "resolved"),
                        )
                    )
                ] if upcoming_trip_ids else []
                cursor.executemany(
                    """
                    INSERT INTO Incidents (id, trip_id, incident_type, severity, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    incident_rows,
                )

                search_rows = []
                for origin, destination, _ in routes:
                    for _ in range(rng.randint(3, 25)):
                        search_rows.append(
                            (
                                origin,
                                destination,
                                to_db_timestamp(now - timedelta(hours=rng.randint(1, 240))),
                            )
                        )
                cursor.executemany(
                    "INSERT INTO SearchLogs (origin, destination, searched_at) VALUES (?, ?, ?);",
                    search_rows,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | vehicles=%s | trips=%s | reservations=%s",
                len(vehicles),
                len(trip_rows),
                len(reservation_rows),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    # --- Reads -----------------------------------------------------------

    def get_reservation_trends(self, days: int) -> list[TrendPoint]:
        """Return per-day reservation count and revenue over a rolling window."""
        today = _utcnow().date().isoformat()
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    date(reserved_at) AS day,
                    COUNT(*) AS reservations,
                    COALESCE(SUM(amount), 0) AS revenue
                FROM Reservations
                WHERE date(reserved_at) >= date(?, ?)
                GROUP BY date(reserved_at)
                ORDER BY date(reserved_at) ASC;
                """,
                (today, f"-{max(1, days) - 1} day"),
            )
            return [
                TrendPoint(
                    day=str(row["day"]),
                    reservations=int(row["reservations"]),
                    revenue=float(row["revenue"]),
                )
                for row in cursor.fetchall()
            ]

    def get_trip_load_factors(self, window_days: int = 7) -> list[TripLoadFactor]:
        """Return one row per trip departing within the horizon."""
        start = _utcnow()
        end = start + timedelta(days=max(1, window_days))
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    t.id AS trip_id,
                    t.origin,
                    t.destination,
                    t.departure_at,
                    t.seat_capacity,
                    COALESCE(SUM(r.seat_count), 0) AS reserved,
                    t.price,
                    t.status,
                    t.vehicle_id,
                    t.driver_id,
                    v.status AS vehicle_status,
                    v.plate AS vehicle_plate
                FROM Trips AS t
                LEFT JOIN Reservations AS r ON r.trip_id = t.id
                LEFT JOIN Vehicles AS v ON v.id = t.vehicle_id
                WHERE t.departure_at >= ? AND t.departure_at <= ?
                GROUP BY t.id
                ORDER BY t.departure_at ASC, t.id ASC;
                """,
                (to_db_timestamp(start), to_db_timestamp(end)),
            )
            return [
                TripLoadFactor(
                    trip_id=str(row["trip_id"]),
                    origin=str(row["origin"]),
                    destination=str(row["destination"]),
                    departure=_parse_timestamp(row["departure_at"]),
                    capacity=int(row["seat_capacity"] or 0),
                    reserved=int(row["reserved"] or 0),
                    price=float(row["price"] or 0.0),
                    status=row["status"],
                    vehicle_id=row["vehicle_id"],
                    driver_id=row["driver_id"],
                    vehicle_status=row["vehicle_status"],
                    vehicle_plate=row["vehicle_plate"],
                )
                for row in cursor.fetchall()
            ]

    def list_vehicles(self) -> list[Vehicle]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, plate, status, capacity FROM Vehicles ORDER BY plate ASC;")
            return [
                Vehicle(
                    vehicle_id=str(row["id"]),
                    plate=str(row["plate"]),
                    status=row["status"],
                    capacity=int(row["capacity"]),
                )
                for row in cursor.fetchall()
            ]

    def get_recent_incidents(self, limit: int = 50) -> list[Incident]:
        """Return the most recent unresolved incidents."""
        placeholders = ",".join("?" for _ in INCIDENT_OPEN_STATUSES)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, trip_id, incident_type, severity, status, created_at
                FROM Incidents
                WHERE status IN ({placeholders})
                ORDER BY created_at DESC
                LIMIT ?;
                """,
                (*INCIDENT_OPEN_STATUSES, limit),
            )
            return [
                Incident(
                    incident_id=str(row["id"]),
                    trip_id=row["trip_id"],
                    incident_type=str(row["incident_type"]),
                    severity=str(row["severity"]),
                    status=str(row["status"]),
                    created_at=_parse_timestamp(row["created_at"]),
                )
                for row in cursor.fetchall()
            ]

    def get_search_stats(self) -> list[SearchStat]:
        """Aggregate search volume per origin/destination, most searched first."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT origin, destination, COUNT(*) AS total
                FROM SearchLogs
                GROUP BY origin, destination
                ORDER BY total DESC, origin ASC, destination ASC;
                """
            )
            return [
                SearchStat(
                    origin=row["origin"],
                    destination=row["destination"],
                    total=int(row["total"]),
                )
                for row in cursor.fetchall()
            ]

    def get_dashboard_snapshot(self) -> DashboardSnapshot:
        now = _utcnow()
        start_today = now.replace(hour=0, minute=0, second=0)
        start_month = start_today.replace(day=1)
        placeholders = ",".join("?" for _ in INCIDENT_OPEN_STATUSES)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Vehicles;")
            total_vehicles = int(cursor.fetchone()["count"])
            cursor.execute("SELECT COUNT(*) AS count FROM Trips;")
            total_trips = int(cursor.fetchone()["count"])
            cursor.execute(
                "SELECT COUNT(*) AS count FROM Trips WHERE status IN ('planned', 'in_progress');"
            )
            active_trips = int(cursor.fetchone()["count"])
            cursor.execute(
                """
                SELECT COUNT(*) AS count, COALESCE(SUM(amount), 0) AS revenue
                FROM Reservations
                WHERE reserved_at >= ?;
                """,
                (to_db_timestamp(start_today),),
            )
            today_row = cursor.fetchone()
            cursor.execute(
                "SELECT COALESCE(SUM(amount), 0) AS revenue FROM Reservations WHERE reserved_at >= ?;",
                (to_db_timestamp(start_month),),
            )
            revenue_month = float(cursor.fetchone()["revenue"])
            cursor.execute(
                f"SELECT COUNT(*) AS count FROM Incidents WHERE status IN ({placeholders});",
                INCIDENT_OPEN_STATUSES,
            )
            incidents_open = int(cursor.fetchone()["count"])
        return DashboardSnapshot(
            total_vehicles=total_vehicles,
            total_trips=total_trips,
            active_trips=active_trips,
            reservations_today=int(today_row["count"]),
            revenue_today=float(today_row["revenue"]),
            revenue_month=revenue_month,
            incidents_open=incidents_open,
        )

    def get_trip_vehicle_ids(self, trip_ids: Sequence[str]) -> dict[str, str]:
        """Map trip ids to their assigned vehicle, skipping unassigned trips."""
        unique_ids = sorted(set(trip_ids))
        if not unique_ids:
            return {}
        placeholders = ",".join("?" for _ in unique_ids)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, vehicle_id
                FROM Trips
                WHERE id IN ({placeholders}) AND vehicle_id IS NOT NULL;
                """,
                tuple(unique_ids),
            )
            return {str(row["id"]): str(row["vehicle_id"]) for row in cursor.fetchall()}

    def list_optimization_rules(self) -> list[OptimizationRule]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM OptimizationRules ORDER BY updated_at DESC, id ASC;")
            return [self._row_to_rule(row) for row in cursor.fetchall()]

    def get_optimization_rule(self, rule_id: str) -> Optional[OptimizationRule]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM OptimizationRules WHERE id = ?;", (rule_id,))
            row = cursor.fetchone()
            return self._row_to_rule(row) if row is not None else None

    def list_optimization_recommendations(
        self,
        statuses: Optional[Sequence[str]] = None,
        route: Optional[str] = None,
    ) -> list[StoredRecommendation]:
        clauses: list[str] = []
        params: list[Any] = []
        cleaned_statuses = [status.strip() for status in statuses or [] if status and status.strip()]
        if cleaned_statuses:
            clauses.append(f"status IN ({','.join('?' for _ in cleaned_statuses)})")
            params.extend(cleaned_statuses)
        if route and route.strip():
            clauses.append("(route_from LIKE ? OR route_to LIKE ?)")
            pattern = f"%{route.strip()}%"
            params.extend([pattern, pattern])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT *
                FROM OptimizationRecommendations
                {where}
                ORDER BY created_at DESC, id ASC;
                """,
                tuple(params),
            )
            return [self._row_to_recommendation(row) for row in cursor.fetchall()]

    def count_recommendations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM OptimizationRecommendations;")
            return int(cursor.fetchone()["count"])

    # --- Writes ----------------------------------------------------------

    def create_optimization_recommendation(
        self,
        suggestion: RecommendationSuggestion,
    ) -> StoredRecommendation:
        """Persist one reallocation suggestion as a pending recommendation."""
        recommendation_id = _new_id()
        now = to_db_timestamp(_utcnow())
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO OptimizationRecommendations (
                        id, route_from, route_to, recommended_start, narrative, reason,
                        priority, confidence, recommended_vehicle_id, recommended_driver_id,
                        status, metadata, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?);
                    """,
                    (
                        recommendation_id,
                        suggestion.route_from,
                        suggestion.route_to,
                        to_db_timestamp(suggestion.recommended_start),
                        suggestion.narrative,
                        suggestion.reason,
                        suggestion.priority,
                        round(suggestion.confidence, 2),
                        suggestion.recommended_vehicle_id,
                        suggestion.recommended_driver_id,
                        json.dumps(suggestion.metadata.to_dict()),
                        now,
                        now,
                    ),
                )
                conn.commit()
                cursor.execute(
                    "SELECT * FROM OptimizationRecommendations WHERE id = ?;",
                    (recommendation_id,),
                )
                return self._row_to_recommendation(cursor.fetchone())
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to persist recommendation: {exc}") from exc

    def update_optimization_recommendation(
        self,
        recommendation_id: str,
        *,
        status: Optional[str] = None,
        priority: Optional[int] = None,
        metadata_patch: Optional[Mapping[str, Any]] = None,
    ) -> Optional[StoredRecommendation]:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT * FROM OptimizationRecommendations WHERE id = ?;",
                    (recommendation_id,),
                )
                row = cursor.fetchone()
                if row is None:
                    return None
                metadata = json.loads(row["metadata"] or "{}")
                if metadata_patch:
                    annotations = dict(metadata.get("annotations") or {})
                    annotations.update(metadata_patch)
                    metadata["annotations"] = annotations
                cursor.execute(
                    """
                    UPDATE OptimizationRecommendations
                    SET status = ?, priority = ?, metadata = ?, updated_at = ?
                    WHERE id = ?;
                    """,
                    (
                        status if status is not None else row["status"],
                        priority if priority is not None else row["priority"],
                        json.dumps(metadata),
                        to_db_timestamp(_utcnow()),
                        recommendation_id,
                    ),
                )
                conn.commit()
                cursor.execute(
                    "SELECT * FROM OptimizationRecommendations WHERE id = ?;",
                    (recommendation_id,),
                )
                return self._row_to_recommendation(cursor.fetchone())
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update recommendation: {exc}") from exc

    def create_optimization_rule(
        self,
        *,
        name: str,
        enabled: bool = True,
        route_pattern: Optional[str] = None,
        threshold: float = 1.2,
        auto_apply: bool = False,
        min_rest_hours: int = 8,
        service_window: str = "05:00-23:00",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> OptimizationRule:
        rule_id = _new_id()
        now = to_db_timestamp(_utcnow())
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO OptimizationRules (
                        id, name, enabled, route_pattern, threshold, auto_apply,
                        min_rest_hours, service_window, metadata, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        rule_id,
                        name,
                        int(enabled),
                        route_pattern,
                        float(threshold),
                        int(auto_apply),
                        int(min_rest_hours),
                        service_window,
                        json.dumps(dict(metadata or {})),
                        now,
                        now,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create optimization rule: {exc}") from exc
        created = self.get_optimization_rule(rule_id)
        if created is None:
            raise RepositoryError(f"Optimization rule {rule_id} missing after insert")
        return created

    def update_optimization_rule(
        self,
        rule_id: str,
        patch: Mapping[str, Any],
    ) -> Optional[OptimizationRule]:
        """Apply non-null fields of ``patch``; returns None for unknown ids."""
        assignments: list[str] = []
        params: list[Any] = []
        for column in _RULE_COLUMNS:
            value = patch.get(column)
            if value is None:
                continue
            if column in {"enabled", "auto_apply"}:
                value = int(bool(value))
            elif column == "metadata":
                value = json.dumps(dict(value))
            assignments.append(f"{column} = ?")
            params.append(value)
        assignments.append("updated_at = ?")
        params.append(to_db_timestamp(_utcnow()))
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"UPDATE OptimizationRules SET {', '.join(assignments)} WHERE id = ?;",
                    (*params, rule_id),
                )
                conn.commit()
                if cursor.rowcount == 0:
                    return None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update optimization rule: {exc}") from exc
        return self.get_optimization_rule(rule_id)

    # --- Operational records (fixtures, seeding and admin tooling) -------

    def create_vehicle(self, plate: str, capacity: int, status: str = "available") -> str:
        vehicle_id = _new_id()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO Vehicles (id, plate, capacity, status) VALUES (?, ?, ?, ?);",
                (vehicle_id, plate, capacity, status),
            )
            conn.commit()
        return vehicle_id

    def create_trip(
        self,
        *,
        origin: str,
        destination: str,
        departure: datetime,
        seat_capacity: int,
        price: float,
        vehicle_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        status: str = "planned",
    ) -> str:
        trip_id = _new_id()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Trips (
                    id, origin, destination, departure_at, price,
                    seat_capacity, status, vehicle_id, driver_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    trip_id,
                    origin,
                    destination,
                    to_db_timestamp(departure),
                    price,
                    seat_capacity,
                    status,
                    vehicle_id,
                    driver_id,
                ),
            )
            conn.commit()
        return trip_id

    def create_reservation(
        self,
        trip_id: str,
        seat_count: int,
        amount: float,
        reserved_at: Optional[datetime] = None,
    ) -> str:
        reservation_id = _new_id()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Reservations (id, trip_id, seat_count, amount, reserved_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (
                    reservation_id,
                    trip_id,
                    seat_count,
                    amount,
                    to_db_timestamp(reserved_at or _utcnow()),
                ),
            )
            conn.commit()
        return reservation_id

    def create_incident(
        self,
        *,
        trip_id: Optional[str],
        incident_type: str,
        severity: str = "moderate",
        status: str = "open",
        created_at: Optional[datetime] = None,
    ) -> str:
        incident_id = _new_id()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Incidents (id, trip_id, incident_type, severity, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    incident_id,
                    trip_id,
                    incident_type,
                    severity,
                    status,
                    to_db_timestamp(created_at or _utcnow()),
                ),
            )
            conn.commit()
        return incident_id

    def log_searches(self, entries: Iterable[tuple[Optional[str], Optional[str]]]) -> None:
        now = to_db_timestamp(_utcnow())
        rows = [(origin, destination, now) for origin, destination in entries]
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO SearchLogs (origin, destination, searched_at) VALUES (?, ?, ?);",
                rows,
            )
            conn.commit()

    # --- Row mapping -----------------------------------------------------

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> OptimizationRule:
        return OptimizationRule(
            rule_id=str(row["id"]),
            name=str(row["name"]),
            enabled=bool(row["enabled"]),
            route_pattern=row["route_pattern"],
            threshold=float(row["threshold"]),
            auto_apply=bool(row["auto_apply"]),
            min_rest_hours=int(row["min_rest_hours"]),
            service_window=str(row["service_window"]),
            metadata=json.loads(row["metadata"] or "{}"),
        )

    @staticmethod
    def _row_to_recommendation(row: sqlite3.Row) -> StoredRecommendation:
        return StoredRecommendation(
            recommendation_id=str(row["id"]),
            route_from=str(row["route_from"]),
            route_to=str(row["route_to"]),
            recommended_start=str(row["recommended_start"]),
            narrative=str(row["narrative"]),
            reason=str(row["reason"]),
            priority=int(row["priority"]),
            confidence=float(row["confidence"]),
            recommended_vehicle_id=row["recommended_vehicle_id"],
            recommended_driver_id=row["recommended_driver_id"],
            status=str(row["status"]),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )
