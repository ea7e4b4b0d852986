# ============================================================================
# AEGIS - Record Store Models & Database Schema
# ============================================================================
# incidents: one row per field report, append-only except the synced flag.
# session:   single row keyed by 'current'; absence means logged out.
# ============================================================================

import sqlite3
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from app.errors import StorageError, ValidationError

DB_PATH = Path("aegis.db")
SCHEMA_VERSION = 1
SESSION_KEY = "current"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS incidents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    incident_type TEXT NOT NULL,
    severity INTEGER NOT NULL,
    severity_label TEXT,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    timestamp INTEGER NOT NULL,
    photo TEXT,
    location_fallback INTEGER DEFAULT 0,
    synced INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS session (
    id TEXT PRIMARY KEY CHECK (id = 'current'),
    responder_name TEXT NOT NULL,
    login_timestamp INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_incidents_timestamp ON incidents(timestamp);
CREATE INDEX IF NOT EXISTS idx_incidents_synced ON incidents(synced);
"""

# Columns a caller may order by
ORDER_COLUMNS = ("id", "timestamp", "severity", "incident_type")


def get_conn(db_path=None) -> sqlite3.Connection:
    """Open a connection with row factory. Raises StorageError if the file can't be opened."""
    try:
        conn = sqlite3.connect(str(db_path or DB_PATH), timeout=30, check_same_thread=False)
    except sqlite3.Error as e:
        raise StorageError(f"Cannot open record store: {e}") from e
    conn.row_factory = sqlite3.Row
    return conn


def init_store_schema(db_path=None):
    """Create report and session tables if they don't exist."""
    conn = get_conn(db_path)
    try:
        # WAL lets readers iterate while a writer commits
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA_SQL)
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version < SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Schema initialisation failed: {e}") from e
    finally:
        conn.close()


@dataclass
class IncidentReport:
    """A persisted field report."""
    id: int
    incident_type: str
    severity: int
    severity_label: Optional[str]
    latitude: float
    longitude: float
    timestamp: int
    photo: Optional[str] = None
    location_fallback: bool = False
    synced: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "IncidentReport":
        return cls(
            id=row["id"],
            incident_type=row["incident_type"],
            severity=row["severity"],
            severity_label=row["severity_label"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            timestamp=row["timestamp"],
            photo=row["photo"],
            location_fallback=bool(row["location_fallback"]),
            synced=bool(row["synced"]),
        )

    def to_dict(self, include_photo: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if not include_photo:
            data["has_photo"] = data.pop("photo") is not None
        return data


@dataclass
class ReportInput:
    """Fields supplied by the caller when creating a report."""
    incident_type: str
    severity: int
    latitude: float
    longitude: float
    timestamp: int
    severity_label: Optional[str] = None
    photo: Optional[str] = None
    location_fallback: bool = False


@dataclass
class Session:
    responder_name: str
    login_timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": SESSION_KEY, **asdict(self)}


@dataclass(frozen=True)
class ReportFilter:
    """
    Selection and ordering for a report query.

    `where` is an optional Python predicate applied after the SQL filter,
    for conditions the columns can't express.
    """
    synced: Optional[bool] = None
    incident_type: Optional[str] = None
    severity: Optional[int] = None
    since: Optional[int] = None
    order_by: str = "timestamp"
    descending: bool = True
    limit: Optional[int] = None
    where: Optional[Callable[[IncidentReport], bool]] = field(default=None, compare=False)

    def to_sql(self):
        """Return (where_clause, params, order_clause)."""
        conditions = []
        params = []

        if self.synced is not None:
            conditions.append("synced = ?")
            params.append(1 if self.synced else 0)
        if self.incident_type:
            conditions.append("incident_type = ?")
            params.append(self.incident_type)
        if self.severity is not None:
            conditions.append("severity = ?")
            params.append(self.severity)
        if self.since is not None:
            conditions.append("timestamp >= ?")
            params.append(self.since)

        where = " AND ".join(conditions) if conditions else "1=1"

        if self.limit is not None and self.limit < 0:
            raise ValidationError("limit must not be negative", field="limit")
        if self.order_by not in ORDER_COLUMNS:
            raise ValidationError(f"Cannot order reports by {self.order_by!r}", field="order_by")
        direction = "DESC" if self.descending else "ASC"
        if self.order_by == "id":
            return where, params, f"id {direction}"
        # id breaks ties so creation order is stable
        order = f"{self.order_by} {direction}, id {direction}"
        return where, params, order


# Creation order; device clocks can step backwards
PENDING = ReportFilter(synced=False, order_by="id", descending=False)
