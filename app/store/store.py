# ============================================================================
# AEGIS - Durable Record Store
# ============================================================================
# Every mutation is one sqlite transaction. Observers registered with
# subscribe() receive a fresh result after each committed mutation.
# ============================================================================

import logging
import sqlite3
import threading
from typing import Callable, Iterable, Iterator, List, Optional

from app.errors import StorageError, ValidationError

from .models import (
    DB_PATH,
    SESSION_KEY,
    IncidentReport,
    ReportFilter,
    ReportInput,
    Session,
    get_conn,
    init_store_schema,
)

logger = logging.getLogger("aegis.store")

# sqlite's default limit on bound parameters is 999
_ID_CHUNK = 500
_FETCH_SIZE = 100

ReportListener = Callable[[List[IncidentReport]], None]


class ReportQueryResult:
    """
    Lazy, restartable view over a query.

    Nothing is read until iteration starts. Each iteration opens its own
    read transaction, so iterating twice reflects writes made in between.
    """

    def __init__(self, store: "ReportStore", report_filter: ReportFilter):
        self._store = store
        self.filter = report_filter

    def __iter__(self) -> Iterator[IncidentReport]:
        where, params, order = self.filter.to_sql()
        sql = f"SELECT * FROM incidents WHERE {where} ORDER BY {order}"
        if self.filter.limit is not None and self.filter.where is None:
            sql += f" LIMIT {int(self.filter.limit)}"

        conn = self._store._connect()
        try:
            cur = conn.execute(sql, params)
            yielded = 0
            while True:
                rows = cur.fetchmany(_FETCH_SIZE)
                if not rows:
                    break
                for row in rows:
                    report = IncidentReport.from_row(row)
                    if self.filter.where is not None and not self.filter.where(report):
                        continue
                    yield report
                    yielded += 1
                    if self.filter.limit is not None and yielded >= self.filter.limit:
                        return
        except sqlite3.Error as e:
            raise StorageError(f"Report query failed: {e}") from e
        finally:
            conn.close()

    def all(self) -> List[IncidentReport]:
        return list(self)

    def count(self) -> int:
        if self.filter.where is not None or self.filter.limit is not None:
            return sum(1 for _ in self)
        where, params, _ = self.filter.to_sql()
        conn = self._store._connect()
        try:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM incidents WHERE {where}", params).fetchone()
            return row["cnt"]
        except sqlite3.Error as e:
            raise StorageError(f"Report count failed: {e}") from e
        finally:
            conn.close()


class Subscription:
    """Handle returned by ReportStore.subscribe()."""

    def __init__(self, store: "ReportStore", report_filter: ReportFilter, listener: ReportListener):
        self._store = store
        self.filter = report_filter
        self.listener = listener
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._store._remove_subscription(self)


class ReportStore:
    """
    Local table of incident reports plus the single-row session record.

    Survives restarts: a new ReportStore on the same path sees every
    committed report.
    """

    def __init__(self, db_path=None):
        self.db_path = db_path or DB_PATH
        self._subscriptions: List[Subscription] = []
        self._sub_lock = threading.Lock()
        init_store_schema(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        return get_conn(self.db_path)

    # ---- Reports ----

    def create(self, report: ReportInput) -> int:
        """Persist a new report with synced=0 and return its assigned id."""
        _check_shape(report)

        conn = self._connect()
        try:
            with conn:
                cur = conn.execute("""
                    INSERT INTO incidents
                        (incident_type, severity, severity_label, latitude, longitude,
                         timestamp, photo, location_fallback, synced)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                """, (
                    report.incident_type,
                    report.severity,
                    report.severity_label,
                    float(report.latitude),
                    float(report.longitude),
                    report.timestamp,
                    report.photo,
                    1 if report.location_fallback else 0,
                ))
                report_id = cur.lastrowid
        except sqlite3.Error as e:
            logger.error(f"[STORE] create failed: {e}")
            raise StorageError(f"Could not save report: {e}") from e
        finally:
            conn.close()

        logger.info(f"[STORE] Report {report_id} saved locally ({report.incident_type}, severity {report.severity})")
        self._publish()
        return report_id

    def get(self, report_id: int) -> Optional[IncidentReport]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM incidents WHERE id = ?", (report_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Report lookup failed: {e}") from e
        finally:
            conn.close()
        return IncidentReport.from_row(row) if row else None

    def query(self, report_filter: ReportFilter = None) -> ReportQueryResult:
        """Return a lazy result ordered by the filter's key (timestamp DESC by default)."""
        report_filter = report_filter or ReportFilter()
        # Surface a bad order key now rather than on first iteration
        report_filter.to_sql()
        return ReportQueryResult(self, report_filter)

    def mark_synced(self, ids: Iterable[int]) -> int:
        """
        Set synced=1 for the given ids.

        Rows already synced are left alone, so repeating a call is a no-op.
        Returns the number of rows that changed.
        """
        id_list = sorted({int(i) for i in ids})
        if not id_list:
            return 0

        updated = 0
        conn = self._connect()
        try:
            with conn:
                for start in range(0, len(id_list), _ID_CHUNK):
                    chunk = id_list[start:start + _ID_CHUNK]
                    placeholders = ",".join("?" * len(chunk))
                    cur = conn.execute(
                        f"UPDATE incidents SET synced = 1 WHERE synced = 0 AND id IN ({placeholders})",
                        chunk,
                    )
                    updated += cur.rowcount
        except sqlite3.Error as e:
            logger.error(f"[STORE] mark_synced failed: {e}")
            raise StorageError(f"Could not mark reports synced: {e}") from e
        finally:
            conn.close()

        if updated:
            logger.info(f"[STORE] {updated} report(s) marked as synced")
            self._publish()
        return updated

    def stats(self) -> dict:
        """Totals for the dashboard view."""
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN synced = 0 THEN 1 ELSE 0 END), 0) AS pending,
                    COALESCE(SUM(CASE WHEN synced = 1 THEN 1 ELSE 0 END), 0) AS synced,
                    COALESCE(SUM(CASE WHEN synced = 1 AND severity = 1 THEN 1 ELSE 0 END), 0) AS critical_synced
                FROM incidents
            """).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Stats query failed: {e}") from e
        finally:
            conn.close()
        return dict(row)

    # ---- Session ----

    def put_session(self, session: Session):
        """Replace the current session row."""
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM session")
                conn.execute(
                    "INSERT INTO session (id, responder_name, login_timestamp) VALUES (?, ?, ?)",
                    (SESSION_KEY, session.responder_name, session.login_timestamp),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Could not save session: {e}") from e
        finally:
            conn.close()

    def clear_session(self):
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM session")
        except sqlite3.Error as e:
            raise StorageError(f"Could not clear session: {e}") from e
        finally:
            conn.close()

    def get_session(self) -> Optional[Session]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT responder_name, login_timestamp FROM session WHERE id = ?",
                (SESSION_KEY,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Could not read session: {e}") from e
        finally:
            conn.close()
        if row is None:
            return None
        return Session(responder_name=row["responder_name"], login_timestamp=row["login_timestamp"])

    # ---- Live queries ----

    def subscribe(self, report_filter: ReportFilter, listener: ReportListener) -> Subscription:
        """Register a live query. The listener runs after every committed mutation."""
        report_filter.to_sql()
        sub = Subscription(self, report_filter, listener)
        with self._sub_lock:
            self._subscriptions.append(sub)
        return sub

    def _remove_subscription(self, sub: Subscription):
        with self._sub_lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _publish(self):
        """Push a fresh result to each live query. Never breaks the writer."""
        with self._sub_lock:
            subs = list(self._subscriptions)

        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.listener(self.query(sub.filter).all())
            except Exception as e:
                logger.error(f"[STORE] live query listener failed: {e}")


def _check_shape(report: ReportInput):
    """Type-shape checks only. Business rules live in the field service."""
    if not isinstance(report.incident_type, str):
        raise ValidationError("incident_type must be a string", field="incident_type")
    if isinstance(report.severity, bool) or not isinstance(report.severity, int):
        raise ValidationError("severity must be an integer", field="severity")
    for name in ("latitude", "longitude"):
        value = getattr(report, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number", field=name)
    if isinstance(report.timestamp, bool) or not isinstance(report.timestamp, int):
        raise ValidationError("timestamp must be integer milliseconds", field="timestamp")
    if report.photo is not None and not isinstance(report.photo, str):
        raise ValidationError("photo must be an encoded string", field="photo")
    if report.severity_label is not None and not isinstance(report.severity_label, str):
        raise ValidationError("severity_label must be a string", field="severity_label")
