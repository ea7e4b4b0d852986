"""
AEGIS — Record Store Tests
===========================
Durability, identity, the one-way sync flag, queries, session, live queries.
"""

import sqlite3

import pytest

from app.errors import StorageError, ValidationError
from app.store import PENDING, ReportFilter, ReportStore, Session
from tests.conftest import make_input


class TestDurability:

    def test_reports_survive_restart(self, db_path):
        store = ReportStore(db_path)
        ids = [store.create(make_input(timestamp=1000 + i)) for i in range(5)]
        del store

        reopened = ReportStore(db_path)
        listed = {r.id for r in reopened.query().all()}
        assert listed == set(ids)

    def test_failed_create_is_invisible(self, store, db_path):
        conn = sqlite3.connect(db_path)
        conn.execute("""
            CREATE TRIGGER refuse_insert BEFORE INSERT ON incidents
            BEGIN SELECT RAISE(ABORT, 'database or disk is full'); END
        """)
        conn.commit()
        conn.close()

        with pytest.raises(StorageError):
            store.create(make_input())
        assert store.query().count() == 0

    def test_corrupt_database_raises_storage_error(self, tmp_path):
        path = tmp_path / "corrupt.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        with pytest.raises(StorageError):
            ReportStore(str(path))


class TestIdentity:

    def test_ids_strictly_increase(self, store):
        ids = [store.create(make_input()) for _ in range(10)]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_ids_not_reused_after_delete(self, store, db_path):
        first = store.create(make_input())
        second = store.create(make_input())

        conn = sqlite3.connect(db_path)
        conn.execute("DELETE FROM incidents WHERE id = ?", (second,))
        conn.commit()
        conn.close()

        third = store.create(make_input())
        assert third > second > first

    def test_new_report_is_unsynced(self, store):
        report = store.get(store.create(make_input(severity_label="Critical")))
        assert report.synced is False
        assert report.severity_label == "Critical"

    def test_wrong_types_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create(make_input(severity="1"))
        with pytest.raises(ValidationError):
            store.create(make_input(latitude="north"))
        with pytest.raises(ValidationError):
            store.create(make_input(timestamp=1.5))
        assert store.query().count() == 0


class TestMarkSynced:

    def test_marks_only_given_ids(self, store):
        a = store.create(make_input())
        b = store.create(make_input())
        assert store.mark_synced({a}) == 1
        assert store.get(a).synced is True
        assert store.get(b).synced is False

    def test_idempotent(self, store):
        a = store.create(make_input())
        assert store.mark_synced({a}) == 1
        assert store.mark_synced({a}) == 0
        assert store.get(a).synced is True

    def test_unknown_ids_ignored(self, store):
        assert store.mark_synced({999}) == 0
        assert store.mark_synced(set()) == 0

    def test_flag_never_goes_back(self, store):
        a = store.create(make_input())
        store.mark_synced([a])
        store.create(make_input())
        store.mark_synced([a])
        assert store.get(a).synced is True
        assert a not in {r.id for r in store.query(PENDING)}

    def test_large_id_sets(self, store):
        ids = [store.create(make_input(timestamp=i)) for i in range(600)]
        assert store.mark_synced(ids) == 600
        assert store.query(PENDING).count() == 0


class TestQuery:

    def test_default_order_newest_first(self, store):
        for ts in (3000, 1000, 2000):
            store.create(make_input(timestamp=ts))
        assert [r.timestamp for r in store.query()] == [3000, 2000, 1000]

    def test_pending_in_creation_order(self, store):
        ids = [store.create(make_input(timestamp=ts)) for ts in (3000, 1000, 2000)]
        assert [r.id for r in store.query(PENDING)] == ids

    def test_filters(self, store):
        store.create(make_input(incident_type="Flood", severity=1, timestamp=100))
        store.create(make_input(incident_type="Landslide", severity=2, timestamp=200))
        store.create(make_input(incident_type="Flood", severity=3, timestamp=300))

        assert store.query(ReportFilter(incident_type="Flood")).count() == 2
        assert store.query(ReportFilter(severity=2)).count() == 1
        assert store.query(ReportFilter(since=200)).count() == 2
        assert store.query(ReportFilter(where=lambda r: r.severity > 1)).count() == 2
        assert len(store.query(ReportFilter(limit=1)).all()) == 1

    def test_result_is_restartable(self, store):
        store.create(make_input())
        result = store.query()
        assert len(list(result)) == 1
        store.create(make_input())
        assert len(list(result)) == 2

    def test_bad_order_key(self, store):
        with pytest.raises(ValidationError):
            store.query(ReportFilter(order_by="photo; DROP TABLE incidents"))

    def test_negative_limit_rejected(self, store):
        store.create(make_input())
        with pytest.raises(ValidationError) as exc:
            store.query(ReportFilter(limit=-1))
        assert exc.value.field == "limit"
        assert len(store.query(ReportFilter(limit=0)).all()) == 0

    def test_stats(self, store):
        a = store.create(make_input(severity=1))
        store.create(make_input(severity=2))
        store.mark_synced([a])
        assert store.stats() == {"total": 2, "pending": 1, "synced": 1, "critical_synced": 1}


class TestSession:

    def test_lifecycle(self, store):
        assert store.get_session() is None
        store.put_session(Session("Asha", 1))
        assert store.get_session().responder_name == "Asha"

        store.put_session(Session("Bandara", 2))
        session = store.get_session()
        assert session.responder_name == "Bandara"
        assert session.login_timestamp == 2

        store.clear_session()
        assert store.get_session() is None
        store.clear_session()

    def test_single_row(self, store, db_path):
        store.put_session(Session("Asha", 1))
        store.put_session(Session("Bandara", 2))
        conn = sqlite3.connect(db_path)
        count = conn.execute("SELECT COUNT(*) FROM session").fetchone()[0]
        conn.close()
        assert count == 1


class TestLiveQueries:

    def test_observer_sees_create_and_sync(self, store):
        seen = []
        store.subscribe(PENDING, lambda reports: seen.append([r.id for r in reports]))

        a = store.create(make_input(timestamp=1))
        b = store.create(make_input(timestamp=2))
        store.mark_synced([a])

        assert seen == [[a], [a, b], [b]]

    def test_no_publish_when_nothing_changed(self, store):
        a = store.create(make_input())
        store.mark_synced([a])
        seen = []
        store.subscribe(ReportFilter(), seen.append)
        store.mark_synced([a])
        assert seen == []

    def test_cancel(self, store):
        seen = []
        sub = store.subscribe(ReportFilter(), seen.append)
        sub.cancel()
        store.create(make_input())
        assert seen == []

    def test_failing_listener_does_not_break_writer(self, store):
        def boom(reports):
            raise RuntimeError("render failed")

        seen = []
        store.subscribe(ReportFilter(), boom)
        store.subscribe(ReportFilter(), seen.append)

        report_id = store.create(make_input())
        assert store.get(report_id) is not None
        assert len(seen) == 1
