# ============================================================================
# AEGIS Shell Cache - Models & Partitioned Cache Storage
# ============================================================================
# asset_partitions: one row per cache generation.
# asset_cache:      response snapshots keyed by (partition, method, url).
# ============================================================================

import json
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from app.errors import StorageError
from app.store.models import DB_PATH, get_conn

ASSET_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS asset_partitions (
    name TEXT PRIMARY KEY,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS asset_cache (
    partition TEXT NOT NULL REFERENCES asset_partitions(name) ON DELETE CASCADE,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    status INTEGER NOT NULL,
    headers_json TEXT DEFAULT '{}',
    body BLOB,
    response_url TEXT,
    response_type TEXT DEFAULT 'basic',
    stored_at INTEGER,
    PRIMARY KEY (partition, method, url)
);
"""


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def same_origin(a: str, b: str) -> bool:
    return origin_of(a) == origin_of(b)


@dataclass
class ShellRequest:
    """An intercepted request. `mode` follows fetch semantics: navigate, cors, no-cors, same-origin."""
    url: str
    method: str = "GET"
    mode: str = "no-cors"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"

    def cache_key(self) -> Tuple[str, str]:
        return (self.method.upper(), self.url)


@dataclass
class ShellResponse:
    """A captured response. `type` is basic (same origin), cors, or opaque."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    type: str = "basic"
    redirected: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> "ShellResponse":
        return ShellResponse(
            status=self.status,
            body=bytes(self.body),
            headers=dict(self.headers),
            url=self.url,
            type=self.type,
            redirected=self.redirected,
        )


class CacheStorage:
    """Generation-partitioned response cache. Last writer wins per key."""

    def __init__(self, db_path=None):
        self.db_path = db_path or DB_PATH
        conn = self._connect()
        try:
            conn.executescript(ASSET_SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache schema initialisation failed: {e}") from e
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = get_conn(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def keys(self) -> List[str]:
        """Partition names, oldest first."""
        conn = self._connect()
        try:
            rows = conn.execute("SELECT name FROM asset_partitions ORDER BY created_at, name").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache read failed: {e}") from e
        finally:
            conn.close()
        return [r["name"] for r in rows]

    def has(self, name: str) -> bool:
        return name in self.keys()

    def delete(self, name: str) -> bool:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM asset_cache WHERE partition = ?", (name,))
                cur = conn.execute("DELETE FROM asset_partitions WHERE name = ?", (name,))
                deleted = cur.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache delete failed: {e}") from e
        finally:
            conn.close()
        return deleted

    def put(self, name: str, request: ShellRequest, response: ShellResponse):
        self.put_all(name, [(request, response)])

    def put_all(self, name: str, entries: Iterable[Tuple[ShellRequest, ShellResponse]]):
        """Open the partition if needed and write every entry in one transaction."""
        now = int(time.time() * 1000)
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT OR IGNORE INTO asset_partitions (name, created_at) VALUES (?, ?)",
                    (name, now),
                )
                for request, response in entries:
                    method, url = request.cache_key()
                    conn.execute("""
                        INSERT OR REPLACE INTO asset_cache
                            (partition, method, url, status, headers_json, body,
                             response_url, response_type, stored_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        name, method, url, response.status,
                        json.dumps(response.headers), sqlite3.Binary(response.body),
                        response.url, response.type, now,
                    ))
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache write failed: {e}") from e
        finally:
            conn.close()

    def match(self, request: ShellRequest, name: Optional[str] = None) -> Optional[ShellResponse]:
        """Find a stored response, in one partition or the oldest partition holding the key."""
        method, url = request.cache_key()
        sql = """
            SELECT c.* FROM asset_cache c
            JOIN asset_partitions p ON p.name = c.partition
            WHERE c.method = ? AND c.url = ?
        """
        params = [method, url]
        if name is not None:
            sql += " AND c.partition = ?"
            params.append(name)
        sql += " ORDER BY p.created_at LIMIT 1"

        conn = self._connect()
        try:
            row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache lookup failed: {e}") from e
        finally:
            conn.close()

        if row is None:
            return None
        return ShellResponse(
            status=row["status"],
            body=bytes(row["body"] or b""),
            headers=json.loads(row["headers_json"] or "{}"),
            url=row["response_url"] or url,
            type=row["response_type"] or "basic",
        )

    def entry_keys(self, name: str) -> List[Tuple[str, str]]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT method, url FROM asset_cache WHERE partition = ? ORDER BY url",
                (name,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Asset cache read failed: {e}") from e
        finally:
            conn.close()
        return [(r["method"], r["url"]) for r in rows]
