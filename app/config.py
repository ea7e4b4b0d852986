# ============================================================================
# AEGIS - Device Configuration
# ============================================================================
# Database-backed configuration with type casting and defaults.
# Environment variables AEGIS_<KEY> override stored values.
# ============================================================================

import json
import logging
import os
import sqlite3
import uuid
from typing import Any, Dict

from app.errors import StorageError
from app.store.models import DB_PATH, get_conn

logger = logging.getLogger("aegis.config")

ENV_PREFIX = "AEGIS_"

# key: (default, value_type, category)
DEFAULT_CONFIG = {
    # Remote authority
    "authority_url": ("", "string", "sync"),
    "sync_timeout_seconds": (30, "int", "sync"),
    "sync_batch_size": (100, "int", "sync"),

    # Positioning
    "position_timeout_seconds": (5.0, "float", "positioning"),
    "default_latitude": (6.7029, "float", "positioning"),
    "default_longitude": (80.3853, "float", "positioning"),

    # Application shell
    "cache_generation": ("project-aegis-v1", "string", "shell"),
    "origin_url": ("", "string", "shell"),
    "shell_manifest": (["/", "/index.html", "/manifest.json"], "json", "shell"),
    "fetch_timeout_seconds": (10, "int", "shell"),

    # Connectivity probe
    "probe_url": ("", "string", "connectivity"),
    "probe_interval_seconds": (15, "int", "connectivity"),
    "probe_timeout_seconds": (3, "int", "connectivity"),

    # Identity
    "device_id": ("", "string", "general"),
}

CONFIG_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS DeviceConfig (
    id INTEGER PRIMARY KEY,
    key TEXT UNIQUE NOT NULL,
    value TEXT,
    value_type TEXT DEFAULT 'string',
    category TEXT DEFAULT 'general',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class DeviceConfig:
    """
    Configuration for one device database.

    Values resolve in order: environment override, stored row, default.
    """

    def __init__(self, db_path=None):
        self.db_path = db_path or DB_PATH
        self._cache: Dict[str, Any] = {}
        self._cache_loaded = False
        self._init_schema()

    def _init_schema(self):
        conn = get_conn(self.db_path)
        try:
            conn.executescript(CONFIG_SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Config schema initialisation failed: {e}") from e
        finally:
            conn.close()

    def _load_cache(self):
        """Load all config into memory cache."""
        if self._cache_loaded:
            return

        for key, (default, vtype, category) in DEFAULT_CONFIG.items():
            self._cache[key] = default

        conn = get_conn(self.db_path)
        try:
            rows = conn.execute("SELECT key, value, value_type FROM DeviceConfig").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Config read failed: {e}") from e
        finally:
            conn.close()

        for row in rows:
            self._cache[row["key"]] = self._cast_value(row["value"], row["value_type"])

        self._cache_loaded = True

    @staticmethod
    def _cast_value(value: str, value_type: str) -> Any:
        """Cast string value to appropriate type."""
        if value is None:
            return None
        if value_type == "bool":
            return value.lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                return 0
        if value_type == "float":
            try:
                return float(value)
            except ValueError:
                return 0.0
        if value_type == "json":
            try:
                return json.loads(value)
            except ValueError:
                return {}
        return value

    @staticmethod
    def _serialize_value(value: Any, value_type: str) -> str:
        """Serialize value to string for storage."""
        if value is None:
            return ""
        if value_type == "bool":
            return "true" if value else "false"
        if value_type == "json":
            return json.dumps(value)
        return str(value)

    @staticmethod
    def _type_of(key: str) -> str:
        if key in DEFAULT_CONFIG:
            return DEFAULT_CONFIG[key][1]
        return "string"

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value is not None:
            return self._cast_value(env_value, self._type_of(key))

        self._load_cache()
        return self._cache.get(key, default)

    def set(self, key: str, value: Any, value_type: str = None, category: str = None):
        """Persist a configuration value."""
        value_type = value_type or self._type_of(key)
        category = category or DEFAULT_CONFIG.get(key, (None, None, "general"))[2]

        conn = get_conn(self.db_path)
        try:
            with conn:
                conn.execute("""
                    INSERT INTO DeviceConfig (key, value, value_type, category, updated_at)
                    VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        value_type = excluded.value_type,
                        category = excluded.category,
                        updated_at = CURRENT_TIMESTAMP
                """, (key, self._serialize_value(value, value_type), value_type, category))
        except sqlite3.Error as e:
            raise StorageError(f"Config write failed: {e}") from e
        finally:
            conn.close()

        self._load_cache()
        self._cache[key] = value
        logger.info(f"Config updated: {key}")

    def get_all(self) -> Dict[str, Any]:
        self._load_cache()
        return {key: self.get(key) for key in self._cache}

    def device_id(self) -> str:
        """Stable identifier for this device, generated on first use."""
        current = self.get("device_id")
        if current:
            return current
        new_id = uuid.uuid4().hex
        self.set("device_id", new_id)
        logger.info(f"Generated device id {new_id}")
        return new_id
