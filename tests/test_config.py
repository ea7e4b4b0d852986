"""
AEGIS — Device Configuration Tests
"""

from app.config import DeviceConfig


def test_defaults(db_path):
    config = DeviceConfig(db_path)
    assert config.get("sync_batch_size") == 100
    assert config.get("position_timeout_seconds") == 5.0
    assert config.get("cache_generation") == "project-aegis-v1"
    assert config.get("shell_manifest") == ["/", "/index.html", "/manifest.json"]
    assert config.get("unknown_key", "fallback") == "fallback"


def test_values_persist(db_path):
    DeviceConfig(db_path).set("authority_url", "https://authority.example.org/api/reports")
    DeviceConfig(db_path).set("sync_batch_size", 25)
    DeviceConfig(db_path).set("shell_manifest", ["/", "/index.html"])

    config = DeviceConfig(db_path)
    assert config.get("authority_url") == "https://authority.example.org/api/reports"
    assert config.get("sync_batch_size") == 25
    assert config.get("shell_manifest") == ["/", "/index.html"]


def test_environment_overrides(db_path, monkeypatch):
    config = DeviceConfig(db_path)
    config.set("sync_batch_size", 25)
    monkeypatch.setenv("AEGIS_SYNC_BATCH_SIZE", "10")
    assert config.get("sync_batch_size") == 10


def test_device_id_is_stable(db_path):
    first = DeviceConfig(db_path).device_id()
    assert first
    assert DeviceConfig(db_path).device_id() == first


def test_get_all(db_path):
    values = DeviceConfig(db_path).get_all()
    assert "probe_interval_seconds" in values
    assert values["probe_interval_seconds"] == 15
