from __future__ import annotations

from datetime import UTC, datetime

from buspresence._redact import redact_for_log
from buspresence.models.presence import PresenceRecord


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "driverId": "drv-1",
        "email": "alice@example.edu",
        "mqtt_password": "pw",
        "nested": {"Password": "pw2", "position": {"latitude": 1.0}},
        "records": [{"email": "bob@example.edu"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["driverId"] == "drv-1"
    assert redacted["email"] == "<redacted>"
    assert redacted["mqtt_password"] == "<redacted>"
    assert redacted["nested"]["Password"] == "<redacted>"
    assert redacted["nested"]["position"] == {"latitude": 1.0}
    assert redacted["records"][0]["email"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_summarises_bytes() -> None:
    assert redact_for_log(b"\x00\x01\x02") == "<bytes:3b>"


def test_redact_for_log_dumps_models_like_the_wire_payload() -> None:
    record = PresenceRecord(
        driver_id="drv-1",
        email="alice@example.edu",
        active=True,
        last_seen_at=datetime(2026, 1, 1, 8, 0, tzinfo=UTC),
    )

    redacted = redact_for_log(record)

    assert redacted["driverId"] == "drv-1"
    assert redacted["email"] == "<redacted>"
    assert redacted["lastSeenAt"].startswith("2026-01-01T08:00:00")
    assert "position" not in redacted


def test_redact_for_log_hides_broker_login() -> None:
    redacted = redact_for_log({"host": "broker", "username": "svc", "mqtt_password": None})

    assert redacted == {"host": "broker", "username": "<redacted>"}
