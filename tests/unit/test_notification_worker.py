"""
Unit tests for the notification worker health check file.
"""

import json

from booking.notifications.dispatcher import DispatchReport
from booking.workers.notification_worker import HEALTH_FILE_NAME, write_health_check
from conftest import NOW


def _read(path):
    return json.loads(path.read_text())


def test_healthy_cycle(tmp_path):
    path = write_health_check(
        tmp_path / "health", DispatchReport(started_at=NOW, balance=10.0, fetched=3, sent=2, failed=1)
    )

    assert path.name == HEALTH_FILE_NAME
    data = _read(path)
    assert data["status"] == "healthy"
    assert data["processed"] == 3
    assert data["errors"] == 1
    assert data["last_run"] == NOW.isoformat()
    assert not (tmp_path / "health" / f"{HEALTH_FILE_NAME}.tmp").exists()


def test_only_failures_is_unhealthy(tmp_path):
    path = write_health_check(tmp_path, DispatchReport(started_at=NOW, fetched=2, failed=2))
    assert _read(path)["status"] == "unhealthy"


def test_balance_check_failure_is_unhealthy(tmp_path):
    report = DispatchReport(started_at=NOW, skipped=True, reason="balance_check_failed")
    assert _read(write_health_check(tmp_path, report))["status"] == "unhealthy"


def test_exhausted_quota_is_healthy(tmp_path):
    report = DispatchReport(started_at=NOW, skipped=True, reason="quota_exhausted", balance=0.0)
    data = _read(write_health_check(tmp_path, report))

    assert data["status"] == "healthy"
    assert data["report"]["reason"] == "quota_exhausted"


def test_file_is_replaced(tmp_path):
    write_health_check(tmp_path, DispatchReport(started_at=NOW, fetched=1, failed=1))
    path = write_health_check(tmp_path, DispatchReport(started_at=NOW, fetched=1, sent=1))

    assert _read(path)["status"] == "healthy"
