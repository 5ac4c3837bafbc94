"""Tests for storage backends."""

from datetime import datetime, timedelta, timezone
import tempfile

import pytest

from aigateway.models import AlertType, CostAlert, UsageRecord
from aigateway.schemas import Direction, HistoryEntry
from aigateway.storage import InMemoryStorage, SQLiteStorage


NOW = datetime(2024, 6, 15, 5, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(db_path=str(tmp_path / "gateway.db"))
    yield backend
    backend.close()


def _usage(cost, when=NOW, success=True, device_id="dev-1"):
    return UsageRecord(
        device_id=device_id,
        provider="openai",
        model="gpt-4o-mini",
        prompt_tokens=100,
        completion_tokens=50,
        total_tokens=150,
        cost_usd=cost if success else 0.0,
        success=success,
        error_message=None if success else "HTTP 500",
        created_at=when,
    )


def _alert(period="2024-06-15", device_id="dev-1", alert_type=AlertType.DAILY_THRESHOLD):
    return CostAlert(
        device_id=device_id,
        alert_type=alert_type,
        period=period,
        current_cost=0.85,
        limit_amount=1.0,
        created_at=NOW,
    )


class TestUsageLedger:
    """Test usage records in every backend."""

    def test_sum_counts_successful_records_since(self, storage):
        storage.add_usage(_usage(0.10))
        storage.add_usage(_usage(0.20))
        storage.add_usage(_usage(0.0, success=False))
        storage.add_usage(_usage(5.00, when=NOW - timedelta(days=2)))
        storage.add_usage(_usage(7.00, device_id="dev-2"))

        total = storage.sum_cost_since("dev-1", NOW - timedelta(hours=1))
        assert total == pytest.approx(0.30)

    def test_sum_with_no_records(self, storage):
        assert storage.sum_cost_since("dev-1", NOW) == 0.0

    def test_sum_compares_across_zones(self, storage):
        """Cutoffs in another zone compare by instant."""
        storage.add_usage(_usage(0.5, when=datetime(2024, 6, 14, 17, 30, tzinfo=timezone.utc)))
        jakarta_midnight = datetime(2024, 6, 15, 0, 0, tzinfo=timezone(timedelta(hours=7)))

        assert storage.sum_cost_since("dev-1", jakarta_midnight) == pytest.approx(0.5)

    def test_list_usage(self, storage):
        storage.add_usage(_usage(0.2, when=NOW))
        storage.add_usage(_usage(0.1, when=NOW - timedelta(minutes=5)))
        storage.add_usage(_usage(0.3, device_id="dev-2"))

        records = storage.list_usage(device_id="dev-1")
        assert [r.cost_usd for r in records] == [0.1, 0.2]
        assert records[0].created_at.tzinfo is not None
        assert len(storage.list_usage(since=NOW - timedelta(minutes=1))) == 2

    def test_failed_record_roundtrip(self, storage):
        storage.add_usage(_usage(0.0, success=False))

        record = storage.list_usage("dev-1")[0]
        assert record.success is False
        assert record.cost_usd == 0.0
        assert record.error_message == "HTTP 500"


class TestAlerts:
    """Test alert deduplication and resolution."""

    def test_insert_once_per_period(self, storage):
        """A second unresolved alert for the same key is not inserted."""
        first = storage.insert_alert_if_absent(_alert())
        second = storage.insert_alert_if_absent(_alert())

        assert first is not None
        assert second is None
        assert len(storage.list_alerts(unresolved_only=True)) == 1

    def test_different_keys_coexist(self, storage):
        storage.insert_alert_if_absent(_alert())
        storage.insert_alert_if_absent(_alert(period="2024-06-16"))
        storage.insert_alert_if_absent(_alert(alert_type=AlertType.MONTHLY_THRESHOLD, period="2024-06"))
        storage.insert_alert_if_absent(_alert(device_id="dev-2"))

        assert len(storage.list_alerts()) == 4
        assert len(storage.list_alerts(device_id="dev-2")) == 1

    def test_resolve_then_reinsert(self, storage):
        """Resolving frees the key for a new alert."""
        alert = storage.insert_alert_if_absent(_alert())

        assert storage.resolve_alert(alert.alert_id, NOW) is True
        assert storage.resolve_alert(alert.alert_id, NOW) is False
        assert storage.insert_alert_if_absent(_alert()) is not None

        alerts = storage.list_alerts()
        assert len(alerts) == 2
        assert sum(1 for a in alerts if a.resolved) == 1
        resolved = next(a for a in alerts if a.resolved)
        assert resolved.resolved_at == NOW

    def test_resolve_unknown(self, storage):
        assert storage.resolve_alert("missing") is False


class TestHistory:
    """Test the chat history log."""

    def _fill(self, storage, count=5):
        for i in range(count):
            storage.append_history(HistoryEntry(
                device_id="dev-1",
                chat_id="chat-1",
                direction=Direction.INBOUND if i % 2 == 0 else Direction.OUTBOUND,
                content=f"message {i}",
                timestamp=NOW - timedelta(minutes=count - i),
            ))

    def test_newest_first_with_limit(self, storage):
        self._fill(storage)

        entries = storage.fetch_history("dev-1", "chat-1", limit=3)
        assert [e.content for e in entries] == ["message 4", "message 3", "message 2"]
        assert entries[1].direction == Direction.OUTBOUND

    def test_same_timestamp_keeps_append_order(self, storage):
        """A reply stored at the same instant as its question comes back newest-first."""
        for direction, content in [(Direction.INBOUND, "question"), (Direction.OUTBOUND, "answer")]:
            storage.append_history(HistoryEntry(
                device_id="dev-1",
                chat_id="chat-1",
                direction=direction,
                content=content,
                timestamp=NOW,
            ))

        entries = storage.fetch_history("dev-1", "chat-1")
        assert [e.content for e in entries] == ["answer", "question"]

    def test_default_timestamp_is_utc(self, storage):
        entry = storage.append_history(HistoryEntry("dev-1", "chat-1", Direction.INBOUND, "halo"))

        assert entry.timestamp.utcoffset() == timedelta(0)
        assert storage.fetch_history("dev-1", "chat-1")[0].content == "halo"

    def test_since_filter(self, storage):
        self._fill(storage)

        entries = storage.fetch_history("dev-1", "chat-1", since=NOW - timedelta(minutes=2), limit=10)
        assert [e.content for e in entries] == ["message 4", "message 3"]

    def test_other_chats_excluded(self, storage):
        self._fill(storage)
        assert storage.fetch_history("dev-1", "chat-2") == []
        assert storage.fetch_history("dev-1", "chat-1", limit=0) == []


def test_sqlite_storage_persists_across_instances():
    """SQLite storage should persist ledger and alerts across instances."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = f"{tmpdir}/gateway.db"

        storage = SQLiteStorage(db_path=db_path)
        storage.add_usage(_usage(0.25))
        storage.insert_alert_if_absent(_alert())
        storage.close()

        storage2 = SQLiteStorage(db_path=db_path)
        assert storage2.sum_cost_since("dev-1", NOW - timedelta(days=1)) == pytest.approx(0.25)
        assert storage2.insert_alert_if_absent(_alert()) is None
        storage2.close()
