"""Tests for DB models."""
from datetime import datetime, timedelta, timezone

from sqlmodel import Session, select

from pricesync.models.property import Property, PropertyIntegration
from pricesync.models.sync import SyncOperation, utcnow


class TestPropertyIntegration:
    def test_defaults(self):
        integration = PropertyIntegration(
            integration_id="int-1", property_id="p1", external_property_id="1001"
        )
        assert integration.sync_enabled is True
        assert integration.sync_status == "active"
        assert integration.success_count == 0
        assert integration.error_count == 0
        assert integration.api_key is None

    def test_persist_with_property(self, test_session):
        test_session.add(Property(id="p1", name="Villa", base_price_per_day=120.0))
        test_session.add(PropertyIntegration(
            integration_id="int-1", property_id="p1", external_property_id="1001", api_key="k"
        ))
        test_session.commit()
        row = test_session.exec(select(PropertyIntegration)).one()
        assert row.property_id == "p1"


class TestSyncOperation:
    def test_defaults(self):
        op = SyncOperation(property_id="p1")
        assert op.id
        assert op.status == "pending"
        assert op.operation_type == "scheduled"
        assert op.retry_count == 0

    def test_ids_are_unique(self):
        assert SyncOperation().id != SyncOperation().id

    def test_error_details_round_trip_json(self, engine):
        with Session(engine) as s:
            s.add(SyncOperation(id="op", property_id="p1", error_details={"parent_sync_id": "r", "n": 2}))
            s.commit()
        with Session(engine) as s:
            assert s.get(SyncOperation, "op").error_details == {"parent_sync_id": "r", "n": 2}

    def test_utcnow_is_naive(self):
        now = utcnow()
        assert now.tzinfo is None
        assert abs((datetime.now(timezone.utc).replace(tzinfo=None) - now).total_seconds()) < 5

    def test_timestamps_round_trip_naive(self, engine):
        started = utcnow() - timedelta(hours=2)
        with Session(engine) as s:
            s.add(SyncOperation(
                id="op", property_id="p1", started_at=started,
                completed_at=started + timedelta(seconds=3),
                next_retry_at=started + timedelta(seconds=5),
            ))
            s.commit()
        with Session(engine) as s:
            op = s.get(SyncOperation, "op")
        assert op.started_at == started
        assert op.next_retry_at - op.started_at == timedelta(seconds=5)

    def test_datetime_columns_declared_naive(self):
        for column in ("started_at", "completed_at", "next_retry_at"):
            assert SyncOperation.__table__.c[column].type.timezone is False
        assert PropertyIntegration.__table__.c["last_sync_at"].type.timezone is False
