"""
Unit tests for the per-stage batch feed.
"""
import pytest

from prodtrack.services.batch_feed import BatchFeed, batch_summary
from tests.factories import create_test_batch, create_test_product


class TestSubscriptions:

    @pytest.mark.unit
    def test_subscribe_and_unsubscribe(self, feed):
        handle = feed.subscribe("Molding", lambda snapshot: None)
        assert feed.subscriber_count("Molding") == 1
        assert feed.subscriber_count("Testing") == 0

        handle.unsubscribe()
        handle.unsubscribe()

        assert feed.subscriber_count("Molding") == 0
        assert handle.active is False

    @pytest.mark.unit
    def test_feeds_are_independent(self):
        first, second = BatchFeed(), BatchFeed()
        first.subscribe("Molding", lambda snapshot: None)

        assert second.subscriber_count("Molding") == 0

    @pytest.mark.unit
    def test_unknown_stage(self, feed):
        with pytest.raises(ValueError):
            feed.subscribe("Painting", lambda snapshot: None)


class TestPublish:

    @pytest.mark.unit
    def test_publish_sends_stage_snapshot(self, db_session, feed):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product, quantity_to_build=12)
        molding, testing = [], []
        feed.subscribe("Molding", molding.append)
        feed.subscribe("Testing", testing.append)

        feed.publish(db_session, ["Molding"])

        assert testing == []
        assert len(molding) == 1
        entry = molding[0][0]
        assert entry["batch_code"] == batch.batch_code
        assert entry["quantity_to_build"] == 12
        assert entry["status"] == "Planned"
        assert entry["status_label"] == "Molding Pending"

    @pytest.mark.unit
    def test_failing_subscriber_is_dropped(self, db_session, feed):
        received = []

        def broken(snapshot):
            raise RuntimeError("socket closed")

        feed.subscribe("Molding", broken)
        feed.subscribe("Molding", received.append)

        feed.publish(db_session, ["Molding", None])

        assert received == [[]]
        assert feed.subscriber_count("Molding") == 1

    @pytest.mark.unit
    def test_snapshot_matches_summary(self, db_session):
        product = create_test_product(db_session, name="Widget")
        batch = create_test_batch(db_session, product)

        assert BatchFeed.snapshot(db_session, "Molding") == [batch_summary(batch)]
        assert BatchFeed.snapshot(db_session, "Machining") == []
