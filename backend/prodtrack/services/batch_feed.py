"""
Batch Feed

Real-time stage work queues. Views subscribe to a stage and receive the
full queue snapshot whenever a committed change touches that stage.

The application owns one BatchFeed (created in the FastAPI lifespan);
each open stage view owns its Subscription and unsubscribes on close.
Publishers pass their own session and call publish() after commit.
"""
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List

from sqlalchemy.orm import Session

from prodtrack.core.stage_config import ProcessingStage, parse_stage
from prodtrack.logging_config import get_logger
from prodtrack.models.batch import Batch
from prodtrack.services.batch_service import BatchService, derive_batch_status, status_label

logger = get_logger(__name__)

Snapshot = List[Dict[str, Any]]
Callback = Callable[[Snapshot], None]


def batch_summary(batch: Batch) -> Dict[str, Any]:
    return {
        "id": batch.id,
        "batch_code": batch.batch_code,
        "product_id": batch.product_id,
        "product_name": batch.product_name,
        "quantity_to_build": batch.quantity_to_build,
        "selected_processes": list(batch.selected_processes or []),
        "status": derive_batch_status(batch).value,
        "status_label": status_label(batch),
        "auto_created_from_testing_rejected": batch.auto_created_from_testing_rejected,
        "created_at": batch.created_at.isoformat() if batch.created_at else None,
    }


class Subscription:
    """Handle returned by BatchFeed.subscribe()."""

    def __init__(self, feed: "BatchFeed", stage: ProcessingStage, callback: Callback):
        self._feed = feed
        self.stage = stage
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class BatchFeed:
    """Per-stage queue subscriptions."""

    def __init__(self):
        self._subscribers: Dict[ProcessingStage, List[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, stage, callback: Callback) -> Subscription:
        stage = parse_stage(stage)
        subscription = Subscription(self, stage, callback)
        with self._lock:
            self._subscribers[stage].append(subscription)
        logger.debug("Feed subscription added", extra={"stage": stage.value})
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.stage, [])
            if subscription in subs:
                subs.remove(subscription)

    def subscriber_count(self, stage) -> int:
        with self._lock:
            return len(self._subscribers.get(parse_stage(stage), []))

    @staticmethod
    def snapshot(db: Session, stage) -> Snapshot:
        return [batch_summary(b) for b in BatchService.list_batches_for_stage(db, stage)]

    def publish(self, db: Session, stages: Iterable) -> None:
        """
        Push fresh snapshots for ``stages`` to their subscribers.

        A subscriber whose callback raises is logged and dropped; the
        others still receive the update.
        """
        for stage in {parse_stage(s) for s in stages if s is not None}:
            with self._lock:
                subs = list(self._subscribers.get(stage, []))
            if not subs:
                continue
            snapshot = self.snapshot(db, stage)
            for sub in subs:
                try:
                    sub.callback(snapshot)
                except Exception:
                    logger.exception("Feed subscriber failed; dropping it", extra={"stage": stage.value})
                    sub.unsubscribe()
