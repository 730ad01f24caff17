"""
Shared API dependencies
"""
from starlette.requests import HTTPConnection

from prodtrack.db.session import get_db
from prodtrack.services.batch_feed import BatchFeed

__all__ = ["get_db", "get_batch_feed"]


def get_batch_feed(connection: HTTPConnection) -> BatchFeed:
    """The application's batch feed (created in the lifespan)."""
    return connection.app.state.batch_feed
