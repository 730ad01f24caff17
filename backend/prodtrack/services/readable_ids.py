"""
Readable id generation (mat_001, prod_002, batch_003, BATCH-MLD-004, FT-005)
"""
import re
from typing import Type

from sqlalchemy.orm import Session

from prodtrack.core.config import settings


def _max_suffix(values, prefix: str) -> int:
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    highest = 0
    for value in values:
        match = pattern.match(value or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def next_sequential(db: Session, model: Type, column: str, prefix: str) -> str:
    """
    Next ``<prefix><n>`` for the given column: one past the highest
    existing numeric suffix, zero-padded.
    """
    attr = getattr(model, column)
    values = [row[0] for row in db.query(attr).filter(attr.like(f"{prefix}%")).all()]
    number = _max_suffix(values, prefix) + 1
    return f"{prefix}{number:0{settings.READABLE_ID_PAD}d}"


def next_id(db: Session, model: Type, prefix: str) -> str:
    """Next primary key for a model, e.g. next_id(db, Batch, "batch") -> "batch_004"."""
    return next_sequential(db, model, "id", f"{prefix}_")
