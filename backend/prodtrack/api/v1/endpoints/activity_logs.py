"""
Activity log endpoints.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from prodtrack.api.v1.deps import get_db
from prodtrack.schemas.activity import ActivityLogResponse
from prodtrack.services.event_service import get_activity

router = APIRouter(prefix="/activity-logs", tags=["Activity"])


@router.get("", response_model=List[ActivityLogResponse])
def list_activity_logs(
    record_id: Optional[str] = Query(None),
    record_type: Optional[str] = Query(None, description="RawMaterial, Batch or FinalStock"),
    batch_code: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return [
        ActivityLogResponse.model_validate(entry)
        for entry in get_activity(db, record_id=record_id, record_type=record_type,
                                  batch_code=batch_code, limit=limit)
    ]
