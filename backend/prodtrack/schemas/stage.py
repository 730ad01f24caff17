"""
Schemas for stage queues and bulk stage operations.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from prodtrack.schemas.batch import StageOutcomeResponse, StageSubmitRequest


class QueueEntry(BaseModel):
    id: str
    batch_code: str
    product_id: str
    product_name: str
    quantity_to_build: int
    selected_processes: List[str]
    status: str
    status_label: str
    auto_created_from_testing_rejected: bool
    created_at: Optional[datetime] = None


class StageQueueResponse(BaseModel):
    stage: str
    batches: List[QueueEntry]


class BulkSubmissionItem(StageSubmitRequest):
    batch_id: str


class BulkStageRequest(BaseModel):
    submissions: List[BulkSubmissionItem] = Field(..., min_length=1)
    user: Optional[str] = Field(None, max_length=100)


class BatchFailureResponse(BaseModel):
    batch_id: str
    error: str
    message: str

    class Config:
        from_attributes = True


class BulkStageResponse(BaseModel):
    stage: str
    succeeded: int
    outcomes: List[StageOutcomeResponse]
    failures: List[BatchFailureResponse]

    class Config:
        from_attributes = True
