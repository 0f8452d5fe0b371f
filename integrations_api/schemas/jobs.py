from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

JobStatus = Literal["processing", "completed"]


class JobOut(BaseModel):
    id: str
    registry: str
    package_name: str
    status: JobStatus = "processing"
    trace_id: str | None = None
    created_at: datetime

    def cursor(self) -> str:
        return self.id


class CreateJobRequest(BaseModel):
    registry: str = Field(min_length=1)
    package_name: str = Field(min_length=1)


class JobMessage(BaseModel):
    job_id: UUID
    registry: str
    package_name: str
