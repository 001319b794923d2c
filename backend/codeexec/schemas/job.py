from datetime import datetime
from pydantic import BaseModel, Field
from codeexec.models.enums import JobStatus, Strategy
from codeexec.models.job import Job, RunOptions, SourceFile


class JobCreate(BaseModel):
    language: str
    source_files: list[SourceFile]
    options: RunOptions = Field(default_factory=RunOptions)


class JobCreated(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.pending


class JobOut(BaseModel):
    id: str
    language: str
    status: JobStatus
    strategy: Strategy | None = None
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    wall_ms: int | None = None
    memory_kb: int | None = None
    message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobOut":
        return cls.model_validate(job.model_dump())


class ExecuteIn(BaseModel):
    stdin: str | None = None


class CancelOut(BaseModel):
    cancelled: bool
