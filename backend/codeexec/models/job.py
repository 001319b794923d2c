from datetime import datetime, timezone
from uuid import uuid4
from pydantic import BaseModel, Field, model_validator
from codeexec.core.errors import InvalidTransition
from codeexec.models.enums import JobStatus, Strategy


def gen_id():
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceFile(BaseModel):
    path: str
    content: str


class RunOptions(BaseModel):
    stdin: str | None = None
    timeout_s: float | None = None
    memory_limit_kb: int | None = None
    flags: list[str] = Field(default_factory=list)


class Job(BaseModel):
    """One submitted execution request and its lifecycle.

    Records are immutable in practice: the orchestrator derives each new
    state through :meth:`advance` / :meth:`finish`, which bump ``revision``
    so that caches can refuse to go backwards.

    A job becomes ``running`` together with its first execution handle, the
    judge token or the local pid, and holds exactly one of them until it
    finishes. A job waiting for the judge to answer its submission, or for a
    free local slot, is still ``pending``.
    """

    id: str = Field(default_factory=gen_id)
    principal: str
    language: str
    sources: list[SourceFile]
    options: RunOptions = Field(default_factory=RunOptions)
    status: JobStatus = JobStatus.pending
    revision: int = 0
    strategy: Strategy | None = None
    remote_token: str | None = None
    local_pid: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    wall_ms: int | None = None
    memory_kb: int | None = None
    message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.status.terminal != (self.completed_at is not None):
            raise ValueError("completed_at must be set exactly when the job is terminal")
        if self.status is JobStatus.running and (
            (self.remote_token is None) == (self.local_pid is None)
        ):
            raise ValueError("a running job holds exactly one execution handle")
        if self.status is not JobStatus.running and (
            self.remote_token is not None or self.local_pid is not None
        ):
            raise ValueError("execution handles only exist while running")
        return self

    def advance(self, status: JobStatus, **changes) -> "Job":
        if self.status.terminal:
            raise InvalidTransition(f"job {self.id} is already {self.status.value}")
        if status.rank <= self.status.rank:
            raise InvalidTransition(
                f"job {self.id} cannot go from {self.status.value} to {status.value}"
            )
        if status.terminal:
            changes.setdefault("completed_at", utcnow())
            changes["remote_token"] = None
            changes["local_pid"] = None
        data = self.model_dump()
        data.update(changes, status=status, revision=self.revision + 1)
        return Job.model_validate(data)

    def update(self, **changes) -> "Job":
        """Same state, new revision (handle bookkeeping while running)."""
        if self.status.terminal:
            raise InvalidTransition(f"job {self.id} is already {self.status.value}")
        data = self.model_dump()
        data.update(changes, revision=self.revision + 1)
        return Job.model_validate(data)

    def finish(self, result, message: str | None = None, **changes) -> "Job":
        return self.advance(
            result.status,
            **changes,
            stdout=getattr(result, "stdout", None),
            stderr=result.stderr,
            exit_code=result.exit_code,
            wall_ms=result.wall_ms,
            memory_kb=getattr(result, "memory_kb", None),
            message=message or getattr(result, "message", None),
        )

    def fail(self, message: str) -> "Job":
        return self.advance(JobStatus.error, stderr=message, exit_code=1, message=message)
