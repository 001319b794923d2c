"""Outcome of a single execution, local or remote.

Every executor returns exactly one of the four variants below. Each carries
only the fields meaningful to that outcome; the ``kind`` tag makes the union
round-trip through JSON (status cache, HTTP responses) unambiguously.
"""
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field
from codeexec.models.enums import JobStatus

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


def signal_exit_code(returncode: int) -> int:
    """Map a negative subprocess return code (killed by signal N) to 128+N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class SuccessResult(BaseModel):
    kind: Literal["success"] = "success"
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    wall_ms: int = 0
    memory_kb: int | None = None

    @property
    def status(self) -> JobStatus:
        return JobStatus.success


class CompileErrorResult(BaseModel):
    kind: Literal["compile_error"] = "compile_error"
    stderr: str = ""
    exit_code: int = 1
    wall_ms: int = 0
    message: str | None = None

    @property
    def status(self) -> JobStatus:
        return JobStatus.error


class RuntimeErrorResult(BaseModel):
    kind: Literal["runtime_error"] = "runtime_error"
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 1
    wall_ms: int = 0
    memory_kb: int | None = None
    message: str | None = None
    # the host could not run the program at all (no interpreter, no sources)
    host_error: bool = False

    @property
    def status(self) -> JobStatus:
        return JobStatus.error


class TimeoutResult(BaseModel):
    kind: Literal["timeout"] = "timeout"
    stdout: str = ""
    stderr: str = ""
    exit_code: int = EXIT_TIMEOUT
    wall_ms: int = 0
    message: str | None = None

    @property
    def status(self) -> JobStatus:
        return JobStatus.timeout


ExecutionResult = Annotated[
    Union[SuccessResult, CompileErrorResult, RuntimeErrorResult, TimeoutResult],
    Field(discriminator="kind"),
]


def host_error(message: str, exit_code: int = 1, wall_ms: int = 0) -> RuntimeErrorResult:
    return RuntimeErrorResult(
        stderr=message,
        exit_code=exit_code,
        wall_ms=wall_ms,
        message=message,
        host_error=True,
    )


def binary_missing(binary: str, wall_ms: int = 0) -> RuntimeErrorResult:
    return host_error(
        f"'{binary}' is not installed on this host", EXIT_NOT_FOUND, wall_ms
    )


def artifact_missing(directory, wall_ms: int = 0) -> RuntimeErrorResult:
    return host_error(f"sources in {directory} were removed before they could run", 1, wall_ms)


def is_host_error(result) -> bool:
    return isinstance(result, RuntimeErrorResult) and result.host_error
