"""Client for a Judge0-compatible remote execution service.

``submit`` hands over the source and returns the judge's token; ``poll``
asks once for the current state and returns ``None`` while the judge is
still working. Neither method retries or sleeps: the orchestrator owns the
polling schedule.
"""
import base64, binascii, logging
import httpx
from codeexec.core.config import Settings
from codeexec.core.errors import JudgePollError, JudgeSubmitError
from codeexec.models.job import RunOptions
from codeexec.models.results import (
    EXIT_TIMEOUT,
    CompileErrorResult,
    RuntimeErrorResult,
    SuccessResult,
    TimeoutResult,
)
from codeexec.services.runtimes import RuntimeProfile

logger = logging.getLogger(__name__)

IN_QUEUE, PROCESSING = 1, 2
ACCEPTED = 3
TIME_LIMIT_EXCEEDED = 5
COMPILATION_ERROR = 6
RUNTIME_ERRORS = range(7, 13)  # SIGSEGV, SIGXFSZ, SIGFPE, SIGABRT, NZEC, other
INTERNAL_ERROR, EXEC_FORMAT_ERROR = 13, 14

_FIELDS = "status,stdout,stderr,compile_output,message,time,memory,exit_code"


def _b64(text: str | None) -> str | None:
    if text is None:
        return None
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _unb64(value) -> str:
    if not value:
        return ""
    if not isinstance(value, str):
        raise ValueError("expected base64 string")
    return base64.b64decode(value, validate=True).decode("utf-8", errors="replace")


def _ms(seconds) -> int:
    if seconds in (None, ""):
        return 0
    return int(round(float(seconds) * 1000))


class RemoteJudgeClient:
    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        host: str | None = None,
        timeout_s: float = 10,
        default_time_limit_s: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.default_time_limit_s = default_time_limit_s
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-RapidAPI-Key"] = api_key
            if host:
                headers["X-RapidAPI-Host"] = host
        self._client = None
        if self.base_url:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(timeout_s, connect=3.0),
                transport=transport,
            )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs):
        return cls(
            settings.JUDGE0_URL,
            api_key=settings.JUDGE0_API_KEY,
            host=settings.JUDGE0_HOST,
            timeout_s=settings.JUDGE0_TIMEOUT_S,
            default_time_limit_s=settings.RUN_TIME_LIMIT_S,
            **kwargs,
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()

    async def submit(
        self, profile: RuntimeProfile, source: str, stdin: str | None, limits: RunOptions
    ) -> str:
        if self._client is None:
            raise JudgeSubmitError("remote judge is not configured")
        if profile.judge_id is None:
            raise JudgeSubmitError(f"remote judge does not support {profile.name}")
        time_limit = limits.timeout_s or self.default_time_limit_s
        payload = {
            "language_id": profile.judge_id,
            "source_code": _b64(source),
            "stdin": _b64(stdin or ""),
            "cpu_time_limit": time_limit,
            "wall_time_limit": time_limit,
        }
        if limits.memory_limit_kb:
            payload["memory_limit"] = limits.memory_limit_kb
        if limits.flags and profile.compiled:
            payload["compiler_options"] = " ".join(limits.flags)
        try:
            resp = await self._client.post(
                "/submissions",
                params={"base64_encoded": "true", "wait": "false"},
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise JudgeSubmitError(f"could not reach remote judge: {exc!r}") from exc
        if resp.status_code >= 400:
            raise JudgeSubmitError(f"remote judge rejected submission: HTTP {resp.status_code}")
        try:
            token = resp.json().get("token")
        except (ValueError, AttributeError) as exc:
            raise JudgeSubmitError("malformed response from remote judge") from exc
        if not isinstance(token, str) or not token:
            raise JudgeSubmitError("remote judge returned no token")
        logger.info("submitted to remote judge", extra={"language": profile.name})
        return token

    async def poll(self, token: str):
        """Return an ExecutionResult, or None while the judge is still processing."""
        if self._client is None:
            raise JudgePollError("remote judge is not configured")
        try:
            resp = await self._client.get(
                f"/submissions/{token}",
                params={"base64_encoded": "true", "fields": _FIELDS},
            )
            resp.raise_for_status()
            data = resp.json()
            status_id = int(data["status"]["id"])
        except httpx.HTTPError as exc:
            raise JudgePollError(f"poll failed: {exc!r}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise JudgePollError("malformed poll response") from exc
        if status_id in (IN_QUEUE, PROCESSING):
            return None
        try:
            return self._to_result(status_id, data)
        except (ValueError, TypeError, binascii.Error) as exc:
            raise JudgePollError("malformed poll response") from exc

    @staticmethod
    def _to_result(status_id: int, data: dict):
        stdout = _unb64(data.get("stdout"))
        stderr = _unb64(data.get("stderr"))
        message = _unb64(data.get("message")) or None
        wall_ms = _ms(data.get("time"))
        memory = data.get("memory")
        memory_kb = int(memory) if memory not in (None, "") else None
        exit_code = data.get("exit_code")
        if status_id == ACCEPTED:
            return SuccessResult(
                stdout=stdout, stderr=stderr, wall_ms=wall_ms, memory_kb=memory_kb
            )
        if status_id == TIME_LIMIT_EXCEEDED:
            return TimeoutResult(
                stdout=stdout,
                stderr=stderr,
                exit_code=EXIT_TIMEOUT,
                wall_ms=wall_ms,
                message=message or "time limit exceeded on remote judge",
            )
        if status_id == COMPILATION_ERROR:
            return CompileErrorResult(
                stderr=_unb64(data.get("compile_output")) or stderr,
                exit_code=int(exit_code) if exit_code is not None else 1,
                wall_ms=wall_ms,
                message=message,
            )
        if status_id in RUNTIME_ERRORS or status_id in (INTERNAL_ERROR, EXEC_FORMAT_ERROR):
            description = (data.get("status") or {}).get("description")
            return RuntimeErrorResult(
                stdout=stdout,
                stderr=stderr or message or description or "",
                exit_code=int(exit_code) if exit_code not in (None, 0) else 1,
                wall_ms=wall_ms,
                memory_kb=memory_kb,
                message=message or description,
            )
        msg = f"unrecognized remote judge status {status_id}"
        logger.warning(msg)
        return RuntimeErrorResult(
            stdout=stdout, stderr=stderr or msg, exit_code=1, wall_ms=wall_ms, message=msg
        )
