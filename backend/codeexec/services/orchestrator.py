"""Job lifecycle: pending -> running -> success | error | timeout.

The orchestrator is the only writer of job records. Each submission gets a
background task that tries the remote judge once and, if the judge cannot
take the submission, runs the code locally instead. A job turns ``running``
in the same write that records its first execution handle (the judge token
or the local pid), and every later state change is written to the status
cache before the task moves on, so a status query never sees a stale record.
"""
import asyncio, logging
from collections.abc import Iterable
from codeexec.cache.status import StatusCache, build_status_cache
from codeexec.core.config import Settings
from codeexec.core.errors import (
    InvalidRequest,
    JobNotFound,
    JobNotReady,
    JudgePollError,
    JudgeSubmitError,
    RequestTooLarge,
)
from codeexec.models.enums import JobStatus, Strategy
from codeexec.models.job import Job, RunOptions, SourceFile
from codeexec.models.results import TimeoutResult, is_host_error
from codeexec.services.judge import RemoteJudgeClient
from codeexec.services.local_executor import LocalExecutor
from codeexec.services.materializer import SourceMaterializer, combine
from codeexec.services.runtimes import RuntimeProfile, profile_for

logger = logging.getLogger(__name__)


class _Tracker:
    """Holds the latest record of one job and writes every change through."""

    def __init__(self, cache: StatusCache, job: Job):
        self.cache = cache
        self.job = job

    async def save(self, job: Job) -> None:
        self.job = job
        await self.cache.put(job)

    async def on_remote_token(self, token: str) -> None:
        await self.save(
            self.job.advance(JobStatus.running, strategy=Strategy.remote, remote_token=token)
        )

    async def on_local_spawn(self, pid: int) -> None:
        # compile step and run step each report a pid
        if self.job.status is JobStatus.pending:
            job = self.job.advance(JobStatus.running, strategy=Strategy.local, local_pid=pid)
        else:
            job = self.job.update(local_pid=pid)
        await self.save(job)


class Orchestrator:
    def __init__(
        self,
        cache: StatusCache,
        materializer: SourceMaterializer,
        local: LocalExecutor,
        judge: RemoteJudgeClient,
        *,
        poll_interval_s: float = 1.0,
        max_polls: int = 30,
        max_concurrent_polls: int = 64,
        max_source_files: int = 32,
        max_source_bytes: int = 512 * 1024,
        max_stdin_bytes: int = 256 * 1024,
        max_timeout_s: float = 60,
    ):
        self.cache = cache
        self.materializer = materializer
        self.local = local
        self.judge = judge
        self.poll_interval_s = poll_interval_s
        self.max_polls = max_polls
        self.max_source_files = max_source_files
        self.max_source_bytes = max_source_bytes
        self.max_stdin_bytes = max_stdin_bytes
        self.max_timeout_s = max_timeout_s
        self._poll_slots = asyncio.Semaphore(max(1, max_concurrent_polls))
        self._tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cache: StatusCache | None = None,
        judge: RemoteJudgeClient | None = None,
    ) -> "Orchestrator":
        materializer = SourceMaterializer(settings.TEMP_DIR)
        return cls(
            cache or build_status_cache(settings),
            materializer,
            LocalExecutor.from_settings(materializer, settings),
            judge or RemoteJudgeClient.from_settings(settings),
            poll_interval_s=settings.JUDGE_POLL_INTERVAL_S,
            max_polls=settings.JUDGE_MAX_POLLS,
            max_concurrent_polls=settings.JUDGE_MAX_CONCURRENT_POLLS,
            max_source_files=settings.MAX_SOURCE_FILES,
            max_source_bytes=settings.MAX_SOURCE_BYTES,
            max_stdin_bytes=settings.MAX_STDIN_BYTES,
            max_timeout_s=settings.MAX_RUN_TIME_LIMIT_S,
        )

    # -- public contract -------------------------------------------------

    async def submit(
        self,
        principal: str,
        language: str,
        sources: Iterable,
        options: RunOptions | None = None,
    ) -> str:
        """Create a job and start driving it; returns the new job id.

        Raises UnsupportedLanguage, InvalidRequest or RequestTooLarge before
        any job exists.
        """
        profile = profile_for(language)
        files = self._validate(sources)
        options = options or RunOptions()
        self._check_stdin(options.stdin)
        if options.timeout_s is not None and not 0 < options.timeout_s <= self.max_timeout_s:
            raise InvalidRequest(f"timeout must be between 0 and {self.max_timeout_s}s")

        job = Job(principal=principal, language=profile.name, sources=files, options=options)
        await self.cache.put(job)
        logger.info(
            "job submitted", extra={"job_id": job.id, "language": profile.name}
        )
        task = asyncio.create_task(self._drive(job, profile), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._forget(job_id, t))
        return job.id

    async def get_status(self, principal: str, job_id: str) -> Job:
        job = await self.cache.get(job_id)
        # someone else's job looks exactly like a missing one
        if job is None or job.principal != principal:
            raise JobNotFound(job_id)
        return job

    async def execute(self, principal: str, job_id: str, stdin: str | None = None):
        """Run a successfully finished job's sources again with new input."""
        job = await self.get_status(principal, job_id)
        if job.status is not JobStatus.success:
            raise JobNotReady(job_id, job.status.value)
        self._check_stdin(stdin)
        profile = profile_for(job.language)
        options = job.options.model_copy(update={"stdin": stdin})
        result, _strategy, message = await self._dispatch(profile, job.sources, options)
        if message:
            result = result.model_copy(update={"message": message})
        return result

    async def cancel(self, principal: str, job_id: str) -> bool:
        job = await self.get_status(principal, job_id)
        task = self._tasks.get(job_id)
        if job.status.terminal or task is None or task.done():
            return False
        await self._cancel_tasks({job_id: task})
        return True

    async def join(self, job_id: str) -> Job | None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return await self.cache.get(job_id)

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        await self._cancel_tasks(dict(self._tasks))
        await self.judge.aclose()
        await self.cache.aclose()

    # -- internals -------------------------------------------------------

    def _validate(self, sources) -> list[SourceFile]:
        files = []
        for item in sources or ():
            if isinstance(item, SourceFile):
                files.append(item)
            elif isinstance(item, dict):
                files.append(SourceFile.model_validate(item))
            elif isinstance(item, (tuple, list)) and len(item) == 2:
                files.append(SourceFile(path=item[0], content=item[1]))
            else:
                raise InvalidRequest("source files must be (path, content) pairs")
        if not files:
            raise InvalidRequest("at least one source file is required")
        if any(not f.path.strip() for f in files):
            raise InvalidRequest("source file path must not be empty")
        if len(files) > self.max_source_files:
            raise RequestTooLarge(f"at most {self.max_source_files} source files allowed")
        size = sum(len(f.content.encode("utf-8")) for f in files)
        if size > self.max_source_bytes:
            raise RequestTooLarge(f"sources exceed {self.max_source_bytes} bytes")
        return files

    def _check_stdin(self, stdin: str | None) -> None:
        if stdin and len(stdin.encode("utf-8")) > self.max_stdin_bytes:
            raise RequestTooLarge(f"stdin exceeds {self.max_stdin_bytes} bytes")

    async def _cancel_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        if not tasks:
            return
        for task in tasks.values():
            task.cancel()
        await asyncio.wait(tasks.values())
        # a task cancelled before its first step never got to record anything
        for job_id in tasks:
            job = await self.cache.get(job_id)
            if job is not None and not job.status.terminal:
                await self.cache.put(job.fail("cancelled"))

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "job task crashed",
                exc_info=task.exception(),
                extra={"job_id": job_id},
            )

    async def _drive(self, job: Job, profile: RuntimeProfile) -> None:
        tracker = _Tracker(self.cache, job)
        log = {"job_id": job.id, "language": profile.name}
        try:
            result, strategy, message = await self._dispatch(
                profile, job.sources, job.options, tracker
            )
            await tracker.save(tracker.job.finish(result, message, strategy=strategy))
            logger.info(
                "job finished",
                extra={**log, "status": tracker.job.status.value, "strategy": strategy.value},
            )
        except asyncio.CancelledError:
            logger.info("job cancelled", extra=log)
            await self._settle(tracker, "cancelled")
            raise
        except Exception as exc:
            logger.exception("job failed unexpectedly", extra=log)
            await self._settle(tracker, f"internal error: {exc}")

    async def _settle(self, tracker: _Tracker, message: str) -> None:
        if not tracker.job.status.terminal:
            tracker.job = tracker.job.fail(message)
        await self.cache.put(tracker.job)

    async def _dispatch(
        self,
        profile: RuntimeProfile,
        sources: list[SourceFile],
        options: RunOptions,
        tracker: _Tracker | None = None,
    ):
        """Remote first, local if the judge cannot take it. Decided once."""
        try:
            token = await self.judge.submit(
                profile, combine(profile, sources), options.stdin, options
            )
        except JudgeSubmitError as exc:
            remote_error = str(exc)
            logger.info(
                "remote judge unavailable, running locally: %s",
                remote_error,
                extra={"language": profile.name},
            )
        else:
            if tracker is not None:
                await tracker.on_remote_token(token)
            return await self._poll_remote(token), Strategy.remote, None

        result = await self.local.run_sources(
            profile,
            sources,
            options,
            on_spawn=tracker.on_local_spawn if tracker is not None else None,
        )
        message = None
        if is_host_error(result):
            message = (
                f"remote judge failed: {remote_error}; "
                f"local execution failed: {result.message}"
            )
        return result, Strategy.local, message

    async def _poll_remote(self, token: str):
        async with self._poll_slots:
            for attempt in range(1, self.max_polls + 1):
                await asyncio.sleep(self.poll_interval_s)
                try:
                    result = await self.judge.poll(token)
                except JudgePollError as exc:
                    logger.warning("poll %d failed: %s", attempt, exc)
                    continue
                if result is not None:
                    return result
        msg = f"remote judge returned no result after {self.max_polls} polls"
        logger.warning(msg)
        return TimeoutResult(
            stderr=msg,
            message=msg,
            wall_ms=int(self.max_polls * self.poll_interval_s * 1000),
        )
