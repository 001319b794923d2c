"""Runs a materialized artifact as a child process on this host.

One call is one process (plus a compile step for compiled languages). The
child leads its own session so that timeouts and cancellation can signal the
whole process group, including anything the program spawned itself.
"""
import asyncio, logging, os, signal, time
from dataclasses import dataclass
from typing import Awaitable, Callable
import psutil
from codeexec.core.config import Settings
from codeexec.models.job import RunOptions, SourceFile
from codeexec.models.results import (
    EXIT_NOT_EXECUTABLE,
    EXIT_TIMEOUT,
    CompileErrorResult,
    RuntimeErrorResult,
    SuccessResult,
    TimeoutResult,
    artifact_missing,
    binary_missing,
    host_error,
    signal_exit_code,
)
from codeexec.services.materializer import ExecutionArtifact, SourceMaterializer
from codeexec.services.runtimes import RuntimeProfile

try:
    import resource
except ImportError:  # not available on Windows
    resource = None

logger = logging.getLogger(__name__)

SpawnCallback = Callable[[int], Awaitable[None]]

_ENV_KEYS = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR")
_CHUNK = 4096


@dataclass
class _Outcome:
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    overflow: bool = False
    missing: bool = False
    vanished: bool = False
    memory_kb: int | None = None
    wall_ms: int = 0
    message: str | None = None


def _text(buf: bytearray) -> str:
    return bytes(buf).decode("utf-8", errors="replace")


def _sanitized_env() -> dict[str, str]:
    env = {k: os.environ[k] for k in _ENV_KEYS if os.environ.get(k)}
    env.setdefault("PATH", os.defpath)
    return env


def _memory_limiter(limit_kb: int | None):
    if not limit_kb or resource is None:
        return None
    limit = limit_kb * 1024

    def _apply():
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return _apply


def _signal_group(pgid: int, sig: int) -> None:
    try:
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        pass


class LocalExecutor:
    def __init__(
        self,
        materializer: SourceMaterializer,
        *,
        default_timeout_s: float = 10,
        compile_timeout_s: float = 30,
        max_output_bytes: int = 64 * 1024,
        kill_grace_s: float = 0.5,
        max_concurrency: int | None = None,
        memory_limit_kb: int | None = None,
        binaries: dict[str, str] | None = None,
        sample_interval_s: float = 0.05,
    ):
        self.materializer = materializer
        self.default_timeout_s = default_timeout_s
        self.compile_timeout_s = compile_timeout_s
        self.max_output_bytes = max_output_bytes
        self.kill_grace_s = kill_grace_s
        self.memory_limit_kb = memory_limit_kb
        self.binaries = dict(binaries or {})
        self.sample_interval_s = sample_interval_s
        self.max_concurrency = max(1, max_concurrency or os.cpu_count() or 2)
        self._slots = asyncio.Semaphore(self.max_concurrency)

    @classmethod
    def from_settings(cls, materializer: SourceMaterializer, settings: Settings):
        return cls(
            materializer,
            default_timeout_s=settings.RUN_TIME_LIMIT_S,
            compile_timeout_s=settings.COMPILE_TIME_LIMIT_S,
            max_output_bytes=settings.MAX_OUTPUT_BYTES,
            kill_grace_s=settings.KILL_GRACE_S,
            max_concurrency=settings.LOCAL_MAX_CONCURRENCY,
            memory_limit_kb=settings.RUN_MEMORY_LIMIT_KB,
            binaries=settings.RUNTIME_BINARIES,
        )

    async def run(
        self,
        profile: RuntimeProfile,
        artifact: ExecutionArtifact,
        options: RunOptions | None = None,
        on_spawn: SpawnCallback | None = None,
    ):
        """Compile (if needed) and run ``artifact``; always releases it."""
        options = options or RunOptions()
        try:
            async with self._slots:
                return await self._execute(profile, artifact, options, on_spawn)
        finally:
            self.materializer.release(artifact)

    async def run_sources(
        self,
        profile: RuntimeProfile,
        sources: list[SourceFile],
        options: RunOptions | None = None,
        on_spawn: SpawnCallback | None = None,
    ):
        """Like :meth:`run`, but writes the sources only once a slot is free.

        A job queued behind busy slots has nothing on disk yet, so the sweeper
        only ever sees artifacts of executions that are actually running.
        """
        options = options or RunOptions()
        async with self._slots:
            try:
                artifact = self.materializer.materialize(profile, sources)
            except OSError as exc:
                msg = f"could not prepare sources: {exc}"
                logger.error(msg, extra={"language": profile.name})
                return host_error(msg)
            try:
                return await self._execute(profile, artifact, options, on_spawn)
            finally:
                self.materializer.release(artifact)

    async def _execute(self, profile, artifact, options, on_spawn):
        if profile.compile:
            argv = self._argv(profile.compile, artifact, options.flags)
            built = await self._spawn(
                argv, artifact, None, self.compile_timeout_s, on_spawn=on_spawn
            )
            unstartable = self._unstartable(built, argv, artifact)
            if unstartable is not None:
                return unstartable
            if built.timed_out:
                msg = f"compilation timed out after {self.compile_timeout_s}s"
                return CompileErrorResult(
                    stderr=(built.stderr + "\n" + msg).lstrip(),
                    exit_code=EXIT_TIMEOUT,
                    wall_ms=built.wall_ms,
                    message=msg,
                )
            if built.returncode != 0:
                return CompileErrorResult(
                    stderr=built.stderr or built.stdout,
                    exit_code=signal_exit_code(built.returncode),
                    wall_ms=built.wall_ms,
                    message=built.message,
                )

        argv = self._argv(profile.run, artifact)
        timeout = options.timeout_s or self.default_timeout_s
        memory_kb = options.memory_limit_kb or self.memory_limit_kb
        done = await self._spawn(
            argv, artifact, options.stdin, timeout, memory_kb, on_spawn
        )
        unstartable = self._unstartable(done, argv, artifact)
        if unstartable is not None:
            return unstartable
        if done.timed_out:
            msg = f"Execution timed out after {timeout}s"
            logger.info("killed %s after %ss", argv[0], timeout)
            return TimeoutResult(
                stdout=done.stdout,
                stderr=(done.stderr + "\n" + msg).lstrip(),
                wall_ms=done.wall_ms,
                message=msg,
            )
        if done.overflow:
            msg = f"output truncated: exceeded {self.max_output_bytes} bytes"
            return RuntimeErrorResult(
                stdout=done.stdout,
                stderr=(done.stderr + "\n" + msg).lstrip(),
                exit_code=signal_exit_code(done.returncode or 1),
                wall_ms=done.wall_ms,
                memory_kb=done.memory_kb,
                message=msg,
            )
        if done.returncode == 0:
            return SuccessResult(
                stdout=done.stdout,
                stderr=done.stderr,
                wall_ms=done.wall_ms,
                memory_kb=done.memory_kb,
            )
        return RuntimeErrorResult(
            stdout=done.stdout,
            stderr=done.stderr,
            exit_code=signal_exit_code(done.returncode),
            wall_ms=done.wall_ms,
            memory_kb=done.memory_kb,
            message=done.message,
        )

    @staticmethod
    def _unstartable(outcome: _Outcome, argv, artifact: ExecutionArtifact):
        if outcome.vanished:
            logger.warning("artifact %s disappeared before spawn", artifact.directory)
            return artifact_missing(artifact.directory, outcome.wall_ms)
        if outcome.missing:
            return binary_missing(argv[0], outcome.wall_ms)
        return None

    def _argv(self, template, artifact: ExecutionArtifact, flags=()) -> list[str]:
        values = {
            "{src}": str(artifact.source),
            "{out}": str(artifact.output),
            "{dir}": str(artifact.directory),
        }
        argv = []
        for part in template:
            for key, value in values.items():
                part = part.replace(key, value)
            argv.append(part)
        argv[0] = self.binaries.get(argv[0], argv[0])
        return argv + list(flags)

    async def _spawn(
        self,
        argv: list[str],
        artifact: ExecutionArtifact,
        stdin: str | None,
        timeout: float,
        memory_limit_kb: int | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> _Outcome:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(artifact.directory),
                env=_sanitized_env(),
                start_new_session=True,
                preexec_fn=_memory_limiter(memory_limit_kb),
            )
        except FileNotFoundError:
            # raised for a missing cwd as well as a missing binary
            if not artifact.directory.is_dir():
                return _Outcome(vanished=True)
            return _Outcome(missing=True)
        except PermissionError:
            msg = f"'{argv[0]}' is not executable"
            return _Outcome(
                returncode=EXIT_NOT_EXECUTABLE, stderr=msg, message=msg
            )

        out_buf, err_buf = bytearray(), bytearray()
        overflow = asyncio.Event()
        peak = [0]
        helpers = [
            asyncio.create_task(self._pump(proc.stdout, out_buf, overflow)),
            asyncio.create_task(self._pump(proc.stderr, err_buf, overflow)),
        ]
        side = [
            asyncio.create_task(self._feed(proc, stdin)),
            asyncio.create_task(self._sample_memory(proc.pid, peak)),
        ]
        waiter = asyncio.create_task(proc.wait())
        flagged = asyncio.create_task(overflow.wait())
        timed_out = False
        try:
            if on_spawn is not None:
                await on_spawn(proc.pid)
            finished, _ = await asyncio.wait(
                {waiter, flagged},
                timeout=max(0.0, timeout - (time.monotonic() - start)),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if waiter not in finished:
                timed_out = not overflow.is_set()
                await self._terminate(proc)
            # nothing started by the program outlives it
            _signal_group(proc.pid, signal.SIGKILL)
            await asyncio.wait(helpers, timeout=self.kill_grace_s + 1)
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        finally:
            for task in (*helpers, *side, waiter, flagged):
                task.cancel()

        return _Outcome(
            returncode=proc.returncode,
            stdout=_text(out_buf),
            stderr=_text(err_buf),
            timed_out=timed_out,
            overflow=overflow.is_set(),
            memory_kb=(peak[0] // 1024) or None,
            wall_ms=int((time.monotonic() - start) * 1000),
        )

    async def _terminate(self, proc) -> None:
        """SIGTERM the group, then SIGKILL whatever is left after the grace period."""
        if proc.returncode is None:
            _signal_group(proc.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(proc.wait(), self.kill_grace_s)
            except asyncio.TimeoutError:
                pass
        _signal_group(proc.pid, signal.SIGKILL)
        await proc.wait()

    async def _pump(self, stream, buf: bytearray, overflow: asyncio.Event) -> None:
        while True:
            chunk = await stream.read(_CHUNK)
            if not chunk:
                return
            room = self.max_output_bytes - len(buf)
            if len(chunk) > room:
                buf.extend(chunk[: max(room, 0)])
                overflow.set()
                return
            buf.extend(chunk)

    async def _feed(self, proc, stdin: str | None) -> None:
        try:
            if stdin:
                proc.stdin.write(stdin.encode("utf-8"))
                await proc.stdin.drain()
            proc.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            # the program exited without reading its input
            pass

    async def _sample_memory(self, pid: int, peak: list[int]) -> None:
        try:
            root = psutil.Process(pid)
        except psutil.Error:
            return
        while True:
            try:
                members = [root, *root.children(recursive=True)]
            except psutil.Error:
                return
            rss = 0
            for member in members:
                try:
                    rss += member.memory_info().rss
                except psutil.Error:
                    continue
            peak[0] = max(peak[0], rss)
            await asyncio.sleep(self.sample_interval_s)
