import asyncio
import dataclasses
import shutil
import sys
import textwrap
import time
from codeexec.models.job import RunOptions, SourceFile
from codeexec.models.results import (
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    CompileErrorResult,
    RuntimeErrorResult,
    SuccessResult,
    TimeoutResult,
    is_host_error,
)
from codeexec.services.local_executor import LocalExecutor
from codeexec.services.runtimes import profile_for
from tests.helpers import process_gone


def _artifact(materializer, profile, code, path="main.py"):
    return materializer.materialize(profile, [SourceFile(path=path, content=code)])


async def test_hello_world(executor, materializer, python_profile):
    artifact = _artifact(materializer, python_profile, 'print("Hello, World!")')
    result = await executor.run(python_profile, artifact)
    assert isinstance(result, SuccessResult)
    assert result.stdout == "Hello, World!\n"
    assert result.exit_code == 0
    assert result.memory_kb is None or result.memory_kb > 0
    assert not artifact.directory.exists()


async def test_syntax_error_is_reported_as_error(executor, materializer, python_profile):
    artifact = _artifact(materializer, python_profile, "def f(:\n    pass\n")
    result = await executor.run(python_profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert "SyntaxError" in result.stderr
    assert result.exit_code != 0
    assert not artifact.directory.exists()


async def test_stdin_is_passed_to_program(executor, materializer, python_profile):
    artifact = _artifact(materializer, python_profile, "print(input()[::-1])")
    result = await executor.run(python_profile, artifact, RunOptions(stdin="abc\n"))
    assert result.stdout == "cba\n"


async def test_timeout_kills_whole_process_group(
    executor, materializer, python_profile, tmp_path
):
    pidfile = tmp_path / "child.pid"
    code = textwrap.dedent(
        f"""
        import subprocess, sys, time
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        with open({str(pidfile)!r}, "w") as fh:
            fh.write(str(child.pid))
        time.sleep(60)
        """
    )
    artifact = _artifact(materializer, python_profile, code)
    started = time.monotonic()
    result = await executor.run(python_profile, artifact, RunOptions(timeout_s=2))
    assert time.monotonic() - started < 10
    assert isinstance(result, TimeoutResult)
    assert result.exit_code == EXIT_TIMEOUT
    assert "timed out" in result.stderr
    assert process_gone(int(pidfile.read_text()))
    assert not artifact.directory.exists()


async def test_missing_interpreter_is_a_recoverable_error(executor, materializer):
    profile = dataclasses.replace(
        profile_for("python"), run=("no-such-interpreter-3f9a", "{src}")
    )
    artifact = _artifact(materializer, profile, "print(1)")
    result = await executor.run(profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert result.exit_code == EXIT_NOT_FOUND
    assert "no-such-interpreter-3f9a" in result.message
    assert is_host_error(result)
    assert not artifact.directory.exists()


async def test_missing_compiler(executor, materializer):
    profile = dataclasses.replace(profile_for("c"), compile=("no-such-cc-3f9a", "{src}"))
    artifact = _artifact(materializer, profile, "int main(void){return 0;}", "main.c")
    result = await executor.run(profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert result.exit_code == EXIT_NOT_FOUND


async def test_compile_failure_skips_run(executor, materializer):
    profile = dataclasses.replace(
        profile_for("c"),
        compile=(sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"),
        run=(sys.executable, "-c", "print('should not run')"),
    )
    artifact = _artifact(materializer, profile, "int main(", "main.c")
    result = await executor.run(profile, artifact)
    assert isinstance(result, CompileErrorResult)
    assert result.stderr == "boom"
    assert result.exit_code == 3


async def test_compile_then_run_with_flags(executor, materializer):
    # the "compiler" writes a program that prints the flags it was given
    compiler = "import sys; open(sys.argv[2], 'w').write('print(%r)' % sys.argv[3:])"
    profile = dataclasses.replace(
        profile_for("c"),
        compile=(sys.executable, "-c", compiler, "{src}", "{out}"),
        run=(sys.executable, "{out}"),
    )
    artifact = _artifact(materializer, profile, "int main(void){}", "main.c")
    result = await executor.run(profile, artifact, RunOptions(flags=["-O2", "-Wall"]))
    assert isinstance(result, SuccessResult)
    assert result.stdout == "['-O2', '-Wall']\n"


async def test_runaway_output_is_cut_off(materializer, python_profile):
    executor = LocalExecutor(materializer, max_output_bytes=1000, kill_grace_s=0.2)
    artifact = _artifact(materializer, python_profile, "while True:\n    print('x' * 100)\n")
    result = await executor.run(python_profile, artifact, RunOptions(timeout_s=10))
    assert isinstance(result, RuntimeErrorResult)
    assert "truncated" in result.message
    assert len(result.stdout) <= 1000


async def test_concurrent_runs_are_bounded(materializer, python_profile):
    executor = LocalExecutor(materializer, max_concurrency=1)
    code = "import time; time.sleep(0.3)"
    artifacts = [_artifact(materializer, python_profile, code) for _ in range(2)]
    started = time.monotonic()
    results = await asyncio.gather(
        *(executor.run(python_profile, a) for a in artifacts)
    )
    assert all(isinstance(r, SuccessResult) for r in results)
    assert time.monotonic() - started >= 0.6


async def test_cancellation_kills_process_and_releases(
    executor, materializer, python_profile, tmp_path
):
    pidfile = tmp_path / "main.pid"
    code = f"import os, time\nopen({str(pidfile)!r}, 'w').write(str(os.getpid()))\ntime.sleep(60)\n"
    artifact = _artifact(materializer, python_profile, code)
    pids = []

    async def on_spawn(pid):
        pids.append(pid)

    task = asyncio.create_task(executor.run(python_profile, artifact, on_spawn=on_spawn))
    for _ in range(200):
        if pidfile.exists() and pidfile.read_text():
            break
        await asyncio.sleep(0.02)
    task.cancel()
    await asyncio.wait({task})
    assert task.cancelled()
    assert pids and process_gone(pids[0])
    assert not artifact.directory.exists()


async def test_nonzero_exit_keeps_output(executor, materializer, python_profile):
    code = "import sys\nprint('partial')\nsys.exit(4)\n"
    artifact = _artifact(materializer, python_profile, code)
    result = await executor.run(python_profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert result.exit_code == 4
    assert result.stdout == "partial\n"


async def test_program_exiting_127_is_not_a_missing_binary(
    executor, materializer, python_profile
):
    artifact = _artifact(materializer, python_profile, "import sys\nsys.exit(127)\n")
    result = await executor.run(python_profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert result.exit_code == EXIT_NOT_FOUND
    assert not is_host_error(result)


async def test_removed_sources_are_not_reported_as_missing_interpreter(
    executor, materializer, python_profile
):
    artifact = _artifact(materializer, python_profile, "print(1)")
    shutil.rmtree(artifact.directory)
    result = await executor.run(python_profile, artifact)
    assert isinstance(result, RuntimeErrorResult)
    assert is_host_error(result)
    assert result.exit_code != EXIT_NOT_FOUND
    assert "removed" in result.message
    assert "not installed" not in result.message


def _artifact_dirs(materializer):
    return sorted(materializer.base_dir.glob("job-*"))


async def test_queued_job_writes_nothing_until_it_gets_a_slot(
    materializer, python_profile, tmp_path
):
    executor = LocalExecutor(materializer, max_concurrency=1, kill_grace_s=0.2)
    started = tmp_path / "started"
    slow = f"open({str(started)!r}, 'w').close()\nimport time\ntime.sleep(1)\nprint('first')\n"
    first = asyncio.create_task(
        executor.run_sources(python_profile, [SourceFile(path="main.py", content=slow)])
    )
    for _ in range(250):
        if started.exists():
            break
        await asyncio.sleep(0.02)
    assert started.exists()
    second = asyncio.create_task(
        executor.run_sources(
            python_profile, [SourceFile(path="main.py", content="print('second')")]
        )
    )
    await asyncio.sleep(0.2)
    assert not second.done()
    assert len(_artifact_dirs(materializer)) == 1
    # an aggressive sweep while the second job waits finds only the running one
    assert materializer.sweep(max_age_s=60, now=time.time() + 61) == 1
    first_result, second_result = await asyncio.gather(first, second)
    assert isinstance(first_result, SuccessResult)
    assert first_result.stdout == "first\n"
    assert isinstance(second_result, SuccessResult)
    assert second_result.stdout == "second\n"
    assert _artifact_dirs(materializer) == []


async def test_run_sources_reports_unwritable_temp_dir(
    executor, materializer, python_profile
):
    shutil.rmtree(materializer.base_dir)
    materializer.base_dir.write_text("not a directory")
    result = await executor.run_sources(
        python_profile, [SourceFile(path="main.py", content="print(1)")]
    )
    assert is_host_error(result)
    assert "could not prepare sources" in result.message
