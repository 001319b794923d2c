import json
import httpx
import pytest
from codeexec.core.errors import JudgePollError, JudgeSubmitError
from codeexec.models.job import RunOptions
from codeexec.models.results import (
    CompileErrorResult,
    RuntimeErrorResult,
    SuccessResult,
    TimeoutResult,
)
from codeexec.services.judge import RemoteJudgeClient
from codeexec.services.runtimes import profile_for
from tests.helpers import b64

PY = profile_for("python")


def _poll_handler(body, status_code=200):
    def handler(request):
        assert request.method == "GET"
        return httpx.Response(status_code, json=body)

    return handler


async def test_submit_sends_encoded_payload(make_judge):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"token": "abc"})

    judge = make_judge(handler)
    token = await judge.submit(PY, "print(1)", "in", RunOptions(timeout_s=3))
    assert token == "abc"
    assert "base64_encoded=true" in seen["url"]
    assert seen["body"]["language_id"] == 71
    assert seen["body"]["source_code"] == b64("print(1)")
    assert seen["body"]["stdin"] == b64("in")
    assert seen["body"]["cpu_time_limit"] == 3


async def test_submit_network_failure(make_judge):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(JudgeSubmitError):
        await make_judge(handler).submit(PY, "x", None, RunOptions())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(201, text="not json"),
        httpx.Response(201, json=["token"]),
        httpx.Response(201, json={"token": None}),
    ],
)
async def test_submit_bad_responses_are_submit_failures(make_judge, response):
    judge = make_judge(lambda request: response)
    with pytest.raises(JudgeSubmitError):
        await judge.submit(PY, "x", None, RunOptions())


async def test_submit_without_remote_language_code(make_judge):
    judge = make_judge(lambda request: httpx.Response(201, json={"token": "t"}))
    with pytest.raises(JudgeSubmitError):
        await judge.submit(profile_for("powershell"), "x", None, RunOptions())


async def test_unconfigured_judge_refuses_submission():
    judge = RemoteJudgeClient(None)
    assert not judge.enabled
    with pytest.raises(JudgeSubmitError):
        await judge.submit(PY, "x", None, RunOptions())


@pytest.mark.parametrize("status_id", [1, 2])
async def test_poll_still_processing(make_judge, status_id):
    judge = make_judge(_poll_handler({"status": {"id": status_id}}))
    assert await judge.poll("tok") is None


async def test_poll_accepted(make_judge):
    body = {
        "status": {"id": 3, "description": "Accepted"},
        "stdout": b64("Hello\n"),
        "stderr": None,
        "time": "0.012",
        "memory": 3120,
        "exit_code": 0,
    }
    result = await make_judge(_poll_handler(body)).poll("tok")
    assert isinstance(result, SuccessResult)
    assert result.stdout == "Hello\n"
    assert result.wall_ms == 12
    assert result.memory_kb == 3120


async def test_poll_time_limit(make_judge):
    result = await make_judge(_poll_handler({"status": {"id": 5}})).poll("tok")
    assert isinstance(result, TimeoutResult)
    assert result.exit_code == 124


async def test_poll_compile_error(make_judge):
    body = {"status": {"id": 6}, "compile_output": b64("main.c:1: error")}
    result = await make_judge(_poll_handler(body)).poll("tok")
    assert isinstance(result, CompileErrorResult)
    assert "error" in result.stderr


async def test_poll_runtime_error(make_judge):
    body = {"status": {"id": 11, "description": "Runtime Error (NZEC)"}, "exit_code": 2}
    result = await make_judge(_poll_handler(body)).poll("tok")
    assert isinstance(result, RuntimeErrorResult)
    assert result.exit_code == 2


async def test_poll_unrecognized_status_is_error(make_judge):
    result = await make_judge(_poll_handler({"status": {"id": 99}})).poll("tok")
    assert isinstance(result, RuntimeErrorResult)
    assert "unrecognized" in result.message


@pytest.mark.parametrize(
    "handler",
    [
        _poll_handler({"unexpected": True}),
        _poll_handler({"status": {"id": 3}, "stdout": "!!!not base64"}),
        _poll_handler({}, status_code=500),
    ],
)
async def test_poll_malformed_responses(make_judge, handler):
    with pytest.raises(JudgePollError):
        await make_judge(handler).poll("tok")
