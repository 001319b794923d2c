import dataclasses
import sys
import httpx
import pytest
from codeexec.core.config import Settings
from codeexec.services.judge import RemoteJudgeClient
from codeexec.services.local_executor import LocalExecutor
from codeexec.services.materializer import SourceMaterializer
from codeexec.services.orchestrator import Orchestrator
from codeexec.services.runtimes import profile_for
from tests.helpers import RecordingCache


@pytest.fixture
def settings(tmp_path):
    return Settings(
        TEMP_DIR=str(tmp_path / "runner"),
        RUNTIME_BINARIES={"python3": sys.executable},
        RUN_TIME_LIMIT_S=5,
        KILL_GRACE_S=0.2,
        LOCAL_MAX_CONCURRENCY=4,
        JUDGE0_URL=None,
        JUDGE_POLL_INTERVAL_S=0.01,
        JUDGE_MAX_POLLS=5,
        STATUS_CACHE="memory",
    )


@pytest.fixture
def materializer(settings):
    return SourceMaterializer(settings.TEMP_DIR)


@pytest.fixture
def executor(materializer, settings):
    return LocalExecutor.from_settings(materializer, settings)


@pytest.fixture
def python_profile():
    return dataclasses.replace(profile_for("python"), run=(sys.executable, "{src}"))


@pytest.fixture
async def make_judge():
    clients = []

    def _make(handler, url="http://judge.test"):
        client = RemoteJudgeClient(url, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
async def make_orchestrator(settings):
    created = []

    def _make(judge=None, cache=None):
        orc = Orchestrator.from_settings(
            settings,
            cache=cache or RecordingCache(),
            judge=judge or RemoteJudgeClient(None),
        )
        created.append(orc)
        return orc

    yield _make
    for orc in created:
        await orc.aclose()
