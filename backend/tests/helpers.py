import base64
import time
import psutil
from codeexec.cache.status import MemoryStatusCache


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def process_gone(pid: int, wait_s: float = 3.0) -> bool:
    """True once ``pid`` no longer runs (a zombie counts as gone)."""
    deadline = time.monotonic() + wait_s
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


class RecordingCache(MemoryStatusCache):
    """Memory cache that also remembers every record written to it."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.history = []

    async def put(self, job):
        self.history.append(job)
        return await super().put(job)

    def states(self, job_id):
        return [j for j in self.history if j.id == job_id]


async def wait_terminal(orc, principal, job_id):
    await orc.join(job_id)
    return await orc.get_status(principal, job_id)
