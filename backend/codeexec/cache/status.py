"""Short-lived job records for status polling.

Only the orchestrator writes here. Both backends refuse a write whose
``revision`` is older than the stored one, so a reader can never see a job
move backwards (e.g. ``running`` after ``success``).
"""
import abc, asyncio, logging, time
from codeexec.cache.redis import create_redis
from codeexec.core.config import Settings
from codeexec.models.job import Job

logger = logging.getLogger(__name__)


class StatusCache(abc.ABC):
    @abc.abstractmethod
    async def get(self, job_id: str) -> Job | None: ...

    @abc.abstractmethod
    async def put(self, job: Job) -> bool:
        """Store ``job``; returns False if a newer revision is already stored."""

    async def aclose(self) -> None:
        return None


class MemoryStatusCache(StatusCache):
    def __init__(self, ttl_seconds: float = 3600, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: dict[str, tuple[float, Job]] = {}
        self._lock = asyncio.Lock()

    async def get(self, job_id: str) -> Job | None:
        item = self._items.get(job_id)
        if item is None:
            return None
        expires, job = item
        if expires <= self._clock():
            async with self._lock:
                if self._items.get(job_id) is item:
                    del self._items[job_id]
            return None
        return job

    async def put(self, job: Job) -> bool:
        async with self._lock:
            now = self._clock()
            current = self._items.get(job.id)
            if current is not None and current[0] > now and current[1].revision > job.revision:
                return False
            self._items[job.id] = (now + self.ttl_seconds, job)
            self._evict(now)
            return True

    def _evict(self, now: float) -> None:
        stale = [k for k, (expires, _) in self._items.items() if expires <= now]
        for k in stale:
            del self._items[k]

    def __len__(self):
        return len(self._items)


# KEYS[1] = job key; ARGV = json, revision, ttl
_PUT_IF_NEWER = """
local rev = redis.call('HGET', KEYS[1], 'revision')
if rev and tonumber(rev) > tonumber(ARGV[2]) then
  return 0
end
redis.call('HSET', KEYS[1], 'job', ARGV[1], 'revision', ARGV[2])
redis.call('EXPIRE', KEYS[1], ARGV[3])
return 1
"""


class RedisStatusCache(StatusCache):
    """One hash per job (``job`` json, ``revision``) with a TTL."""

    def __init__(self, redis, prefix: str = "jobs:status:", ttl_seconds: int = 3600):
        self.redis = redis
        self.prefix = prefix
        self.ttl_seconds = int(ttl_seconds)
        self._put_script = redis.register_script(_PUT_IF_NEWER)

    def key(self, job_id: str) -> str:
        return f"{self.prefix}{job_id}"

    async def get(self, job_id: str) -> Job | None:
        raw = await self.redis.hget(self.key(job_id), "job")
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    async def put(self, job: Job) -> bool:
        stored = await self._put_script(
            keys=[self.key(job.id)],
            args=[job.model_dump_json(), job.revision, self.ttl_seconds],
        )
        return bool(stored)

    async def aclose(self) -> None:
        await self.redis.aclose()


def build_status_cache(settings: Settings) -> StatusCache:
    if settings.STATUS_CACHE == "redis":
        logger.info("using redis status cache")
        return RedisStatusCache(
            create_redis(settings.REDIS_URL),
            prefix=settings.STATUS_KEY_PREFIX,
            ttl_seconds=settings.STATUS_TTL_SECONDS,
        )
    return MemoryStatusCache(ttl_seconds=settings.STATUS_TTL_SECONDS)
