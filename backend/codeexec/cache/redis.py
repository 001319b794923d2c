from redis import asyncio as aioredis
from codeexec.core.config import get_settings


def create_redis(url: str | None = None):
    return aioredis.from_url(url or get_settings().REDIS_URL, decode_responses=False)
