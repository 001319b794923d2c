import os
from functools import lru_cache
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Code Execution Service"
    API_PREFIX: str = "/api"
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8
    LOG_LEVEL: str = "INFO"

    # Local executor
    RUN_TIME_LIMIT_S: float = 10
    MAX_RUN_TIME_LIMIT_S: float = 60
    COMPILE_TIME_LIMIT_S: float = 30
    RUN_MEMORY_LIMIT_KB: int | None = None
    MAX_OUTPUT_BYTES: int = 64 * 1024
    KILL_GRACE_S: float = 0.5
    LOCAL_MAX_CONCURRENCY: int = os.cpu_count() or 2
    # binary name -> absolute path, e.g. {"python3": "/usr/bin/python3.12"}
    RUNTIME_BINARIES: dict[str, str] = {}

    # Source materializer
    TEMP_DIR: str = os.path.join("/tmp", "codeexec-runner")
    ARTIFACT_MAX_AGE_S: int = 3600
    SWEEP_INTERVAL_S: int = 3600

    # Remote judge (Judge0 compatible); unset means local execution only
    JUDGE0_URL: str | None = None
    JUDGE0_API_KEY: str | None = None
    JUDGE0_HOST: str | None = None
    JUDGE0_TIMEOUT_S: float = 10
    JUDGE_POLL_INTERVAL_S: float = 1.0
    JUDGE_MAX_POLLS: int = 30
    JUDGE_MAX_CONCURRENT_POLLS: int = 64

    # Status cache
    STATUS_CACHE: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    STATUS_KEY_PREFIX: str = "jobs:status:"
    STATUS_TTL_SECONDS: int = 3600

    # Submission limits
    MAX_SOURCE_FILES: int = 32
    MAX_SOURCE_BYTES: int = 512 * 1024
    MAX_STDIN_BYTES: int = 256 * 1024

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _sweep_outlives_executions(self):
        longest = self.MAX_RUN_TIME_LIMIT_S + self.COMPILE_TIME_LIMIT_S
        if self.ARTIFACT_MAX_AGE_S <= longest:
            raise ValueError(
                f"ARTIFACT_MAX_AGE_S must exceed the longest execution ({longest}s)"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
