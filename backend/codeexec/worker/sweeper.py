import asyncio, logging
from codeexec.core.config import get_settings
from codeexec.core.logging import setup_logging
from codeexec.services.materializer import SourceMaterializer

logger = logging.getLogger(__name__)


async def sweep_forever(
    materializer: SourceMaterializer, interval_s: float, max_age_s: float
):
    """Periodically delete artifacts left behind by crashed executions."""
    while True:
        try:
            materializer.sweep(max_age_s)
        except OSError:
            logger.exception("artifact sweep failed")
        await asyncio.sleep(interval_s)


async def main():
    settings = get_settings()
    materializer = SourceMaterializer(settings.TEMP_DIR)
    logger.info("sweeping %s every %ss", settings.TEMP_DIR, settings.SWEEP_INTERVAL_S)
    await sweep_forever(
        materializer, settings.SWEEP_INTERVAL_S, settings.ARTIFACT_MAX_AGE_S
    )


if __name__ == "__main__":
    setup_logging(get_settings().LOG_LEVEL)
    asyncio.run(main())
