"""Engine entry point: logging setup and service construction."""

import sys

from loguru import logger

from lottery_engine.config import settings
from lottery_engine.ml.training.data_loader import DrawingSource, StaticDrawingSource
from lottery_engine.services.prediction_service import PredictionService


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if settings.DEBUG else "INFO")
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(settings.LOG_DIR / "engine.log", rotation="10 MB", retention="7 days", level="INFO")


def create_service(source: DrawingSource | None = None) -> PredictionService:
    """Configure logging and build a service over ``source`` (in-memory by default)."""
    configure_logging()
    settings.MODEL_ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("Starting {} ...", settings.APP_NAME)
    return PredictionService(source or StaticDrawingSource())
