"""Engine configuration using Pydantic Settings."""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    APP_NAME: str = "Lottery Prediction Engine"
    DEBUG: bool = False
    LOG_DIR: Path = Path("./logs")

    # ML
    MODEL_ARTIFACTS_DIR: Path = Path("./model_artifacts")
    TORCH_DEVICE: str = "cpu"
    FEATURE_WINDOW_SIZE: int = 50
    DEFAULT_ENSEMBLE_ALGORITHMS: list[str] = ["random_forest", "neural_network", "statistical"]


settings = Settings()
