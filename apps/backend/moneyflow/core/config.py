from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "moneyflow"
    ENV: str = "dev"

    # apps/backend/moneyflow.sqlite3 as an absolute path so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "moneyflow.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    # "today" for manual triggers and the batch job is resolved in this zone
    TIMEZONE: str = "Asia/Kuala_Lumpur"
    DEFAULT_CURRENCY: str = "MYR"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="MONEYFLOW_", case_sensitive=False)


settings = Settings()
