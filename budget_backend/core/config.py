from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Envelope Budget Backend"
    ENV: str = "dev"

    # Default SQLite file next to the package so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "budget.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    DEFAULT_CURRENCY: str = "EUR"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    TRANSACTIONS_DEFAULT_TAKE: int = 50
    TRANSACTIONS_MAX_TAKE: int = 200

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="BUDGET_", case_sensitive=False)


settings = Settings()
