"""
Pydantic Settings — centralized configuration loaded from environment variables.

The ESG_* values are process-wide defaults.  Operators can override the
runtime subset (environment, polling, retry budget) from the settings table;
see `esg_pipeline.submission.settings`.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "esg_user"
    POSTGRES_PASSWORD: str = "esg_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "esg_submissions"
    DATABASE_URL_OVERRIDE: str = ""

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── ESG NextGen API ───────────────────────
    ESG_ENVIRONMENT: str = "Test"
    ESG_CLIENT_ID: str = ""
    ESG_CLIENT_SECRET: str = ""
    ESG_TEST_BASE_URL: str = "https://api-test.fda.gov/esg/v1"
    ESG_PRODUCTION_BASE_URL: str = "https://api.fda.gov/esg/v1"
    ESG_TEST_TOKEN_URL: str = "https://api-test.fda.gov/esg/oauth2/token"
    ESG_PRODUCTION_TOKEN_URL: str = "https://api.fda.gov/esg/oauth2/token"
    ESG_REQUEST_TIMEOUT_SECONDS: float = 30.0
    ESG_USER_AGENT: str = "FAERS-App/1.0"

    # ── Sender information ────────────────────
    ESG_SENDER_COMPANY_NAME: str = ""
    ESG_SENDER_CONTACT_NAME: str = ""
    ESG_SENDER_CONTACT_EMAIL: str = ""

    # ── Polling / retry defaults ──────────────
    ESG_POLLING_INTERVAL_MINUTES: int = 5
    ESG_POLLING_TIMEOUT_HOURS: int = 48
    ESG_MAX_AUTOMATIC_RETRIES: int = 3
    ESG_MAX_TOTAL_ATTEMPTS: int = 5

    # ── Documents ─────────────────────────────
    ESG_DOCUMENT_DIR: str = "exports"

    # ── Demo environment ──────────────────────
    ESG_DEMO_SCENARIO: str = "happy_path"
    ESG_DEMO_SPEED: str = "realtime"

    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}


settings = Settings()
