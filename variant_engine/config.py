from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Variant Engine"
    DATABASE_URL: str = "sqlite:///./catalog.db"

    # Hard upper bound on candidates per generation request
    MAX_COMBINATIONS: int = 500

    # Generation transaction retry policy
    GENERATION_MAX_ATTEMPTS: int = 3
    GENERATION_RETRY_BASE_DELAY: float = 0.1  # seconds, doubled per attempt

    # Reconciliation
    RECONCILE_BATCH_SIZE: int = 1000
    DRIFT_HIGH_THRESHOLD: int = 50

    # Event delivery: list of callback URLs (comma-separated)
    EVENT_WEBHOOK_URLS: str = ""
    # Entries kept per log on a long-lived event sink
    EVENT_LOG_MAX_SIZE: int = 1000

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = ""

    model_config = {"env_file": ".env"}

    @property
    def event_webhook_urls(self) -> list[str]:
        return [u.strip() for u in self.EVENT_WEBHOOK_URLS.split(",") if u.strip()]


settings = Settings()
