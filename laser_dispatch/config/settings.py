from dotenv import load_dotenv
from pydantic import BaseModel, Field
import os

load_dotenv()

def _to_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}

def _to_int(v: str | None, default: int) -> int:
    if v is None or not v.strip():
        return default
    return int(v.strip())

def _to_list(v: str | None) -> list[str]:
    # repo and subreddit names keep their case, they end up in ledger keys
    if v is None or not v.strip():
        return []
    return [x.strip() for x in v.split(",") if x.strip()]

def _to_float(v: str | None, default: float) -> float:
    if v is None or not v.strip():
        return default
    return float(v.strip())


class Settings(BaseModel):
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="logs/run.log")

    database_url: str = Field(default="sqlite:///data/ledger.db")

    github_discord_webhook_url: str = Field(default="")
    reddit_discord_webhook_url: str = Field(default="")
    status_discord_webhook_url: str = Field(default="")

    github_token: str = Field(default="")
    github_repos: list[str] = Field(default_factory=list)

    reddit_subreddits: list[str] = Field(default_factory=list)
    reddit_fetch_interval_minutes: int = Field(default=60)
    reddit_max_sources_per_run: int = Field(default=5)

    status_max_age_hours: int = Field(default=24)

    # 0 disables the cap
    max_items_per_source: int = Field(default=0)
    max_items_per_run: int = Field(default=0)

    max_deliveries_per_run: int = Field(default=10)
    delivery_max_attempts: int = Field(default=3)
    http_timeout_seconds: float = Field(default=30.0)

    run_lock_enabled: bool = Field(default=False)

    trigger_host: str = Field(default="127.0.0.1")
    trigger_port: int = Field(default=8787)

    @property
    def webhooks(self) -> dict[str, str]:
        return {
            "github": self.github_discord_webhook_url,
            "reddit": self.reddit_discord_webhook_url,
            "status": self.status_discord_webhook_url,
        }


_settings: Settings | None = None

def get_settings() -> Settings:
    global _settings
    if _settings is not None:
        return _settings

    _settings = Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "logs/run.log"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/ledger.db"),
        github_discord_webhook_url=os.getenv("GITHUB_DISCORD_WEBHOOK_URL", ""),
        reddit_discord_webhook_url=os.getenv("REDDIT_DISCORD_WEBHOOK_URL", ""),
        status_discord_webhook_url=os.getenv("STATUS_DISCORD_WEBHOOK_URL", ""),
        github_token=os.getenv("GITHUB_TOKEN", ""),
        github_repos=_to_list(os.getenv("GITHUB_REPOS")),
        reddit_subreddits=_to_list(os.getenv("REDDIT_SUBREDDITS")),
        reddit_fetch_interval_minutes=_to_int(os.getenv("REDDIT_FETCH_INTERVAL_MINUTES"), 60),
        reddit_max_sources_per_run=_to_int(os.getenv("REDDIT_MAX_SOURCES_PER_RUN"), 5),
        status_max_age_hours=_to_int(os.getenv("STATUS_MAX_AGE_HOURS"), 24),
        max_items_per_source=_to_int(os.getenv("MAX_ITEMS_PER_SOURCE"), 0),
        max_items_per_run=_to_int(os.getenv("MAX_ITEMS_PER_RUN"), 0),
        max_deliveries_per_run=_to_int(os.getenv("MAX_DELIVERIES_PER_RUN"), 10),
        delivery_max_attempts=_to_int(os.getenv("DELIVERY_MAX_ATTEMPTS"), 3),
        http_timeout_seconds=_to_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 30.0),
        run_lock_enabled=_to_bool(os.getenv("RUN_LOCK_ENABLED"), False),
        trigger_host=os.getenv("TRIGGER_HOST", "127.0.0.1"),
        trigger_port=_to_int(os.getenv("TRIGGER_PORT"), 8787),
    )
    return _settings
