from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from laser_dispatch.config.settings import Settings


USER_AGENT = "laser-dispatch-bot/1.0"

DEFAULT_GITHUB_REPOS = (
    "anthropics/claude-code",
    "openai/codex",
)

DEFAULT_SUBREDDITS = (
    "vibecoding",
    "vibecodedevs",
    "theVibeCoding",
    "cursor",
    "ClaudeAI",
    "ClaudeCode",
    "ChatGPTCoding",
    "Codex",
    "Anthropic",
    "OpenAI",
    "DeepSeek",
    "LLMDevs",
    "AI_Agents",
    "AIPromptProgramming",
    "windsurf",
    "Codeium",
    "replit",
    "githubcopilot",
    "PromptEngineering",
    "indiehackers",
    "nocode",
)

# (name, url, format, embed colour)
DEFAULT_STATUS_FEEDS = (
    ("Claude", "https://status.claude.com/history.atom", "atom", 0xD4A574),
    ("OpenAI", "https://status.openai.com/feed.atom", "atom", 0x00A67E),
    ("Google AI", "https://status.cloud.google.com/incidents.json", "gcloud-json", 0x4285F4),
    ("Cursor", "https://status.cursor.com/history.atom", "atom", 0x000000),
    ("Windsurf", "https://status.windsurf.com/history.atom", "atom", 0x00D4AA),
    ("Groq", "https://groqstatus.com/feed.atom", "atom", 0xF55036),
    ("Bolt", "https://status.bolt.new/feed.atom", "atom", 0x7C3AED),
    ("OpenRouter", "https://status.openrouter.ai/incidents.rss", "rss", 0x6366F1),
    ("Replicate", "https://www.replicatestatus.com/feed.atom", "atom", 0x000000),
    ("xAI", "https://status.x.ai/feed.xml", "rss", 0x000000),
    ("DeepSeek", "https://status.deepseek.com/history.atom", "atom", 0x0066FF),
    ("Perplexity", "https://status.perplexity.com/history.atom", "atom", 0x20B8CD),
    ("Together AI", "https://status.together.ai/feed.atom", "atom", 0x0EA5E9),
    ("Cohere", "https://status.cohere.com/feed.atom", "atom", 0x39594D),
    ("Lovable", "https://status.lovable.dev/feed.atom", "atom", 0xEC4899),
)

PIPELINES = ("github", "reddit", "status")


class ConfigurationError(ValueError):
    pass


class OrderPolicy(str, Enum):
    OLDEST_FIRST = "oldest_first"
    SCORE = "score"


class SourceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    url: str
    format: str  # github | reddit | atom | rss | gcloud-json
    color: int = 0
    fetch_interval_seconds: int = 0


class PipelineConfig(BaseModel):
    """Everything one pipeline run needs, fixed at run start."""

    model_config = ConfigDict(frozen=True)

    name: str
    webhook_url: str
    sources: tuple[SourceDescriptor, ...]

    order_policy: OrderPolicy = OrderPolicy.OLDEST_FIRST
    max_deliveries_per_run: int = 10

    # due-scheduling; None means every due source is polled
    max_sources_per_run: int | None = None

    fetch_pacing_seconds: float = 0.0
    fetch_concurrency: int = 1
    max_items_per_source: int | None = None
    max_items_per_run: int | None = None

    # items without a date, or older than this, are never announced
    max_item_age_seconds: int | None = None

    delivery_max_attempts: int = 3
    delivery_backoff_seconds: float = 2.0
    delivery_pacing_seconds: float = 2.0

    http_timeout_seconds: float = 30.0
    github_token: str = Field(default="", repr=False)
    user_agent: str = USER_AGENT


def github_sources(repos: list[str] | tuple[str, ...]) -> tuple[SourceDescriptor, ...]:
    return tuple(
        SourceDescriptor(
            key=repo,
            name=repo,
            url=f"https://api.github.com/repos/{repo}/commits?per_page=10",
            format="github",
            color=0x238636,
        )
        for repo in repos
    )


def reddit_sources(
    subreddits: list[str] | tuple[str, ...], interval_seconds: int
) -> tuple[SourceDescriptor, ...]:
    return tuple(
        SourceDescriptor(
            key=sub,
            name=f"r/{sub}",
            url=f"https://www.reddit.com/r/{sub}/top.json?t=day&limit=10",
            format="reddit",
            color=0xFF4500,
            fetch_interval_seconds=interval_seconds,
        )
        for sub in subreddits
    )


def status_sources() -> tuple[SourceDescriptor, ...]:
    return tuple(
        SourceDescriptor(key=name, name=name, url=url, format=fmt, color=color)
        for name, url, fmt, color in DEFAULT_STATUS_FEEDS
    )


def build_pipeline(name: str, s: Settings, require_webhook: bool = True) -> PipelineConfig:
    """Pipeline config from settings. require_webhook=False is for read-only diagnostics."""
    if name not in PIPELINES:
        raise ConfigurationError(f"Unknown pipeline: {name!r} (expected one of {', '.join(PIPELINES)})")

    webhook_url = s.webhooks[name]
    if require_webhook and not webhook_url:
        raise ConfigurationError(f"Missing {name.upper()}_DISCORD_WEBHOOK_URL")

    common = dict(
        name=name,
        webhook_url=webhook_url,
        max_deliveries_per_run=s.max_deliveries_per_run,
        delivery_max_attempts=s.delivery_max_attempts,
        http_timeout_seconds=s.http_timeout_seconds,
        max_items_per_source=s.max_items_per_source or None,
        max_items_per_run=s.max_items_per_run or None,
    )

    if name == "github":
        return PipelineConfig(
            **common,
            sources=github_sources(s.github_repos or DEFAULT_GITHUB_REPOS),
            order_policy=OrderPolicy.OLDEST_FIRST,
            fetch_pacing_seconds=1.0,
            github_token=s.github_token,
        )

    if name == "reddit":
        # many subreddits share one unauthenticated rate budget
        return PipelineConfig(
            **common,
            sources=reddit_sources(
                s.reddit_subreddits or DEFAULT_SUBREDDITS,
                s.reddit_fetch_interval_minutes * 60,
            ),
            order_policy=OrderPolicy.SCORE,
            max_sources_per_run=s.reddit_max_sources_per_run,
            fetch_pacing_seconds=2.0,
        )

    return PipelineConfig(
        **common,
        sources=status_sources(),
        order_policy=OrderPolicy.OLDEST_FIRST,
        fetch_concurrency=5,
        fetch_pacing_seconds=1.0,
        max_item_age_seconds=s.status_max_age_hours * 3600,
        delivery_backoff_seconds=1.0,
        delivery_pacing_seconds=0.5,
    )
