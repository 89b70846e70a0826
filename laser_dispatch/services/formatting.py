from __future__ import annotations

from typing import Any

from laser_dispatch.config.pipelines import SourceDescriptor
from laser_dispatch.models.schemas import Item

# Discord embed limits we stay under
TITLE_LIMIT = 256
DESCRIPTION_LIMIT = 500

GITHUB_ICON = "https://github.githubassets.com/favicons/favicon.png"
REDDIT_ICON = "https://www.redditstatic.com/desktop2x/img/favicon/android-icon-192x192.png"

STATUS_EMOJI = {
    "investigating": "🔴",
    "identified": "🟠",
    "monitoring": "🟡",
    "resolved": "🟢",
}


def truncate(text: str | None, limit: int) -> str:
    t = (text or "").strip()
    if len(t) > limit:
        return t[: limit - 3] + "..."
    return t


def fmt_count(x: Any) -> str:
    try:
        return f"{int(x):,}"
    except (TypeError, ValueError):
        return "0"


def _timestamp(item: Item) -> str | None:
    if item.published_at is None:
        return None
    return item.published_at.isoformat()


# ---------------------------
# Embeds per namespace
# ---------------------------

def _github_embed(item: Item, source: SourceDescriptor) -> dict:
    sha = item.id
    author_value = (
        f"[@{item.author}]({item.author_url})" if item.author_url else (item.author or "unknown")
    )

    embed: dict[str, Any] = {
        "title": truncate(item.title, TITLE_LIMIT),
        "url": item.link,
        "color": source.color,
        "author": {
            "name": source.name,
            "url": f"https://github.com/{source.key}",
            "icon_url": GITHUB_ICON,
        },
        "fields": [
            {"name": "Commit", "value": f"[`{sha[:7]}`]({item.link})", "inline": True},
            {"name": "Author", "value": author_value, "inline": True},
        ],
        "footer": {"text": "GitHub", "icon_url": GITHUB_ICON},
    }

    if item.body:
        embed["description"] = truncate(item.body, DESCRIPTION_LIMIT)
    if item.avatar_url:
        embed["thumbnail"] = {"url": item.avatar_url}
    return embed


def _reddit_embed(item: Item, source: SourceDescriptor) -> dict:
    sub = item.metadata.get("subreddit") or source.key

    embed: dict[str, Any] = {
        "title": truncate(item.title, TITLE_LIMIT),
        "url": item.link,
        "color": source.color,
        "author": {
            "name": f"r/{sub}",
            "url": f"https://reddit.com/r/{sub}",
            "icon_url": REDDIT_ICON,
        },
        "fields": [
            {"name": "Score", "value": f"⬆️ {fmt_count(item.score)}", "inline": True},
            {"name": "Comments", "value": f"💬 {fmt_count(item.comments)}", "inline": True},
            {"name": "Author", "value": f"u/{item.author or '[deleted]'}", "inline": True},
        ],
        "footer": {"text": "Reddit", "icon_url": REDDIT_ICON},
    }

    external_url = item.metadata.get("external_url")
    if external_url and external_url != item.link:
        embed["description"] = f"🔗 [External Link]({external_url})"
    elif item.body:
        embed["description"] = truncate(item.body, 300)

    if item.image_url:
        embed["image"] = {"url": item.image_url}
    return embed


def _status_embed(item: Item, source: SourceDescriptor) -> dict:
    status = item.status or "unknown"
    emoji = STATUS_EMOJI.get(status, "⚪")

    embed: dict[str, Any] = {
        "title": truncate(f"{emoji} {item.title}", TITLE_LIMIT),
        "url": item.link,
        "color": source.color,
        "author": {"name": source.name},
        "footer": {"text": f"Status: {status.capitalize()}"},
    }
    if item.link:
        embed["author"]["url"] = item.link
    if item.body:
        embed["description"] = truncate(item.body, DESCRIPTION_LIMIT)
    return embed


_EMBEDS = {
    "github": _github_embed,
    "reddit": _reddit_embed,
    "status": _status_embed,
}


def format_item(item: Item, source: SourceDescriptor) -> dict:
    """
    Build the webhook payload for one item. Pure: no I/O.
    """
    build = _EMBEDS.get(item.namespace)
    if build is None:
        raise ValueError(f"No formatter for namespace {item.namespace!r}")

    embed = build(item, source)
    if not embed.get("url"):
        embed.pop("url", None)
    ts = _timestamp(item)
    if ts:
        embed["timestamp"] = ts
    return {"embeds": [embed]}
