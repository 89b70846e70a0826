from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests

from laser_dispatch.config.pipelines import USER_AGENT, SourceDescriptor
from laser_dispatch.models.schemas import Item

logger = logging.getLogger(__name__)


def post_image(post: dict) -> str | None:
    images = (post.get("preview") or {}).get("images") or []
    if images:
        url = ((images[0] or {}).get("source") or {}).get("url")
        if url:
            return url.replace("&amp;", "&")

    thumb = post.get("thumbnail") or ""
    if thumb.startswith("http"):
        return thumb
    return None


def post_to_item(post: dict, source: SourceDescriptor) -> Item:
    reddit_url = f"https://reddit.com{post['permalink']}"
    external = None if post.get("is_self") else post.get("url")

    return Item(
        id=post["id"],
        namespace="reddit",
        source=source.key,
        title=post.get("title", ""),
        body=post.get("selftext") or "",
        link=reddit_url,
        published_at=datetime.fromtimestamp(post["created_utc"], tz=timezone.utc),
        score=int(post.get("score") or 0),
        comments=int(post.get("num_comments") or 0),
        author=post.get("author"),
        image_url=post_image(post),
        metadata={
            "subreddit": post.get("subreddit") or source.key,
            "external_url": external,
            "is_self": bool(post.get("is_self")),
        },
    )


def fetch_subreddit_top(source: SourceDescriptor, timeout: float = 20, user_agent: str = USER_AGENT) -> list[Item]:
    """
    Today's top posts for one subreddit. Empty on any failure.
    """
    try:
        r = requests.get(source.url, headers={"User-Agent": user_agent}, timeout=timeout)
    except requests.RequestException as e:
        logger.error("Error fetching %s: %s", source.name, e)
        return []

    if not r.ok:
        logger.error("Failed to fetch %s: %s", source.name, r.status_code)
        return []

    try:
        children = r.json()["data"]["children"]
        return [post_to_item(child["data"], source) for child in children]
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.error("Malformed listing for %s: %s", source.name, e)
        return []
