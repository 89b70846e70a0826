from __future__ import annotations

import logging

import requests
from dateutil.parser import isoparse

from laser_dispatch.config.pipelines import USER_AGENT, SourceDescriptor
from laser_dispatch.models.schemas import Item

logger = logging.getLogger(__name__)


def _headers(token: str | None, user_agent: str = USER_AGENT) -> dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Accept": "application/vnd.github.v3+json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def commit_to_item(data: dict, source: SourceDescriptor) -> Item:
    commit = data["commit"]
    message = commit.get("message") or ""
    lines = message.split("\n")
    author = data.get("author") or {}

    date = (commit.get("author") or {}).get("date")

    return Item(
        id=data["sha"],
        namespace="github",
        source=source.key,
        title=lines[0],
        body="\n".join(lines[1:]).strip(),
        link=data.get("html_url", ""),
        published_at=isoparse(date) if date else None,
        author=author.get("login") or (commit.get("author") or {}).get("name"),
        author_url=author.get("html_url"),
        avatar_url=author.get("avatar_url"),
        metadata={"repo": source.key},
    )


def fetch_repo_commits(
    source: SourceDescriptor,
    token: str | None = None,
    timeout: float = 20,
    user_agent: str = USER_AGENT,
) -> list[Item]:
    """
    Latest commits for one repo, newest first. Empty on any failure.
    """
    try:
        r = requests.get(source.url, headers=_headers(token, user_agent), timeout=timeout)
    except requests.RequestException as e:
        logger.error("Error fetching %s: %s", source.key, e)
        return []

    if not r.ok:
        logger.error("Failed to fetch %s: %s", source.key, r.status_code)
        return []

    try:
        data = r.json()
        return [commit_to_item(c, source) for c in data]
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.error("Malformed commit list for %s: %s", source.key, e)
        return []
