from __future__ import annotations

import html
import json
import logging
import re
from datetime import datetime, timezone
from typing import Callable

import feedparser
import requests
from dateutil.parser import parse as parse_date

from laser_dispatch.config.pipelines import USER_AGENT, SourceDescriptor
from laser_dispatch.models.schemas import Item

logger = logging.getLogger(__name__)

ACCEPT = "application/atom+xml, application/rss+xml, application/json, application/xml, text/xml, */*"

GCLOUD_AI_KEYWORDS = ["vertex", "gemini", "ai platform", "ai studio", "machine learning"]


# ---------------------------
# Text helpers
# ---------------------------

def clean_text(text: str | None) -> str:
    """Decode entities, drop tags, collapse whitespace."""
    if not text:
        return ""
    t = html.unescape(text)
    t = re.sub(r"<[^>]+>", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def detect_status(text: str) -> str:
    lower = text.lower()
    if "resolved" in lower or "completed" in lower or "恢复" in lower:
        return "resolved"
    if "monitoring" in lower:
        return "monitoring"
    if "identified" in lower:
        return "identified"
    if "investigating" in lower:
        return "investigating"
    return "unknown"


def _parse_when(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        dt = parse_date(raw)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _entry_content(entry) -> str:
    content = entry.get("content") or []
    if content:
        return clean_text(content[0].get("value"))
    return clean_text(entry.get("summary"))


def _feed_entries(raw: str, source: SourceDescriptor, date_fields: tuple[str, ...]) -> list[Item]:
    feed = feedparser.parse(raw)
    if feed.bozo and not feed.entries:
        logger.error("Unparseable %s feed for %s: %s", source.format, source.name, feed.get("bozo_exception"))
        return []

    items: list[Item] = []
    for entry in feed.entries:
        title = clean_text(entry.get("title"))
        link = entry.get("link") or ""
        content = _entry_content(entry)
        when = next((entry.get(f) for f in date_fields if entry.get(f)), None)

        # guid/id first, then anything stable
        item_id = entry.get("id") or link or title
        if not item_id:
            continue

        items.append(
            Item(
                id=item_id,
                namespace="status",
                source=source.key,
                title=title,
                link=link,
                body=content,
                published_at=_parse_when(when),
                status=detect_status(f"{title} {content}"),
            )
        )
    return items


# ---------------------------
# One parser per feed format
# ---------------------------

def parse_atom_feed(raw: str, source: SourceDescriptor) -> list[Item]:
    return _feed_entries(raw, source, ("updated", "published"))


def parse_rss_feed(raw: str, source: SourceDescriptor) -> list[Item]:
    return _feed_entries(raw, source, ("published", "updated"))


def parse_gcloud_incidents(raw: str, source: SourceDescriptor) -> list[Item]:
    """
    Google Cloud incidents.json, AI-related incidents only.
    """
    try:
        incidents = json.loads(raw)
    except ValueError as e:
        logger.error("Error parsing Google Cloud JSON: %s", e)
        return []

    items: list[Item] = []
    for inc in incidents if isinstance(incidents, list) else []:
        try:
            desc = inc.get("external_desc") or ""
            if not any(k in desc.lower() for k in GCLOUD_AI_KEYWORDS):
                continue

            updates = inc.get("updates") or []
            latest = (updates[0].get("text") if updates else None) or desc
            status = "resolved" if inc.get("end") else detect_status(latest)

            items.append(
                Item(
                    id=str(inc["id"]),
                    namespace="status",
                    source=source.key,
                    title=desc,
                    link=f"https://status.cloud.google.com/incidents/{inc['id']}",
                    body=clean_text(latest)[:500],
                    published_at=_parse_when(inc.get("modified")),
                    status=status,
                    metadata={"number": inc.get("number")},
                )
            )
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed incident from %s: %s", source.name, e)
    return items


FEED_PARSERS: dict[str, Callable[[str, SourceDescriptor], list[Item]]] = {
    "atom": parse_atom_feed,
    "rss": parse_rss_feed,
    "gcloud-json": parse_gcloud_incidents,
}


def fetch_status_feed(source: SourceDescriptor, timeout: float = 20, user_agent: str = USER_AGENT) -> list[Item]:
    parser = FEED_PARSERS.get(source.format)
    if parser is None:
        logger.error("No parser for feed format %r (%s)", source.format, source.name)
        return []

    try:
        r = requests.get(source.url, headers={"User-Agent": user_agent, "Accept": ACCEPT}, timeout=timeout)
    except requests.RequestException as e:
        logger.error("Error fetching %s: %s", source.name, e)
        return []

    if not r.ok:
        logger.error("Failed to fetch %s: %s", source.name, r.status_code)
        return []

    return parser(r.text, source)
