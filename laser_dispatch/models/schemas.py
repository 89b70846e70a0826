from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class LedgerStatus(str, Enum):
    DELIVERED = "delivered"
    REJECTED = "rejected"


class DeliveryOutcome(str, Enum):
    SUCCESS = "success"
    FATAL_REJECTION = "fatal_rejection"  # sink will never accept this payload
    TRANSIENT_FAILURE = "transient_failure"  # worth another try next run


class RunState(str, Enum):
    SCHEDULING = "scheduling"
    FETCHING = "fetching"
    DEDUPING = "deduping"
    DELIVERING = "delivering"
    DONE = "done"


class Item(BaseModel):
    """One piece of content from a source (a commit, a post, a status update)."""

    model_config = ConfigDict(frozen=True)

    id: str
    namespace: str
    source: str
    title: str
    link: str = ""
    body: str = ""
    published_at: datetime | None = None

    score: int | None = None
    comments: int | None = None

    author: str | None = None
    author_url: str | None = None
    avatar_url: str | None = None
    image_url: str | None = None

    # status feeds only: the same incident is re-announced at each transition
    status: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ledger_key(self) -> str:
        if self.status:
            return f"{self.namespace}:{self.id}:{self.status}"
        return f"{self.namespace}:{self.id}"


class RunSummary(BaseModel):
    pipeline: str
    state: RunState = RunState.SCHEDULING

    sources_total: int = 0
    sources_selected: int = 0
    items_fetched: int = 0

    posted: int = 0
    skipped: int = 0
    stale: int = 0
    deferred: int = 0
    failed_fatal: int = 0
    failed_transient: int = 0

    @computed_field
    @property
    def failed(self) -> int:
        return self.failed_fatal + self.failed_transient
