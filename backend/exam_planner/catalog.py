"""Topic catalog construction and revisioning."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import ValidationError
from .models import Topic, TopicCatalog

logger = logging.getLogger(__name__)

# Baseline study hours for a topic of typical length, keyed by complexity.
BASE_HOURS_BY_COMPLEXITY: Dict[int, float] = {1: 1.0, 2: 1.5, 3: 2.5, 4: 3.5, 5: 5.0}
REFERENCE_SOURCE_WORDS = 2000
MIN_LENGTH_MULTIPLIER = 0.5
MAX_LENGTH_MULTIPLIER = 3.0


class TopicInput(BaseModel):
    """Catalog entry as delivered by the external extraction pipeline."""

    topic_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    complexity: int = Field(ge=1, le=5)
    estimated_hours: Optional[float] = Field(default=None, gt=0.0)
    source_length: Optional[int] = Field(default=None, ge=0)
    importance: Optional[int] = Field(default=None, ge=1, le=5)


def estimate_topic_hours(complexity: int, source_length: Optional[int] = None) -> float:
    """Estimate study hours from complexity, scaled by source length in words."""
    if complexity not in BASE_HOURS_BY_COMPLEXITY:
        raise ValidationError(f"Complexity must be between 1 and 5, got {complexity}.", field="complexity")
    base = BASE_HOURS_BY_COMPLEXITY[complexity]
    if not source_length:
        return base
    multiplier = source_length / REFERENCE_SOURCE_WORDS
    multiplier = min(max(multiplier, MIN_LENGTH_MULTIPLIER), MAX_LENGTH_MULTIPLIER)
    # Quarter-hour resolution keeps estimates readable.
    return max(math.ceil(base * multiplier * 4) / 4, 0.25)


def _to_topic(entry: TopicInput | Topic) -> Topic:
    if isinstance(entry, Topic):
        return entry.model_copy(deep=True)
    hours = entry.estimated_hours
    if hours is None:
        hours = estimate_topic_hours(entry.complexity, entry.source_length)
    return Topic(
        topic_id=entry.topic_id.strip(),
        name=entry.name.strip(),
        complexity=entry.complexity,
        estimated_hours=hours,
        importance=entry.importance,
        source_length=entry.source_length,
    )


def build_catalog(
    entries: Iterable[TopicInput | Topic],
    *,
    owner: str = "",
    catalog_id: Optional[str] = None,
) -> TopicCatalog:
    topics: List[Topic] = []
    seen: set[str] = set()
    for entry in entries:
        topic = _to_topic(entry)
        if not topic.topic_id:
            raise ValidationError("Topic ids cannot be blank.", field="topic_id")
        if topic.topic_id in seen:
            raise ValidationError(f"Duplicate topic id '{topic.topic_id}' in catalog.", field="topic_id")
        seen.add(topic.topic_id)
        topics.append(topic)
    if not topics:
        raise ValidationError("A topic catalog needs at least one topic.", field="topics")

    catalog = TopicCatalog(owner=owner, topics=topics)
    if catalog_id:
        catalog.catalog_id = catalog_id
    logger.debug("Built catalog %s with %d topics", catalog.catalog_id, len(topics))
    return catalog


def revise_catalog(catalog: TopicCatalog, updated: Sequence[Topic]) -> TopicCatalog:
    """Return the next catalog revision with ``updated`` topics replacing their originals.

    The input catalog is left untouched; if nothing differs it is returned as a copy
    with the same revision number.
    """
    replacements = {topic.topic_id: topic for topic in updated}
    unknown = set(replacements) - {topic.topic_id for topic in catalog.topics}
    if unknown:
        raise ValidationError(f"Unknown topic ids: {', '.join(sorted(unknown))}.", field="topic_id")

    topics = [replacements.get(topic.topic_id, topic).model_copy(deep=True) for topic in catalog.topics]
    if topics == catalog.topics:
        return catalog.model_copy(deep=True)
    return catalog.model_copy(
        update={
            "topics": topics,
            "revision": catalog.revision + 1,
            "created_at": datetime.now(timezone.utc),
        },
        deep=True,
    )


def set_complexity(catalog: TopicCatalog, topic_id: str, complexity: int) -> TopicCatalog:
    topic = catalog.get(topic_id)
    if topic is None:
        raise ValidationError(f"Unknown topic id '{topic_id}'.", field="topic_id")
    if complexity not in BASE_HOURS_BY_COMPLEXITY:
        raise ValidationError(f"Complexity must be between 1 and 5, got {complexity}.", field="complexity")
    return revise_catalog(catalog, [topic.model_copy(update={"complexity": complexity})])


__all__ = [
    "BASE_HOURS_BY_COMPLEXITY",
    "TopicInput",
    "build_catalog",
    "estimate_topic_hours",
    "revise_catalog",
    "set_complexity",
]
