"""Weak-topic scoring.

The priority of a weak topic is::

    score = (6 - average_rating) * importance / days_until_exam

A lower average understanding rating, a more important topic and a closer exam
all push the score up. ``days_until_exam`` is clamped to at least one day so an
exam tomorrow (or a stale plan past its exam) never divides by zero.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from .models import Session, SessionStatus, Topic

WEAK_RATING_THRESHOLD = 3


def priority_score(average_rating: float, importance: float, days_until_exam: int) -> float:
    days = max(int(days_until_exam), 1)
    return (6.0 - float(average_rating)) * float(importance) / days


def topic_ratings(sessions: Iterable[Session], topic_id: str) -> List[int]:
    return [
        session.understanding_rating
        for session in sessions
        if session.topic_id == topic_id
        and session.status is SessionStatus.COMPLETED
        and session.understanding_rating is not None
    ]


def average_rating(ratings: Iterable[int]) -> Optional[float]:
    values = list(ratings)
    if not values:
        return None
    return sum(values) / len(values)


def is_weak_rating(rating: Optional[int]) -> bool:
    return rating is not None and rating < WEAK_RATING_THRESHOLD


def boost_order_key(topic: Topic, score: float) -> Tuple[float, int, str]:
    """Sort key: higher score first, then higher importance, then topic id."""
    return (-score, -topic.effective_importance, topic.topic_id)


__all__ = [
    "WEAK_RATING_THRESHOLD",
    "average_rating",
    "boost_order_key",
    "is_weak_rating",
    "priority_score",
    "topic_ratings",
]
