"""Denormalized engagement counters on ideas.

``comment_count`` and ``project_count`` are a cache of live row counts. They
are bumped after the row mutation they accompany has committed, a failed bump
is logged and never reaches the caller, and ``recompute_counters`` brings the
cache back in line with the source rows.
"""

import logging
import threading
import weakref
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import OperationFailure, PyMongoError

from config import COUNTER_ATOMIC
from database import IDEAS, COMMENTS, PROJECT_LINKS

logger = logging.getLogger(__name__)

COUNTER_FIELDS = {
    "comment": "comment_count",
    "project": "project_count",
    "view": "view_count",
}


class _IdeaLock:
    """Process-local per-idea lock. Unused ones drop out of ``_locks``."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


_locks: "weakref.WeakValueDictionary[Any, _IdeaLock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(idea_id) -> _IdeaLock:
    with _locks_guard:
        lock = _locks.get(idea_id)
        if lock is None:
            lock = _locks[idea_id] = _IdeaLock()
        return lock


class CounterReconciler:
    """Applies ``field = max(field + delta, floor)`` to a single idea.

    The atomic path only issues conditional single-document updates, so the
    arithmetic happens inside the store and concurrent bumps cannot lose each
    other. The fallback path reads, computes and writes back. It is serialized
    per idea inside this process only; two processes (or a process and the
    atomic path) can still lose an update between the read and the write.
    Use it when the store rejects the conditional update operators, and let
    ``recompute_counters`` repair any drift.
    """

    def __init__(self, collection, atomic: bool = COUNTER_ATOMIC, floor: int = 0, max_attempts: int = 5):
        self.collection = collection
        self.atomic = atomic
        self.floor = floor
        self.max_attempts = max_attempts

    def bump(self, idea_id, field: str, delta: int) -> Optional[int]:
        """Returns the new counter value, or None when the bump did not happen."""
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter {field!r}")
        name = COUNTER_FIELDS[field]
        try:
            if self.atomic:
                try:
                    return self._bump_atomic(idea_id, name, delta)
                except OperationFailure as e:
                    logger.warning("Atomic update of %s unavailable (%s); using read-modify-write", name, e)
            return self._bump_fallback(idea_id, name, delta)
        except PyMongoError as e:
            logger.warning("Could not apply %+d to %s of idea %s: %s", delta, name, idea_id, e)
            return None

    def _bump_atomic(self, idea_id, name: str, delta: int) -> Optional[int]:
        # field + delta >= floor  <=>  field >= floor - delta
        threshold = self.floor - delta
        attempts = (
            ({name: {"$gte": threshold}}, {"$inc": {name: delta}}),
            ({name: {"$lt": threshold}}, {"$set": {name: self.floor}}),
            ({name: {"$exists": False}}, {"$set": {name: max(delta, self.floor)}}),
        )
        for _ in range(self.max_attempts):
            for condition, update in attempts:
                doc = self.collection.find_one_and_update(
                    {"_id": idea_id, **condition},
                    update,
                    projection={name: True},
                    return_document=ReturnDocument.AFTER,
                )
                if doc is not None:
                    return doc[name]
            if self.collection.find_one({"_id": idea_id}, {"_id": True}) is None:
                logger.warning("Idea %s no longer exists; %s not updated", idea_id, name)
                return None
        logger.warning("Gave up updating %s of idea %s after %d contended attempts", name, idea_id, self.max_attempts)
        return None

    def _bump_fallback(self, idea_id, name: str, delta: int) -> Optional[int]:
        with _lock_for(idea_id):
            doc = self.collection.find_one({"_id": idea_id}, {name: True})
            if doc is None:
                logger.warning("Idea %s no longer exists; %s not updated", idea_id, name)
                return None
            value = max((doc.get(name) or 0) + delta, self.floor)
            self.collection.update_one({"_id": idea_id}, {"$set": {name: value}})
            return value


def _live_counts(collection, idea_filter: Dict[str, Any]) -> Dict[Any, int]:
    pipeline = [
        {"$match": idea_filter},
        {"$group": {"_id": "$idea_id", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in collection.aggregate(pipeline)}


def recompute_counters(db, idea_id=None) -> int:
    """Rewrite cached comment/project counts from the source rows.

    Returns how many ideas had a stale counter.
    """
    idea_query = {"_id": idea_id} if idea_id is not None else {}
    child_query = {"idea_id": idea_id} if idea_id is not None else {}
    comments = _live_counts(db[COMMENTS], child_query)
    projects = _live_counts(db[PROJECT_LINKS], child_query)

    corrected = 0
    for idea in db[IDEAS].find(idea_query, {"comment_count": True, "project_count": True}):
        expected = {
            "comment_count": comments.get(idea["_id"], 0),
            "project_count": projects.get(idea["_id"], 0),
        }
        if any(idea.get(k) != v for k, v in expected.items()):
            logger.info("Correcting counters of idea %s: %s -> %s", idea["_id"],
                        {k: idea.get(k) for k in expected}, expected)
            db[IDEAS].update_one({"_id": idea["_id"]}, {"$set": expected})
            corrected += 1
    return corrected
