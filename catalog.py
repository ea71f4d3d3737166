import logging
import math
import re
from typing import Any, Dict, Optional

from bson.son import SON
from pymongo import ASCENDING, DESCENDING

from access import Identity, apply_tier, check_tier
from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from counters import CounterReconciler
from database import IDEAS, get_documents, parse_object_id, serialize_doc
from errors import NotFound, ValidationError, store_errors
from schemas import DIFFICULTY_RANK

logger = logging.getLogger(__name__)

SORTS = {
    "popular": [("view_count", DESCENDING), ("created_at", DESCENDING)],
    "recent": [("created_at", DESCENDING)],
    "difficulty": [("difficulty_rank", ASCENDING), ("created_at", DESCENDING)],
    "title": [("title", ASCENDING)],
}
DEFAULT_SORT = "recent"
FREE_TIER_PREVIEW = 5


def difficulty_rank_expr() -> Dict[str, Any]:
    """Ordinal of ``difficulty``; unknown or missing values rank last."""
    expr: Any = len(DIFFICULTY_RANK) + 1
    for name, rank in sorted(DIFFICULTY_RANK.items(), key=lambda kv: kv[1], reverse=True):
        expr = {"$cond": [{"$eq": ["$difficulty", name]}, rank, expr]}
    return expr


def clamp_limit(limit: int) -> int:
    return min(max(limit, 1), MAX_PAGE_SIZE)


def build_pagination(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit)
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def search_filter(term: str) -> Dict[str, Any]:
    """Case-insensitive substring match on title, description, tags or tools."""
    pattern = {"$regex": re.escape(term), "$options": "i"}
    return {"$or": [{"title": pattern}, {"description": pattern}, {"tags": pattern}, {"tools": pattern}]}


class CatalogService:
    def __init__(self, db, reconciler: Optional[CounterReconciler] = None):
        self.ideas = db[IDEAS]
        self.reconciler = reconciler or CounterReconciler(self.ideas)

    def _page(self, query, sort, page, limit, action):
        if page < 1:
            raise ValidationError("Page must be a positive integer")
        limit = clamp_limit(limit)
        skip = (page - 1) * limit
        with store_errors(action):
            total = self.ideas.count_documents(query)
            if sort == "difficulty":
                docs = self._ranked_by_difficulty(query, skip, limit)
            else:
                docs = get_documents(self.ideas, query, sort=SORTS[sort], skip=skip, limit=limit)
        return [serialize_doc(d) for d in docs], build_pagination(total, page, limit)

    def _ranked_by_difficulty(self, query, skip, limit):
        pipeline = [
            {"$match": query},
            {"$addFields": {"difficulty_rank": difficulty_rank_expr()}},
            {"$sort": SON(SORTS["difficulty"])},
            {"$skip": skip},
            {"$limit": limit},
        ]
        docs = list(self.ideas.aggregate(pipeline))
        for doc in docs:
            doc.pop("difficulty_rank", None)
        return docs

    def list_ideas(
        self,
        identity: Identity,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        free_tier_only: bool = False,
    ) -> Dict[str, Any]:
        sort = sort or DEFAULT_SORT
        if sort not in SORTS:
            raise ValidationError("Sort must be popular, recent, difficulty, or title")
        if difficulty and difficulty not in DIFFICULTY_RANK:
            raise ValidationError("Difficulty must be Beginner, Intermediate, or Advanced")
        search = search.strip() if search else None
        category = category.strip() if category else None

        query: Dict[str, Any] = {"free_tier": True} if free_tier_only else {}
        query = apply_tier(query, identity)
        if category:
            query["category"] = category
        if difficulty:
            query["difficulty"] = difficulty
        if search:
            query.update(search_filter(search))
        logger.debug("Listing ideas for %s caller: %s sort=%s page=%s limit=%s", identity.tier, query, sort, page, limit)

        data, pagination = self._page(query, sort, page, limit, "fetch ideas")
        return {
            "success": True,
            "data": data,
            "pagination": pagination,
            "filters": {
                "category": category,
                "difficulty": difficulty,
                "search": search,
                "sort": sort,
                "tier": identity.tier,
            },
        }

    def list_free_tier(self) -> Dict[str, Any]:
        with store_errors("fetch free-tier ideas"):
            docs = get_documents(self.ideas, {"free_tier": True}, sort=SORTS["title"], limit=FREE_TIER_PREVIEW)
        data = [serialize_doc(d) for d in docs]
        return {"success": True, "data": data, "count": len(data)}

    def search(self, identity: Identity, q: Optional[str], page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        term = (q or "").strip()
        if not term:
            raise ValidationError("Search query (q) is required")
        query = apply_tier({}, identity)
        query.update(search_filter(term))
        data, pagination = self._page(query, "popular", page, limit, "search ideas")
        return {"success": True, "data": data, "pagination": pagination, "query": term}

    def list_by_category(self, identity: Identity, category: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        category = (category or "").strip()
        if not category:
            raise ValidationError("Category parameter is required")
        query = apply_tier({}, identity)
        query["category"] = category
        data, pagination = self._page(query, "recent", page, limit, "fetch ideas by category")
        return {"success": True, "data": data, "pagination": pagination, "category": category}

    def get_idea(self, identity: Identity, idea_id: str) -> Dict[str, Any]:
        oid = parse_object_id(idea_id, "idea")
        with store_errors("fetch idea"):
            idea = self.ideas.find_one({"_id": oid})
        if not idea:
            raise NotFound("Idea not found")
        access = check_tier(idea, identity)
        return {"success": True, "data": serialize_doc(idea), "access": access}

    def increment_view(self, idea_id: str) -> Dict[str, Any]:
        oid = parse_object_id(idea_id, "idea")
        with store_errors("fetch idea"):
            idea = self.ideas.find_one({"_id": oid}, {"view_count": True})
        if not idea:
            raise NotFound("Idea not found")
        view_count = self.reconciler.bump(oid, "view", 1)
        if view_count is None:
            view_count = idea.get("view_count", 0)
        return {
            "success": True,
            "data": {"id": str(oid), "view_count": view_count},
            "message": "View count incremented successfully",
        }
