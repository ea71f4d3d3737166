"""Threaded comments on ideas.

A comment is Active until flagged (Flagged) and gone once deleted; deleting a
comment removes every reply beneath it. Creation and deletion bump the idea's
``comment_count`` after the rows themselves have been written.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from comment_tree import build_tree, collect_descendants
from counters import CounterReconciler
from database import COMMENTS, IDEAS, create_document, get_documents, parse_object_id, serialize_doc
from errors import AccessDenied, InvalidReference, NotFound, store_errors
from schemas import Comment, CommentUpdate, validate_document

logger = logging.getLogger(__name__)


class DiscussionService:
    def __init__(self, db, reconciler: Optional[CounterReconciler] = None):
        self.ideas = db[IDEAS]
        self.comments = db[COMMENTS]
        self.reconciler = reconciler or CounterReconciler(self.ideas)

    def _get_comment(self, comment_id) -> Dict[str, Any]:
        oid = parse_object_id(comment_id, "comment")
        with store_errors("fetch comment"):
            comment = self.comments.find_one({"_id": oid})
        if not comment:
            raise NotFound("Comment not found")
        return comment

    def _idea_exists(self, idea_oid) -> bool:
        with store_errors("fetch idea"):
            return self.ideas.find_one({"_id": idea_oid}, {"_id": True}) is not None

    def list_for_idea(self, idea_id: str) -> Dict[str, Any]:
        oid = parse_object_id(idea_id, "idea")
        if not self._idea_exists(oid):
            raise NotFound("Idea not found")
        with store_errors("fetch comments"):
            rows = get_documents(self.comments, {"idea_id": oid}, sort=[("created_at", ASCENDING), ("_id", ASCENDING)])
        flat = [serialize_doc(r) for r in rows]
        return {"success": True, "data": build_tree(flat), "count": len(flat)}

    def create(self, actor_id: str, idea_id: str, content: str, parent_comment_id: Optional[str] = None) -> Dict[str, Any]:
        idea_oid = parse_object_id(idea_id, "idea")
        parent_oid = parse_object_id(parent_comment_id, "parent comment") if parent_comment_id else None
        comment = validate_document(
            Comment, idea_id=idea_oid, user_id=actor_id, parent_comment_id=parent_oid, content=content
        )

        if not self._idea_exists(idea_oid):
            raise InvalidReference("Idea not found")
        if parent_oid is not None:
            with store_errors("fetch parent comment"):
                parent = self.comments.find_one({"_id": parent_oid}, {"idea_id": True})
            if not parent:
                raise InvalidReference("Parent comment not found")
            if parent["idea_id"] != idea_oid:
                raise InvalidReference("Parent comment belongs to a different idea")

        with store_errors("create comment"):
            doc = create_document(self.comments, comment)
        logger.info("Comment %s created on idea %s by %s", doc["_id"], idea_oid, actor_id)

        self.reconciler.bump(idea_oid, "comment", 1)
        message = "Reply created successfully" if parent_oid else "Comment created successfully"
        return {"success": True, "message": message, "data": serialize_doc(doc)}

    def reply(self, actor_id: str, parent_comment_id: str, content: str) -> Dict[str, Any]:
        parent_oid = parse_object_id(parent_comment_id, "comment")
        with store_errors("fetch parent comment"):
            parent = self.comments.find_one({"_id": parent_oid}, {"idea_id": True})
        if not parent:
            raise InvalidReference("Parent comment not found")
        return self.create(actor_id, parent["idea_id"], content, parent_comment_id=parent_oid)

    def edit(self, actor_id: str, comment_id: str, content: str) -> Dict[str, Any]:
        update = validate_document(CommentUpdate, content=content)
        comment = self._get_comment(comment_id)
        if comment["user_id"] != actor_id:
            raise AccessDenied("You can only edit your own comments")

        with store_errors("update comment"):
            updated = self.comments.find_one_and_update(
                {"_id": comment["_id"]},
                {"$set": {"content": update.content, "updated_at": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            raise NotFound("Comment not found")
        return {"success": True, "message": "Comment updated successfully", "data": serialize_doc(updated)}

    def flag(self, actor_id: str, comment_id: str) -> Dict[str, Any]:
        comment = self._get_comment(comment_id)
        if not comment.get("flagged_for_moderation"):
            with store_errors("flag comment"):
                self.comments.update_one(
                    {"_id": comment["_id"]},
                    {"$set": {"flagged_for_moderation": True, "updated_at": datetime.now(timezone.utc)}},
                )
            logger.info("Comment %s flagged for moderation by %s", comment["_id"], actor_id)
        return {"success": True, "message": "Comment flagged for moderation"}

    def delete(self, actor_id: str, comment_id: str) -> Dict[str, Any]:
        comment = self._get_comment(comment_id)
        if comment["user_id"] != actor_id:
            raise AccessDenied("You can only delete your own comments")

        idea_oid = comment["idea_id"]
        with store_errors("delete comment"):
            rows = [
                {"id": r["_id"], "parent_comment_id": r.get("parent_comment_id")}
                for r in self.comments.find({"idea_id": idea_oid}, {"parent_comment_id": True})
            ]
            ids = [comment["_id"], *collect_descendants(rows, comment["_id"])]
            deleted = self.comments.delete_many({"_id": {"$in": ids}}).deleted_count
        if not deleted:
            raise NotFound("Comment not found")

        # Best effort from here on
        deleted += self._sweep_late_replies(ids)
        logger.info("Comment %s deleted by %s with %d replies", comment["_id"], actor_id, deleted - 1)

        self.reconciler.bump(idea_oid, "comment", -deleted)
        return {
            "success": True,
            "message": f"Comment and {deleted - 1} nested replies deleted successfully",
            "deleted_count": deleted,
        }

    def _sweep_late_replies(self, ids: List[Any]) -> int:
        """Delete replies written under ``ids`` after the descendant scan."""
        deleted = 0
        frontier = ids
        try:
            while frontier:
                late = [r["_id"] for r in self.comments.find({"parent_comment_id": {"$in": frontier}}, {"_id": True})]
                if not late:
                    break
                deleted += self.comments.delete_many({"_id": {"$in": late}}).deleted_count
                frontier = late
        except PyMongoError as e:
            logger.warning("Sweep for late replies under %s stopped: %s", ids[0], e)
        return deleted

    def list_for_user(self, user_id: str) -> Dict[str, Any]:
        with store_errors("fetch user comments"):
            rows = get_documents(
                self.comments,
                {"user_id": user_id, "flagged_for_moderation": False},
                sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
            )
            titles = self._idea_titles({r["idea_id"] for r in rows})
        data = []
        for row in rows:
            item = serialize_doc(row)
            item["idea_title"] = titles.get(row["idea_id"])
            data.append(item)
        return {"success": True, "data": data, "count": len(data)}

    def _idea_titles(self, idea_ids) -> Dict[Any, str]:
        if not idea_ids:
            return {}
        return {i["_id"]: i["title"] for i in self.ideas.find({"_id": {"$in": list(idea_ids)}}, {"title": True})}
