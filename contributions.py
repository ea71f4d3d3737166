import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument

from config import CAMPAIGN_GOAL, CAMPAIGN_TOOLS
from counters import CounterReconciler
from database import IDEAS, PROJECT_LINKS, create_document, get_documents, parse_object_id, serialize_doc
from errors import AccessDenied, InvalidReference, NotFound, store_errors
from schemas import ProjectLink, ProjectUpdate, validate_document

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def normalize_tool(name: str) -> str:
    return name.strip().lower()


class ContributionService:
    """Project links users submit against ideas, and the campaign statistics built from them."""

    def __init__(
        self,
        db,
        reconciler: Optional[CounterReconciler] = None,
        campaign_goal: int = CAMPAIGN_GOAL,
        campaign_tools: Optional[List[str]] = None,
    ):
        self.ideas = db[IDEAS]
        self.projects = db[PROJECT_LINKS]
        self.reconciler = reconciler or CounterReconciler(self.ideas)
        self.campaign_goal = campaign_goal
        self.campaign_tools = [normalize_tool(t) for t in (campaign_tools if campaign_tools is not None else CAMPAIGN_TOOLS)]

    def _get_owned_project(self, actor_id: str, project_id: str, verb: str) -> Dict[str, Any]:
        oid = parse_object_id(project_id, "project")
        with store_errors("fetch project link"):
            project = self.projects.find_one({"_id": oid})
        if not project:
            raise NotFound("Project link not found")
        if project["user_id"] != actor_id:
            raise AccessDenied(f"You do not have permission to {verb} this project link")
        return project

    def list_for_idea(self, idea_id: str) -> Dict[str, Any]:
        oid = parse_object_id(idea_id, "idea")
        with store_errors("fetch project links"):
            rows = get_documents(self.projects, {"idea_id": oid}, sort=NEWEST_FIRST)
        data = [serialize_doc(r) for r in rows]
        return {"success": True, "data": data, "count": len(data)}

    def list_for_user(self, user_id: str) -> Dict[str, Any]:
        with store_errors("fetch user projects"):
            rows = get_documents(self.projects, {"user_id": user_id}, sort=NEWEST_FIRST)
            idea_ids = list({r["idea_id"] for r in rows})
            titles = {i["_id"]: i["title"] for i in self.ideas.find({"_id": {"$in": idea_ids}}, {"title": True})} if idea_ids else {}
        data = []
        for row in rows:
            item = serialize_doc(row)
            item["idea_title"] = titles.get(row["idea_id"])
            data.append(item)
        return {"success": True, "data": data, "count": len(data)}

    def submit(
        self,
        actor_id: str,
        idea_id: str,
        title: str,
        url: str,
        description: Optional[str] = None,
        tools_used: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        idea_oid = parse_object_id(idea_id, "idea")
        project = validate_document(
            ProjectLink,
            idea_id=idea_oid,
            user_id=actor_id,
            title=title,
            url=url,
            description=description or None,
            tools_used=tools_used or [],
        )
        with store_errors("fetch idea"):
            idea = self.ideas.find_one({"_id": idea_oid}, {"_id": True})
        if not idea:
            raise InvalidReference("Idea not found")

        with store_errors("create project link"):
            doc = create_document(self.projects, project)
        logger.info("Project link %s submitted for idea %s by %s", doc["_id"], idea_oid, actor_id)

        self.reconciler.bump(idea_oid, "project", 1)
        return {"success": True, "message": "Project link created successfully", "data": serialize_doc(doc)}

    def update(self, actor_id: str, project_id: str, **fields) -> Dict[str, Any]:
        changes = validate_document(ProjectUpdate, **fields).changes()
        project = self._get_owned_project(actor_id, project_id, "update")

        changes["updated_at"] = datetime.now(timezone.utc)
        with store_errors("update project link"):
            updated = self.projects.find_one_and_update(
                {"_id": project["_id"]},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            raise NotFound("Project link not found")
        return {"success": True, "message": "Project link updated successfully", "data": serialize_doc(updated)}

    def delete(self, actor_id: str, project_id: str) -> Dict[str, Any]:
        project = self._get_owned_project(actor_id, project_id, "delete")
        with store_errors("delete project link"):
            deleted = self.projects.delete_one({"_id": project["_id"]}).deleted_count
        if deleted:
            logger.info("Project link %s deleted by %s", project["_id"], actor_id)
            self.reconciler.bump(project["idea_id"], "project", -1)
        return {"success": True, "message": "Project link deleted successfully"}

    def stats(self) -> Dict[str, Any]:
        """Campaign progress, computed live from the project rows."""
        with store_errors("fetch project statistics"):
            rows = list(self.projects.find({}, {"tools_used": True, "idea_id": True}))
            idea_ids = list({r["idea_id"] for r in rows})
            categories_by_idea = (
                {i["_id"]: i.get("category") for i in self.ideas.find({"_id": {"$in": idea_ids}}, {"category": True})}
                if idea_ids
                else {}
            )

        tools = Counter()
        categories = Counter()
        for row in rows:
            for tool in row.get("tools_used") or []:
                name = normalize_tool(tool)
                if name:
                    tools[name] += 1
            category = categories_by_idea.get(row["idea_id"])
            if category:
                categories[category] += 1

        breakdown = {tool: tools.get(tool, 0) for tool in self.campaign_tools}
        breakdown["other"] = sum(count for tool, count in tools.items() if tool not in self.campaign_tools)

        total = len(rows)
        progress = (total / self.campaign_goal) * 100 if self.campaign_goal > 0 else 0.0
        return {
            "success": True,
            "data": {
                "total_projects": total,
                "campaign_goal": self.campaign_goal,
                "progress_percentage": progress,
                "tools": {"breakdown": breakdown, "all_tools": dict(tools)},
                "categories": dict(categories),
            },
        }
