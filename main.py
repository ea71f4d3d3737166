import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from access import Identity, get_identity, require_user
from catalog import CatalogService
from config import CORS_ORIGINS, DEFAULT_PAGE_SIZE, PORT, configure_logging
from contributions import ContributionService
from database import ensure_indexes, get_db, ping
from discussion import DiscussionService
from errors import register_exception_handlers
from schemas import CommentCreate, CommentUpdate, ProjectCreate, ProjectUpdate, ReplyCreate

configure_logging()
logger = logging.getLogger("ideahub")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="IdeaHub API", lifespan=lifespan)

# Note: allow_credentials=False when using wildcard origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


# Services

def get_catalog(db=Depends(get_db)) -> CatalogService:
    return CatalogService(db)


def get_discussion(db=Depends(get_db)) -> DiscussionService:
    return DiscussionService(db)


def get_contributions(db=Depends(get_db)) -> ContributionService:
    return ContributionService(db)


# Health
@app.get("/")
def read_root():
    return {"message": "IdeaHub API running"}


@app.get("/health")
def health(db=Depends(get_db)):
    connected = ping(db)
    return {
        "status": "healthy" if connected else "degraded",
        "database": "connected" if connected else "unavailable",
    }


# Ideas Endpoints
@app.get("/api/ideas")
def list_ideas(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    free_tier: bool = False,
    identity: Identity = Depends(get_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.list_ideas(
        identity,
        page=page,
        limit=limit,
        category=category,
        difficulty=difficulty,
        search=search,
        sort=sort,
        free_tier_only=free_tier,
    )


@app.get("/api/ideas/free-tier")
def list_free_tier_ideas(catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_free_tier()


@app.get("/api/ideas/search")
def search_ideas(
    q: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    identity: Identity = Depends(get_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.search(identity, q, page=page, limit=limit)


@app.get("/api/ideas/category/{category}")
def list_ideas_by_category(
    category: str,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    identity: Identity = Depends(get_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.list_by_category(identity, category, page=page, limit=limit)


@app.get("/api/ideas/{idea_id}")
def get_idea(idea_id: str, identity: Identity = Depends(get_identity), catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_idea(identity, idea_id)


@app.post("/api/ideas/{idea_id}/view")
@app.patch("/api/ideas/{idea_id}/view")
def increment_view(idea_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.increment_view(idea_id)


# Comments Endpoints
@app.get("/api/ideas/{idea_id}/comments")
def list_comments(idea_id: str, discussion: DiscussionService = Depends(get_discussion)):
    return discussion.list_for_idea(idea_id)


@app.post("/api/ideas/{idea_id}/comments", status_code=201)
def add_comment(
    idea_id: str,
    payload: CommentCreate,
    identity: Identity = Depends(get_identity),
    discussion: DiscussionService = Depends(get_discussion),
):
    actor = require_user(identity)
    return discussion.create(actor, idea_id, payload.content, parent_comment_id=payload.parent_comment_id)


@app.post("/api/comments/{comment_id}/reply", status_code=201)
def reply_to_comment(
    comment_id: str,
    payload: ReplyCreate,
    identity: Identity = Depends(get_identity),
    discussion: DiscussionService = Depends(get_discussion),
):
    actor = require_user(identity)
    return discussion.reply(actor, comment_id, payload.content)


@app.patch("/api/comments/{comment_id}")
@app.put("/api/comments/{comment_id}")
def edit_comment(
    comment_id: str,
    payload: CommentUpdate,
    identity: Identity = Depends(get_identity),
    discussion: DiscussionService = Depends(get_discussion),
):
    actor = require_user(identity)
    return discussion.edit(actor, comment_id, payload.content)


@app.delete("/api/comments/{comment_id}")
def delete_comment(
    comment_id: str,
    identity: Identity = Depends(get_identity),
    discussion: DiscussionService = Depends(get_discussion),
):
    actor = require_user(identity)
    return discussion.delete(actor, comment_id)


@app.post("/api/comments/{comment_id}/flag")
def flag_comment(
    comment_id: str,
    identity: Identity = Depends(get_identity),
    discussion: DiscussionService = Depends(get_discussion),
):
    actor = require_user(identity)
    return discussion.flag(actor, comment_id)


# Projects Endpoints
@app.get("/api/ideas/{idea_id}/projects")
def list_idea_projects(idea_id: str, contributions: ContributionService = Depends(get_contributions)):
    return contributions.list_for_idea(idea_id)


@app.get("/api/projects/stats")
def project_stats(contributions: ContributionService = Depends(get_contributions)):
    return contributions.stats()


@app.post("/api/projects", status_code=201)
def submit_project(
    payload: ProjectCreate,
    identity: Identity = Depends(get_identity),
    contributions: ContributionService = Depends(get_contributions),
):
    actor = require_user(identity)
    return contributions.submit(
        actor,
        payload.idea_id,
        payload.title,
        payload.url,
        description=payload.description,
        tools_used=payload.tools_used,
    )


@app.patch("/api/projects/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    identity: Identity = Depends(get_identity),
    contributions: ContributionService = Depends(get_contributions),
):
    actor = require_user(identity)
    return contributions.update(actor, project_id, **payload.changes())


@app.delete("/api/projects/{project_id}")
def delete_project(
    project_id: str,
    identity: Identity = Depends(get_identity),
    contributions: ContributionService = Depends(get_contributions),
):
    actor = require_user(identity)
    return contributions.delete(actor, project_id)


# Users Endpoints
@app.get("/api/users/{user_id}/comments")
def list_user_comments(user_id: str, discussion: DiscussionService = Depends(get_discussion)):
    return discussion.list_for_user(user_id)


@app.get("/api/users/{user_id}/projects")
def list_user_projects(user_id: str, contributions: ContributionService = Depends(get_contributions)):
    return contributions.list_for_user(user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
