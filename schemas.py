"""
Database Schemas

Pydantic models for the MongoDB collections and the request bodies the API accepts.

Collections:
- Idea -> "idea"
- Comment -> "comment"
- ProjectLink -> "project_link"
"""

from typing import Annotated, List, Literal, Optional

import pydantic
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, StringConstraints, field_serializer, model_validator

from errors import ValidationError

Difficulty = Literal["Beginner", "Intermediate", "Advanced"]

DIFFICULTY_RANK = {"Beginner": 1, "Intermediate": 2, "Advanced": 3}

MAX_COMMENT_LENGTH = 2000
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 2000

CommentBody = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_COMMENT_LENGTH)]
ProjectTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_TITLE_LENGTH)]
ProjectDescription = Annotated[str, StringConstraints(strip_whitespace=True, max_length=MAX_DESCRIPTION_LENGTH)]


def validate_document(model, **fields):
    """Build ``model`` from ``fields``, reporting bad input as a ValidationError."""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{field}: {first['msg']}" if field else first["msg"]) from e


# Stored documents

class Idea(BaseModel):
    """
    Catalog entry
    Collection name: "idea"
    """
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH, description="Idea title")
    description: str = Field(..., min_length=1, description="What to build")
    category: str = Field(..., min_length=1, description="Category grouping")
    difficulty: Difficulty = Field("Beginner", description="Beginner, Intermediate or Advanced")
    tools: List[str] = Field(default_factory=list, description="Recommended tools")
    tags: List[str] = Field(default_factory=list, description="Search tags")
    monetization_potential: Optional[str] = None
    estimated_build_time: Optional[str] = None
    free_tier: bool = Field(False, description="Visible to anonymous callers")
    view_count: int = Field(0, ge=0)
    comment_count: int = Field(0, ge=0, description="Cached comment count")
    project_count: int = Field(0, ge=0, description="Cached project link count")


class Comment(BaseModel):
    """
    Node of a per-idea discussion forest
    Collection name: "comment"
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    idea_id: ObjectId = Field(..., description="Idea the comment belongs to")
    user_id: str = Field(..., min_length=1, description="Author")
    parent_comment_id: Optional[ObjectId] = Field(None, description="None for root comments")
    content: CommentBody
    flagged_for_moderation: bool = False


class ProjectLink(BaseModel):
    """
    Something a user built from an idea
    Collection name: "project_link"
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    idea_id: ObjectId
    user_id: str = Field(..., min_length=1)
    title: ProjectTitle
    url: HttpUrl
    description: Optional[ProjectDescription] = None
    tools_used: List[str] = Field(default_factory=list)

    @field_serializer("url")
    def store_url(self, url: HttpUrl) -> str:
        return str(url)


# Request models

class CommentCreate(BaseModel):
    content: CommentBody
    parent_comment_id: Optional[str] = None


class CommentUpdate(BaseModel):
    content: CommentBody


class ReplyCreate(BaseModel):
    content: CommentBody


class ProjectCreate(BaseModel):
    idea_id: str
    title: ProjectTitle
    url: HttpUrl
    description: Optional[ProjectDescription] = None
    tools_used: List[str] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    title: Optional[ProjectTitle] = None
    url: Optional[HttpUrl] = None
    description: Optional[ProjectDescription] = None
    tools_used: Optional[List[str]] = None

    @field_serializer("url")
    def store_url(self, url: Optional[HttpUrl]) -> Optional[str]:
        return str(url) if url is not None else None

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.changes():
            raise ValueError("At least one field must be provided for update")
        return self

    def changes(self) -> dict:
        # description may be cleared with an explicit null, other fields may not
        data = self.model_dump(include=self.model_fields_set)
        return {k: v for k, v in data.items() if v is not None or k == "description"}
