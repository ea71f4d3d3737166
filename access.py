"""Caller identity and tier-based visibility of catalog ideas.

Anonymous callers only ever see ideas with ``free_tier = True``. Listings get
the constraint folded into the query before counting and paginating, single
fetches get it as a post-fetch check that fails with AccessDenied.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request

from config import IDENTITY_HEADER
from errors import AccessDenied


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def tier(self) -> str:
        return "authenticated" if self.authenticated else "guest"


ANONYMOUS = Identity()


def get_identity(request: Request) -> Identity:
    # The upstream authenticator has already verified the bearer credential
    raw = (request.headers.get(IDENTITY_HEADER) or "").strip()
    return Identity(user_id=raw) if raw else ANONYMOUS


def require_user(identity: Identity) -> str:
    if not identity.authenticated:
        raise AccessDenied("Authentication required", status_code=401)
    return identity.user_id


def apply_tier(query: Dict[str, Any], identity: Identity) -> Dict[str, Any]:
    if identity.authenticated:
        return query
    # Overrides any free_tier value the caller asked for
    return {**query, "free_tier": True}


def check_tier(idea: Dict[str, Any], identity: Identity) -> str:
    if identity.authenticated:
        return "full"
    if not idea.get("free_tier"):
        raise AccessDenied("This idea requires authentication. Please sign up or log in to access.")
    return "free_tier"
