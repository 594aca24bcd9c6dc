"""
Caller-supplied context for every mutation: who acts, in which role, for which
organizations, and from which request.

The core never looks these up itself. The HTTP layer builds them from request
headers (the auth provider in front of the API is expected to set them).
"""
from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Request

from ssdf_tracker.config import Settings
from ssdf_tracker.middleware.redact import MAX_VALUE_LENGTH
from ssdf_tracker.models.enums import Role


@dataclass(frozen=True)
class RequestContext:
    request_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    route: str | None = None
    # Truncation bound applied by the audit trail
    audit_max_length: int = MAX_VALUE_LENGTH


@dataclass(frozen=True)
class ActorContext:
    actor_id: str | None
    actor_role: Role | None
    actor_email: str | None = None
    # None means unrestricted (admins)
    organization_ids: frozenset[int] | None = None
    request_context: RequestContext = field(default_factory=RequestContext)

    @property
    def is_admin(self) -> bool:
        return self.actor_role == Role.ADMIN

    def can_access_organization(self, organization_id: int) -> bool:
        if self.is_admin or self.organization_ids is None:
            return True
        return organization_id in self.organization_ids

    def audit_actor(self) -> dict[str, str | None]:
        return {
            "id": self.actor_id,
            "email": self.actor_email,
            "role": self.actor_role.value if self.actor_role else None,
        }


def _parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def _parse_org_ids(value: str | None) -> frozenset[int] | None:
    if value is None:
        return None
    ids = set()
    for part in value.split(","):
        part = part.strip()
        if part.isdigit():
            ids.add(int(part))
    return frozenset(ids)


def request_context_from(request: Request) -> RequestContext:
    settings = getattr(request.app.state, "settings", None)
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return RequestContext(
        request_id=request.headers.get("x-request-id"),
        ip=ip,
        user_agent=request.headers.get("user-agent"),
        route=request.url.path,
        audit_max_length=settings.AUDIT_MAX_VALUE_LENGTH if settings else MAX_VALUE_LENGTH,
    )


async def get_actor_context(request: Request) -> ActorContext:
    """FastAPI dependency: actor identity and request metadata from headers."""
    role = _parse_role(request.headers.get("x-user-role"))
    org_ids = _parse_org_ids(request.headers.get("x-organization-ids"))
    return ActorContext(
        actor_id=request.headers.get("x-user-id"),
        actor_role=role,
        actor_email=request.headers.get("x-user-email"),
        organization_ids=None if role == Role.ADMIN else (org_ids or frozenset()),
        request_context=request_context_from(request),
    )


def get_request_settings(request: Request) -> Settings:
    """FastAPI dependency: the Settings the running app was created with."""
    return request.app.state.settings
