from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.schemas.request_identity import RequestIdentity
from app.services.authorization_service import Actor
from app.services.identity_mapping_service import actor_from_identity, attach_internal_user_context


def _identity_from_legacy_header(request: Request) -> RequestIdentity:
    email = (
        request.headers.get("X-User-Email")
        or request.headers.get("X-User")
        or settings.SYSTEM_ACTOR_EMAIL
    )
    return RequestIdentity(
        email=(email or "").strip().lower() or None,
        auth_source="legacy_header",
    )


def resolve_request_identity(request: Request) -> RequestIdentity:
    return _identity_from_legacy_header(request)


def get_request_identity(request: Request) -> RequestIdentity:
    return resolve_request_identity(request)


def get_request_identity_with_db(
    request: Request,
    db: Session = Depends(get_db),
) -> RequestIdentity:
    identity = resolve_request_identity(request)
    return attach_internal_user_context(db, identity=identity)


def get_request_actor(
    identity: RequestIdentity = Depends(get_request_identity_with_db),
) -> Actor:
    return actor_from_identity(identity)
