from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.users import User
from app.schemas.request_identity import RequestIdentity
from app.services.authorization_service import Actor


def attach_internal_user_context(
    db: Session,
    *,
    identity: RequestIdentity,
) -> RequestIdentity:
    """
    Map the request email to a local active user and attach its role.
    Unknown users keep role=None and are refused every action by authorization.
    """
    email = (identity.email or "").strip().lower()
    if not email:
        return identity

    user = db.execute(
        select(User).where(func.lower(User.email) == email).where(User.is_active.is_(True))
    ).scalar_one_or_none()
    if not user:
        return identity

    return identity.model_copy(
        update={
            "user_id": int(user.id),
            "role": user.role,
            "supplier_id": user.supplier_id,
        }
    )


def actor_from_identity(identity: RequestIdentity) -> Actor:
    return Actor(
        email=(identity.email or "").strip().lower(),
        role=identity.role,
        supplier_id=identity.supplier_id,
    )
