from __future__ import annotations

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.api.deps import request_identity as request_identity_module
from app.db.session import get_db
from app.models.enums import UserRole
from app.schemas.request_identity import RequestIdentity
from app.services.authorization_service import Actor
from tests.factories import make_supplier, make_user


def _build_app(db: Session) -> FastAPI:
    app = FastAPI()

    @app.get("/whoami")
    def whoami(identity: RequestIdentity = Depends(request_identity_module.get_request_identity)):
        return {"email": identity.email, "source": identity.auth_source}

    @app.get("/actor")
    def actor(current: Actor = Depends(request_identity_module.get_request_actor)):
        return {
            "email": current.email,
            "role": current.role.value if current.role else None,
            "supplier_id": current.supplier_id,
        }

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    return app


def test_legacy_header_uses_x_user_email(db_session):
    with TestClient(_build_app(db_session)) as client:
        r = client.get("/whoami", headers={"X-User-Email": " Legacy@Example.com "})
        assert r.status_code == 200
        payload = r.json()
        assert payload["email"] == "legacy@example.com"
        assert payload["source"] == "legacy_header"


def test_missing_header_falls_back_to_system_actor(db_session):
    with TestClient(_build_app(db_session)) as client:
        r = client.get("/whoami")
        assert r.json()["email"] == "system@local"


def test_known_user_gets_role_and_supplier(db_session):
    supplier = make_supplier(db_session)
    make_user(db_session, "portal@example.com", UserRole.SUPPLIER, supplier_id=supplier.id)
    db_session.commit()

    with TestClient(_build_app(db_session)) as client:
        r = client.get("/actor", headers={"X-User-Email": "PORTAL@example.com"})
        assert r.json() == {"email": "portal@example.com", "role": "supplier", "supplier_id": supplier.id}


def test_inactive_or_unknown_user_has_no_role(db_session):
    user = make_user(db_session, "former@example.com", UserRole.ADMIN)
    user.is_active = False
    db_session.commit()

    with TestClient(_build_app(db_session)) as client:
        assert client.get("/actor", headers={"X-User-Email": "former@example.com"}).json()["role"] is None
        assert client.get("/actor", headers={"X-User-Email": "nobody@example.com"}).json()["role"] is None
