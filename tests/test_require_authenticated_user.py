from uuid import uuid4

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from loan_review.api import deps
from loan_review.core.errors import register_exception_handlers
from loan_review.core.response_envelope import register_response_envelope
from loan_review.core.security import create_access_token
from loan_review.db.session import get_db
from conftest import FakeAsyncSession, FakeResult, make_reviewer


def _build_app(db: FakeAsyncSession) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    register_response_envelope(app)

    @app.get("/whoami")
    async def whoami(caller: deps.Caller = Depends(deps.get_caller)):
        return {"user_id": str(caller.user_id), "role": caller.role}

    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    return app


def test_missing_token_is_rejected_with_envelope():
    client = TestClient(_build_app(FakeAsyncSession()))
    resp = client.get("/whoami")
    assert resp.status_code == 401
    body = resp.json()
    assert body["code"] == "unauthorized"
    assert body["message"] == "Not authenticated"


def test_invalid_token_is_rejected(patch_jwt_keys):
    client = TestClient(_build_app(FakeAsyncSession()))
    resp = client.get("/whoami", headers={"Authorization": "Bearer nonsense"})
    assert resp.status_code == 401


def test_unknown_user_is_rejected(patch_jwt_keys):
    db = FakeAsyncSession().on_execute(lambda _stmt: FakeResult(scalar=None))
    client = TestClient(_build_app(db))
    token = create_access_token(str(uuid4()))
    resp = client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "User not found"


def test_valid_token_resolves_caller(patch_jwt_keys):
    reviewer = make_reviewer()
    db = FakeAsyncSession().on_execute(lambda _stmt: FakeResult(scalar=reviewer))
    client = TestClient(_build_app(db))
    token = create_access_token(str(reviewer.id))
    resp = client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"user_id": str(reviewer.id), "role": "dsa"}
