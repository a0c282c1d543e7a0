"""
Shared fixtures: a fresh SQLite database per test, process-wide state
reset, and helpers to seed firms/users and log in.
"""

import uuid
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

PASSWORD = "CorrectHorse42"


@pytest.fixture
def sqlalchemy_db(tmp_path, monkeypatch):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from docket_lite.audit import clear_audit_buffer
    from docket_lite.db.session import drop_db, init_db, reset_engine
    from docket_lite.metrics import metrics, transaction_monitor
    from docket_lite.middleware import reset_idempotency_cache
    from docket_lite.system_state import reset_state

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'docket.db'}")
    monkeypatch.setenv("TOKEN_BLACKLIST_REDIS", "false")
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("DISABLE_FIRM_CREATION", raising=False)
    monkeypatch.delenv("IDEMPOTENCY_ENFORCED", raising=False)

    reset_engine()
    init_db()
    reset_idempotency_cache()
    reset_state()
    metrics.reset()
    transaction_monitor.reset()
    clear_audit_buffer()

    yield

    drop_db()
    reset_engine()
    reset_state()


@pytest.fixture
def client(sqlalchemy_db):
    from fastapi.testclient import TestClient
    from docket_lite.api import app

    return TestClient(app)


def idem(headers=None):
    """Headers with a fresh Idempotency-Key."""
    merged = dict(headers or {})
    merged["Idempotency-Key"] = str(uuid.uuid4())
    return merged


def seed_firm(name="Acme Legal", admin_email="admin@acme.example.com", admin_name="Ada Admin", password=PASSWORD):
    """Create a firm hierarchy and activate its Admin with `password`."""
    from docket_lite.auth import get_password_hash
    from docket_lite.db.models import User, UserStatus
    from docket_lite.db.session import get_db_session
    from docket_lite.firm_bootstrap import create_firm_hierarchy

    with get_db_session() as db:
        result = create_firm_hierarchy(db, {"name": name, "adminName": admin_name, "adminEmail": admin_email})
        admin = db.query(User).filter(User.id == result.admin.id).first()
        admin.password_hash = get_password_hash(password)
        admin.status = UserStatus.ACTIVE
        return {
            "firm_id": result.firm.id,
            "firm_code": result.firm.firm_id,
            "slug": result.firm.firm_slug,
            "default_client_id": result.default_client.id,
            "admin_id": admin.id,
            "admin_xid": admin.xid,
            "admin_email": admin.email,
            "setup_token": result.setup_token,
        }


def seed_user(firm_id, email, name="Eve Employee", role="Employee", password=PASSWORD, **kwargs):
    """Invite a user into a firm and activate them with `password`."""
    from docket_lite.auth import get_password_hash
    from docket_lite.db.models import Firm, UserStatus
    from docket_lite.db.session import get_db_session
    from docket_lite.firm_bootstrap import invite_user

    with get_db_session() as db:
        firm = db.query(Firm).filter(Firm.id == firm_id).first()
        invite = invite_user(db, firm, name=name, email=email, role=role, send_email=False, **kwargs)
        invite.user.password_hash = get_password_hash(password)
        invite.user.status = UserStatus.ACTIVE
        return {"id": invite.user.id, "xid": invite.user.xid, "email": invite.user.email}


def seed_superadmin(email="root@platform.example.com", password=PASSWORD):
    from docket_lite.auth import get_password_hash
    from docket_lite.db.models import User, UserRole, UserStatus
    from docket_lite.db.session import get_db_session

    with get_db_session() as db:
        user = User(
            firm_id=None,
            email=email,
            name="Platform Root",
            role=UserRole.SUPER_ADMIN.value,
            status=UserStatus.ACTIVE,
            is_active=True,
            password_hash=get_password_hash(password),
        )
        db.add(user)
        db.flush()
        return {"id": user.id, "email": email}


def login(client, email, password=PASSWORD, firm_slug=None):
    """Log in and return Authorization headers."""
    body = {"email": email, "password": password}
    if firm_slug:
        body["firm_slug"] = firm_slug
    resp = client.post("/api/auth/login", json=body)
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['data']['access_token']}"}


@pytest.fixture
def firm(sqlalchemy_db):
    return seed_firm()


@pytest.fixture
def admin_headers(client, firm):
    return login(client, firm["admin_email"])
