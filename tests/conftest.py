"""Pytest configuration and fixtures."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="userauth-uploads-"))
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("MAIL_BACKEND", "console")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from userauth.database import Base, get_db  # noqa: E402
from userauth.dependencies import get_mailer  # noqa: E402
from userauth.models.refresh_token import RefreshToken  # noqa: E402, F401
from userauth.models.role import ROLE_IDS, Role, RoleName  # noqa: E402
from userauth.models.user import User  # noqa: E402
from userauth.seed import seed_roles  # noqa: E402
from userauth.services.auth import AuthService  # noqa: E402
from userauth.services.mailer import Mailer  # noqa: E402


class RecordingMailer(Mailer):
    """Mailer that keeps rendered messages in memory instead of sending them."""

    def __init__(self) -> None:
        super().__init__(backend="console")
        self.sent = []
        self.fail = False

    def _deliver(self, msg) -> None:
        if self.fail:
            raise OSError("connection refused")
        self.sent.append(msg)

    def last_to(self, email: str):
        for msg in reversed(self.sent):
            if msg["To"] == email:
                return msg
        return None


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    seed_roles(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mailer")
def mailer_fixture() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture(name="auth_service")
def auth_service_fixture(mailer: RecordingMailer) -> AuthService:
    return AuthService(mailer=mailer)


@pytest.fixture(name="client")
def client_fixture(db_session: Session, mailer: RecordingMailer):
    """Create a test client with overridden DB and mailer dependencies and disabled rate limiting."""
    import main
    from userauth.rate_limit import limiter

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # Startup role seeding runs against the test session
    main._session_factory = lambda: db_session

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[get_mailer] = lambda: mailer
    limiter.enabled = False
    with TestClient(main.app) as c:
        yield c
    limiter.enabled = True
    main.app.dependency_overrides.clear()
    main._session_factory = None


def make_user(
    auth_service: AuthService,
    db: Session,
    username: str = "alice",
    email: str = "alice@example.com",
    password: str = "secret1",
    verified: bool = True,
    roles: tuple[RoleName, ...] = (),
) -> User:
    """Sign a user up through the service, optionally verifying and granting extra roles."""
    user = auth_service.signup(db, username, email, password).user
    if verified:
        auth_service.verify_email(db, user.verification_token)
    for role in roles:
        user.roles.append(db.get(Role, ROLE_IDS[role]))
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(name="test_user")
def test_user_fixture(db_session: Session, auth_service: AuthService):
    """Create a verified user and return its data with a fresh token pair."""
    user = make_user(auth_service, db_session)
    result = auth_service.signin(db_session, "alice@example.com", "secret1", "127.0.0.1")
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "password": "secret1",
        "token": result.access_token,
        "refresh_token": result.refresh_token,
    }


@pytest.fixture(name="admin_user")
def admin_user_fixture(db_session: Session, auth_service: AuthService):
    """Create a verified admin and return its data with an access token."""
    user = make_user(
        auth_service,
        db_session,
        username="root",
        email="root@example.com",
        password="adminpass",
        roles=(RoleName.ADMIN,),
    )
    result = auth_service.signin(db_session, "root@example.com", "adminpass", "127.0.0.1")
    return {"user_id": user.id, "token": result.access_token}


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
