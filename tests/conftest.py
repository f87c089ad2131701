# tests/conftest.py
import os
import sys
import asyncio
import json
from urllib.parse import urlencode

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1"
os.environ.pop("CLOUDINARY_URL", None)

import pytest
from sqlalchemy import create_engine, delete
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath("."))

from trackmap import crud, models
from trackmap.auth import auth_rate_limit, create_user_token, get_password_hash
from trackmap.database import Base, get_db
from trackmap.schemas import UserCreate
from main import app


# DB (SQLite in-memory for tests)
SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def prepare_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(delete(table))
        session.commit()
        session.close()


# One event loop for the WHOLE pytest session
@pytest.fixture(scope="session")
def session_loop():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


# Run the application lifespan once per session (same loop)
# so FastAPILimiter.init() is bound to the loop the client uses.
@pytest.fixture(scope="session", autouse=True)
def app_lifespan(session_loop):
    lifespan = app.router.lifespan_context(app)
    session_loop.run_until_complete(lifespan.__aenter__())
    yield
    session_loop.run_until_complete(lifespan.__aexit__(None, None, None))


@pytest.fixture()
def outbox(monkeypatch):
    """Capture notification emails instead of sending them."""
    sent: list[dict] = []

    async def fake_send_email(to, subject, html_body):
        sent.append({"to": to, "subject": subject, "body": html_body})
        return True

    monkeypatch.setattr("trackmap.notifications.send_email", fake_send_email)
    return sent


# Simple ASGI response/client
class SimpleResponse:
    def __init__(
        self, status_code: int, body: bytes, headers: list[tuple[bytes, bytes]]
    ):
        self.status_code = status_code
        self._body = body
        self.headers = {k.decode(): v.decode() for k, v in headers}

    def json(self):
        return json.loads(self._body.decode())


class SimpleClient:
    """
    Important:
    - uses ONE shared session loop (passed from fixture)
    - does NOT call asyncio.run()
    - does NOT close the loop
    """

    def __init__(self, app, loop):
        self.app = app
        self.loop = loop

    def close(self):
        # do not close the loop here (session fixture closes it)
        pass

    def request(
        self,
        method: str,
        path: str,
        json_body=None,
        headers=None,
        files=None,
        params=None,
    ):
        headers = dict(headers or {})
        body_bytes = b""

        if files:
            boundary = "TESTBOUNDARY"
            parts: list[bytes] = []
            for name, (filename, content, content_type) in files.items():
                disposition = f'form-data; name="{name}"; filename="{filename}"'
                part_headers = (
                    f"--{boundary}\r\n"
                    f"Content-Disposition: {disposition}\r\n"
                    f"Content-Type: {content_type or 'application/octet-stream'}\r\n\r\n"
                )
                parts.append(part_headers.encode() + content + b"\r\n")
            parts.append(f"--{boundary}--\r\n".encode())
            body_bytes = b"".join(parts)
            headers["content-type"] = f"multipart/form-data; boundary={boundary}"

        elif json_body is not None:
            body_bytes = json.dumps(json_body).encode()
            headers.setdefault("content-type", "application/json")

        raw_headers = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "headers": raw_headers,
            "query_string": urlencode(params or {}, doseq=True).encode(),
            "client": ("testclient", 5000),
            "server": ("testserver", 80),
        }

        async def receive():
            nonlocal body_bytes
            chunk, body_bytes = body_bytes, b""
            return {"type": "http.request", "body": chunk, "more_body": False}

        response_body = bytearray()
        response_status = 500
        response_headers: list[tuple[bytes, bytes]] = []

        async def send(message):
            nonlocal response_status, response_headers
            if message["type"] == "http.response.start":
                response_status = message["status"]
                response_headers = message.get("headers", [])
            elif message["type"] == "http.response.body":
                response_body.extend(message.get("body", b""))

        # ensure the loop is the current one
        asyncio.set_event_loop(self.loop)
        self.loop.run_until_complete(self.app(scope, receive, send))
        return SimpleResponse(response_status, bytes(response_body), response_headers)

    def get(self, path: str, headers=None, params=None):
        return self.request("GET", path, headers=headers, params=params)

    def post(self, path: str, json=None, headers=None, files=None):
        return self.request("POST", path, json_body=json, headers=headers, files=files)

    def put(self, path: str, json=None, headers=None, files=None):
        return self.request("PUT", path, json_body=json, headers=headers, files=files)

    def delete(self, path: str, headers=None):
        return self.request("DELETE", path, headers=headers)


# Client fixture: override DB and rate limiter dependencies per test
@pytest.fixture()
def client(db_session, session_loop):
    def override_get_db():
        yield db_session

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_rate_limit] = no_rate_limit

    c = SimpleClient(app, loop=session_loop)
    try:
        yield c
    finally:
        app.dependency_overrides.clear()
        c.close()


# Data helpers


def create_user(
    db_session,
    username="rider",
    email="rider@example.com",
    password="secret123",
    role=models.Role.USER,
):
    hashed = get_password_hash(password)
    user_in = UserCreate(username=username, email=email, password=password)
    return crud.create_user(db_session, user_in, hashed, role=role)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


def create_track(db_session, name="Skatepark Lyon", type_="skatepark", lon=4.85, lat=45.75):
    track = models.Track(name=name, type=type_, longitude=lon, latitude=lat)
    db_session.add(track)
    db_session.commit()
    db_session.refresh(track)
    return track


@pytest.fixture()
def user(db_session):
    return create_user(db_session)


@pytest.fixture()
def admin(db_session):
    return create_user(
        db_session, username="admin", email="admin@example.com", role=models.Role.ADMIN
    )


@pytest.fixture()
def track(db_session):
    return create_track(db_session)


def fail_on_delete_of(monkeypatch, session, table_name):
    """Make bulk DELETEs against ``table_name`` fail on ``session``."""
    execute = session.execute

    def failing_execute(statement, *args, **kwargs):
        if isinstance(statement, Delete) and statement.table.name == table_name:
            raise OperationalError(str(statement), {}, Exception("disk I/O error"))
        return execute(statement, *args, **kwargs)

    monkeypatch.setattr(session, "execute", failing_execute)
