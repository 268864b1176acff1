# download-link-service/tests/conftest.py
from typing import Callable, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from beanie import init_beanie
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from auth import pwd_context
from downloads import get_http_client, wait_for_bookkeeping
from main import app
from models import Link, User
from sessions import InMemorySessionStore, get_session_store

TEST_MONGO_DB = "test_links_db"
TEST_PASSWORD = "correct horse"


class UpstreamHosts:
    """Routes for the mocked third-party hosts, keyed by method and URL."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def respond(self, url, status_code=200, content=b"", headers=None, method="GET"):
        def responder(request):
            return httpx.Response(status_code, content=content, headers=headers)

        self.routes[(method, url)] = responder

    def fail(self, url, exc_type, method="GET"):
        def responder(request):
            raise exc_type("upstream failure", request=request)

        self.routes[(method, url)] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, str(request.url)))
        if responder is None:
            return httpx.Response(404, text="not found")
        return responder(request)


# Fixture for an isolated in-memory MongoDB per test
@pytest_asyncio.fixture(scope="function", autouse=True)
async def mongo_test_client():
    client = AsyncMongoMockClient()
    database = client[TEST_MONGO_DB]
    await init_beanie(database=database, document_models=[Link, User])
    yield database


# Override the session store dependency (autouse to apply to all tests)
@pytest.fixture(scope="function", autouse=True)
def session_store():
    store = InMemorySessionStore()
    app.dependency_overrides[get_session_store] = lambda: store
    yield store
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def upstream():
    hosts = UpstreamHosts()
    async with httpx.AsyncClient(transport=httpx.MockTransport(hosts.handler)) as http_client:
        app.dependency_overrides[get_http_client] = lambda: http_client
        yield hosts


@pytest_asyncio.fixture(scope="function")
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await wait_for_bookkeeping()


async def create_test_user(username="admin", password=TEST_PASSWORD, role="admin"):
    user = User(username=username, password=pwd_context.hash(password), role=role)
    await user.insert()
    return user


async def create_test_link(original_url: str, **fields) -> Link:
    link = Link(original_url=original_url, **fields)
    await link.insert()
    return link


@pytest_asyncio.fixture(scope="function")
async def admin_user():
    return await create_test_user()


@pytest.fixture(scope="function")
def auth_headers(session_store, admin_user):
    return {"x-session-id": session_store.create(str(admin_user.id))}
