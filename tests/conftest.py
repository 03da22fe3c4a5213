import httpx
import pytest

from config import Settings
from documents.memory_store import MemoryDocumentStore
from main import create_app

ADMIN = "dm@example.com"
EDITOR = "ana@example.com"
VIEWER = "vic@example.com"
STRANGER = "nobody@example.com"


def auth(email):
    return {"Authorization": f"Bearer {email}"}


def make_settings(**overrides):
    values = dict(
        store_backend="memory",
        allowed_users=f"{ADMIN}:admin,{EDITOR}:editor,{VIEWER}:viewer",
        dev_admin_email=None,
        permissions_api_url=None,
        save_debounce_ms=20,
        typing_grace_ms=10,
        blur_release_ms=10,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
async def app(settings, store):
    app = create_app(settings=settings, store=store)
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
