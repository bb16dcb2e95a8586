import pytest
import sys
import os
import tempfile
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from cryptography.hazmat.primitives.asymmetric import ec

# Add parent directory to path to allow importing models and main
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Tests never touch a real Postgres: the app's default engine points at a
# throwaway SQLite file and every test gets its own database below.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="rewarded_ads_"), "app.db")
os.environ.setdefault("LOG_FORMAT", "text")

from database import build_engine, build_session_factory
from dependencies import get_signature_verifier
from main import app, get_session
from services.ssv import PublicKeyCache, SignatureVerifier, build_signed_query

TEST_KEY_ID = "test-key"


@pytest_asyncio.fixture(name="db_engine", scope="function")
async def db_engine_fixture(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture(name="session", scope="function")
async def session_fixture(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(name="signing_key", scope="session")
def signing_key_fixture():
    """ECDSA P-256 key standing in for the ad network's signing key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(name="verifier")
def verifier_fixture(signing_key):
    return SignatureVerifier(PublicKeyCache(keys_url=None, static_keys={TEST_KEY_ID: signing_key.public_key()}))


@pytest.fixture(name="make_callback_query")
def make_callback_query_fixture(signing_key):
    """Build a signed SSV query string; keyword arguments override the defaults."""

    def _make(transaction_id="tx-1", user_id="user-1", reward_amount=1, reward_item="token", key=None, key_id=TEST_KEY_ID):
        params = [
            ("ad_network", "admob"),
            ("ad_unit", "rewarded-test"),
            ("reward_amount", str(reward_amount)),
            ("reward_item", reward_item),
            ("timestamp", "1760000000000"),
            ("transaction_id", transaction_id),
            ("user_id", user_id),
        ]
        return build_signed_query(params, key or signing_key, key_id)

    return _make


@pytest_asyncio.fixture(name="client")
async def client_fixture(session_factory, verifier):
    # One session per request, like production
    async def get_session_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_signature_verifier] = lambda: verifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
