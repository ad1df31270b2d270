# tests/conftest.py
import logging
import os

import pytest
import pytest_asyncio
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure

from async_odm import Connection, Model
from async_odm.base import registry
from tests.mocks import MockClient

# Silence verbose loggers
logging.getLogger("pymongo").setLevel(logging.ERROR)
logging.getLogger("motor").setLevel(logging.ERROR)


# --- Constants ---
TEST_MONGO_DB_NAME = "pytest_async_odm_db"
MONGO_URI = os.getenv("TEST_MONGO_URI", "mongodb://localhost:27017")


# --- Availability Checks ---
def is_mongodb_available():
    """Check if MongoDB is available (basic check)."""
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
        logging.info(f"MongoDB found and responsive at {MONGO_URI}")
        return True
    except ConnectionFailure:
        logging.warning(
            f"MongoDB not found or not responsive at {MONGO_URI}. "
            "Skipping MongoDB tests."
        )
        return False
    except Exception as e:
        logging.warning(
            f"Error checking MongoDB connection at {MONGO_URI}: {e}. "
            "Skipping MongoDB tests."
        )
        return False
    finally:
        client.close()


# --- Fixtures ---


@pytest.fixture(autouse=True)
def reset_root_model_config():
    """The root Model must never carry configuration between tests."""
    registry.clear_config(Model)
    yield
    registry.clear_config(Model)


@pytest.fixture
def mock_data():
    """Collections served by the mock client: ``{name: [documents]}``."""
    return {}


@pytest.fixture
def mock_client(mock_data):
    return MockClient(mock_data)


@pytest_asyncio.fixture
async def connection(mock_client):
    """A Connection connected to the mock client's 'testdb' database."""
    conn = Connection(client=mock_client)
    await conn.connect("mongodb://localhost:27017/testdb")
    return conn


@pytest.fixture
def model_factory(connection):
    """Creates fresh, connected model classes: ``model_factory('Post', 'posts')``."""

    def _make(name: str, collection: str, base: type = Model) -> type:
        model_cls = type(base)(name, (base,), {"__module__": __name__})
        model_cls.connection = connection
        model_cls.collection = collection
        return model_cls

    return _make


@pytest_asyncio.fixture(scope="function")
async def live_connection():
    """Provides a Connection to a real MongoDB server, dropping the test database afterwards."""
    if not is_mongodb_available():
        pytest.skip("MongoDB not available or connection failed.")

    conn = Connection()
    await conn.connect(f"{MONGO_URI.rstrip('/')}/{TEST_MONGO_DB_NAME}", serverSelectionTimeoutMS=2000)
    try:
        yield conn
    finally:
        await conn.client.drop_database(TEST_MONGO_DB_NAME)
        conn.close()
