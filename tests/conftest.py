from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from serviceshub.main import create_app
from serviceshub.models import Database
from serviceshub.services.icon_resolver import IconResolution, IconResolver


@pytest.fixture
def database():
    db = Database("sqlite://", poolclass=StaticPool)
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def db_session(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def stub_resolver():
    resolver = MagicMock(spec=IconResolver)
    resolver.resolve.return_value = IconResolution()
    resolver.favicon.return_value = None
    return resolver


@pytest.fixture
def client(database, stub_resolver, requests_mock):
    app = create_app(database=database, icon_resolver=stub_resolver)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def live_client(database, requests_mock):
    """App wired to the real resolver; outbound HTTP goes to requests_mock."""
    app = create_app(database=database)
    with TestClient(app) as test_client:
        yield test_client
