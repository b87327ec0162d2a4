import pytest
from fastapi.testclient import TestClient

import main
from accounts import AccountService
from projects import ProjectService
from storage import MemoryStorage


@pytest.fixture
def storage():
    return MemoryStorage(timeout=1)


@pytest.fixture
def accounts(storage):
    return AccountService(storage)


@pytest.fixture
def projects(storage):
    return ProjectService(storage)


@pytest.fixture
def creator(accounts):
    identity, _ = accounts.register_identity("Ada Lovelace", "ada@tracker.io")
    return identity


@pytest.fixture
def member(accounts, creator):
    identity, _ = accounts.register_identity("Bob Babbage", "bob@tracker.io")
    return identity


@pytest.fixture
def client(storage):
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
