import pytest

from photo_similarity.storage.kv import InMemoryStore

from helpers import FakeClock


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()
