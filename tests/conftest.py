import pytest

from groupchat.agents import create_roster


@pytest.fixture
def roster():
    """Two plain (non-deliberate) agents so delays stay predictable."""
    return create_roster([
        {"id": "test/alpha", "name": "Alpha", "tag": "Alpha"},
        {"id": "test/beta", "name": "Beta", "tag": "Beta"},
    ])
