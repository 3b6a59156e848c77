"""
Shared test fixtures.
"""

import pytest

from fakes import PROXY, FakeSafeChain


@pytest.fixture
def chain() -> FakeSafeChain:
    """A chain with one wallet (PROXY, owned by OWNER_KEY, nonce 0)."""
    fake = FakeSafeChain()
    fake.add_wallet(PROXY)
    return fake
