import pytest

from services import Ledger


@pytest.fixture
def ledger():
    """A fresh ledger for each test."""
    return Ledger()
