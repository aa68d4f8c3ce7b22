"""
Shared fixtures for the yieldrelay test suite.

Nothing here touches a network: the routing client, signers and chain engine
are AsyncMock/MagicMock fakes configured per test.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from yieldrelay.chains import ChainRegistry
from yieldrelay.config import load_config
from yieldrelay.models import TxReceipt

USER = "0x1111111111111111111111111111111111111111"
VAULT = "0x2222222222222222222222222222222222222222"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


@pytest.fixture
def logger():
    log = logging.getLogger("yieldrelay.tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def config():
    return load_config(None)


@pytest.fixture
def registry():
    return ChainRegistry(environ={})


def make_signer(chain_id: int = 8453, allowance: int = 0, status: int = 1) -> MagicMock:
    """A signer whose reads return `allowance` and whose writes confirm with `status`."""
    signer = MagicMock()
    signer.chain_id = chain_id
    signer.address = USER
    signer.call = AsyncMock(return_value=allowance)
    signer.transact = AsyncMock(return_value=TxReceipt(tx_hash="0xapprove", status=status))
    signer.send_transaction = AsyncMock(return_value=TxReceipt(tx_hash="0xbridge", status=status))
    return signer


@pytest.fixture
def signer():
    return make_signer()


@pytest.fixture
def chain_engine(signer):
    engine = MagicMock()
    engine.get_signer = MagicMock(return_value=signer)
    return engine
