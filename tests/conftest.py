"""
Pytest fixtures for the CrossPay SDK tests.
"""
import asyncio
import types
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from web3 import Web3

from crosspay_sdk import _rate_limited_log, poller, retry
from crosspay_sdk.chain import ChainClient
from crosspay_sdk.config import NetworkConfig, Settings
from crosspay_sdk.registry import ChainRegistry

# Constants for testing
SEPOLIA = 11155111
FUJI = 43113
BASE_SEPOLIA = 84532
SEPOLIA_USDC = Web3.to_checksum_address("0x1c7d4b196cb0c7b01d743fbc6116a902379c7238")
FUJI_USDC = Web3.to_checksum_address("0x5425890298aed601595a70ab815c96711a31bc65")
BASE_SEPOLIA_USDC = Web3.to_checksum_address("0x036cbd53842c5426634e7929541ec2318f3dcf7e")
TESTNET_TOKEN_MESSENGER = Web3.to_checksum_address("0x8fe6b999dc680ccfdd5bf7eb0974218be2542daa")
WETH_SEPOLIA = Web3.to_checksum_address("0xfff9976782d46cc05630d1f6ebab18b2324d6b14")
RECIPIENT = Web3.to_checksum_address("0x" + "22" * 20)
TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_API_URL = "https://api.example.com"
TEST_ATTESTATION_URL = "https://iris.example.com"
BURN_TX = "0x" + "ab" * 32
APPROVE_TX = "0x" + "cd" * 32
MINT_TX = "0x" + "ef" * 32

_real_sleep = asyncio.sleep


class SleepRecorder:
    """Stands in for asyncio.sleep: records every delay and advances a virtual clock."""

    def __init__(self):
        self.delays = []
        self.now = 0.0

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, delay, result=None):
        self.delays.append(delay)
        self.now += delay
        await _real_sleep(0)
        return result


# ─────────────────────────────────────────────────────────────────────────
#  FAST, DETERMINISTIC TIME FOR ALL TESTS
# ─────────────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Make asyncio.sleep instantaneous and drive poller/retry clocks virtually."""
    recorder = SleepRecorder()
    monkeypatch.setattr(asyncio, "sleep", recorder.sleep)
    virtual_time = types.SimpleNamespace(monotonic=recorder.monotonic)
    monkeypatch.setattr(poller, "time", virtual_time)
    monkeypatch.setattr(retry, "time", virtual_time)
    return recorder


@pytest.fixture(autouse=True)
def _reset_caches():
    _rate_limited_log.reset()
    NetworkConfig._networks_cache = None
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture
def registry():
    return ChainRegistry("testnet")


@pytest.fixture
def settings():
    return Settings(api_url=TEST_API_URL, attestation_url=TEST_ATTESTATION_URL)


class FakeSigner:
    """Signer that records every request and can be told to refuse."""

    def __init__(self, private_key=TEST_PRIV_KEY, reject=False, can_switch=True):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.reject = reject
        self.transactions = []
        self.typed_data = []
        self.switched_to = []
        if not can_switch:
            self.switch_chain = None

    def sign_transaction(self, transaction_dict):
        if self.reject:
            raise ValueError("User rejected the request")
        self.transactions.append(transaction_dict)
        return self.account.sign_transaction(transaction_dict)

    def sign_typed_data(self, domain, types, message):
        if self.reject:
            raise ValueError("User rejected the request")
        self.typed_data.append((domain, types, message))
        return "0x" + "11" * 65

    def switch_chain(self, chain_id):
        self.switched_to.append(chain_id)


@pytest.fixture
def fake_signer():
    return FakeSigner()


def make_chain(chain_id, allowance=0, native_balance=10 ** 18, token_balance=0):
    """Create a ChainClient double whose async calls succeed by default."""
    chain = MagicMock(spec=ChainClient)
    chain.chain_id = chain_id
    chain.allowance = AsyncMock(return_value=allowance)
    chain.token_balance = AsyncMock(return_value=token_balance)
    chain.native_balance = AsyncMock(return_value=native_balance)
    chain.approve = AsyncMock(return_value=APPROVE_TX)
    chain.deposit_for_burn_with_hook = AsyncMock(return_value=BURN_TX)
    chain.estimate_receive_message_gas = AsyncMock(return_value=200000)
    chain.receive_message = AsyncMock(return_value=MINT_TX)
    return chain


@pytest.fixture
def chains():
    return {
        SEPOLIA: make_chain(SEPOLIA),
        FUJI: make_chain(FUJI),
        BASE_SEPOLIA: make_chain(BASE_SEPOLIA),
    }


def complete_attestation(message="0x" + "aa" * 40, attestation="0x" + "bb" * 65):
    return {"messages": [{"status": "complete", "message": message, "attestation": attestation, "eventNonce": "7"}]}
