"""Shared fakes for the backrunner tests."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account

from backrunner.gate import CompletionGate
from backrunner.tracked import TrackedTransactions
from ethereum_mevshare_backrun import Backrunner

TEST_PRIVATE_KEY = "0x" + "11" * 32


class FakeProvider:
    """Chain provider fake driven by a list of block heights.

    Each `get_block_number()` call returns the next height (the last one is
    repeated once the list runs out). Exception instances in the list are
    raised instead of returned. Receipts are keyed by the block height last
    returned.
    """

    def __init__(self, heights: list[Any], receipts: dict[int, Any] | None = None):
        self._heights = list(heights)
        self._calls = 0
        self.current_height: int | None = None
        self.receipts = receipts or {}
        self.receipt_checks: list[int] = []

    async def get_block_number(self) -> int:
        value = self._heights[min(self._calls, len(self._heights) - 1)]
        self._calls += 1
        await asyncio.sleep(0)
        if isinstance(value, Exception):
            raise value
        self.current_height = value
        return value

    async def get_transaction_receipt(self, tx_hash: str) -> Any:
        await asyncio.sleep(0)
        self.receipt_checks.append(self.current_height)
        receipt = self.receipts.get(self.current_height)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt


class ClimbingProvider:
    """Chain provider fake whose height grows by one on every query and
    where every receipt lookup succeeds."""

    def __init__(self, start: int):
        self.height = start

    async def get_block_number(self) -> int:
        await asyncio.sleep(0)
        self.height += 1
        return self.height

    async def get_transaction_receipt(self, tx_hash: str) -> Any:
        await asyncio.sleep(0)
        return {"status": 1, "blockNumber": self.height}


class FakeProbeFactory:
    """Probe factory fake that signs with a real local account."""

    def __init__(self, nonce: int = 7, probe_hashes: list[str] | None = None):
        self.account = Account.from_key(TEST_PRIVATE_KEY)
        self.nonce = nonce
        self.probe_hashes = list(probe_hashes or ["0xabc"])
        self.sent: list[int] = []

    async def build(self):
        tx = {
            "type": 2,
            "chainId": 1,
            "to": self.account.address,
            "value": 0,
            "data": "0x",
            "gas": 21_000,
            "nonce": self.nonce,
            "maxFeePerGas": 2 * 10**9,
            "maxPriorityFeePerGas": 10**9,
        }
        return tx, self.account

    async def send_probe(self, max_block_number: int) -> str:
        await asyncio.sleep(0)
        self.sent.append(max_block_number)
        return self.probe_hashes[len(self.sent) - 1]


def make_relay() -> MagicMock:
    relay = MagicMock()
    relay.send_bundle = AsyncMock(return_value={"bundleHash": "0x01"})
    relay.simulate_bundle = AsyncMock(
        return_value={"success": True, "profit": hex(10**16)}
    )
    return relay


@pytest.fixture
def account():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def gate():
    return CompletionGate()


@pytest.fixture
def tracked():
    return TrackedTransactions()


@pytest.fixture
def relay():
    return make_relay()


@pytest.fixture
def probe_factory():
    return FakeProbeFactory()


def make_bot(provider, relay, probe_factory, tracked, gate) -> Backrunner:
    return Backrunner(
        provider=provider,
        relay=relay,
        probe_factory=probe_factory,
        tracked=tracked,
        gate=gate,
        num_target_blocks=3,
        poll_interval=0,
        receipt_retries=2,
    )
