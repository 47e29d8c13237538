"""Tests for backrun bundle construction."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

import config
from backrunner.bundle import (
    BundleHashLeg,
    BundleTxLeg,
    build_backrun_bundle,
)
from backrunner.exceptions import BundleError


def _probe_tx(account, nonce=7):
    return {
        "type": 2,
        "chainId": 1,
        "to": account.address,
        "value": 0,
        "data": "0x",
        "gas": 21_000,
        "nonce": nonce,
        "maxFeePerGas": 2 * 10**9,
        "maxPriorityFeePerGas": 10**9,
    }


class TestBuildBackrunBundle:
    def test_backrun_nonce_is_probe_nonce_plus_one(self):
        signer = MagicMock()
        signer.sign_transaction.return_value.raw_transaction = b"\x02\x01"

        build_backrun_bundle(
            probe_tx={"nonce": 41, "to": "0x0"},
            account=signer,
            pending_tx_hash="0xabc",
            target_block=101,
        )

        signed = signer.sign_transaction.call_args.args[0]
        assert signed["nonce"] == 42
        assert signed["to"] == "0x0"

    def test_nonce_zero_is_incremented(self):
        signer = MagicMock()
        signer.sign_transaction.return_value.raw_transaction = b"\x02"

        build_backrun_bundle(
            probe_tx={"nonce": 0},
            account=signer,
            pending_tx_hash="0xabc",
            target_block=1,
        )

        assert signer.sign_transaction.call_args.args[0]["nonce"] == 1

    def test_probe_dict_is_not_mutated(self, account):
        probe_tx = _probe_tx(account)

        build_backrun_bundle(probe_tx, account, "0xabc", 101)

        assert probe_tx["nonce"] == 7

    def test_bundle_shape(self, account):
        bundle = build_backrun_bundle(_probe_tx(account), account, "0xabc", 101)

        assert bundle.inclusion.block == 101
        assert bundle.inclusion.max_block == 101 + config.NUM_TARGET_BLOCKS
        assert bundle.body[0] == BundleHashLeg(hash="0xabc")
        assert isinstance(bundle.body[1], BundleTxLeg)
        assert bundle.body[1].can_revert is False
        assert bundle.backrun_tx is bundle.body[1]

    def test_backrun_signed_by_probe_account(self, account):
        bundle = build_backrun_bundle(_probe_tx(account), account, "0xabc", 101)

        sender = Account.recover_transaction(bundle.body[1].tx)

        assert sender == account.address

    def test_tx_hash_is_keccak_of_raw_bytes(self, account):
        bundle = build_backrun_bundle(_probe_tx(account), account, "0xabc", 101)
        leg = bundle.body[1]

        assert leg.tx_hash == HexBytes(Web3.keccak(leg.tx))

    def test_custom_window(self, account):
        bundle = build_backrun_bundle(
            _probe_tx(account), account, "0xabc", 500, num_target_blocks=5
        )

        assert bundle.inclusion.max_block == 505

    def test_to_json(self, account):
        bundle = build_backrun_bundle(_probe_tx(account), account, "0xabc", 101)

        payload = bundle.to_json()

        assert payload["version"] == "v0.1"
        assert payload["inclusion"] == {"block": "0x65", "maxBlock": "0x68"}
        assert payload["body"][0] == {"hash": "0xabc"}
        assert payload["body"][1]["canRevert"] is False
        assert payload["body"][1]["tx"].startswith("0x02")

    def test_missing_nonce_raises(self, account):
        probe_tx = _probe_tx(account)
        del probe_tx["nonce"]

        with pytest.raises(BundleError):
            build_backrun_bundle(probe_tx, account, "0xabc", 101)
