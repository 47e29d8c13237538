import dataclasses
from typing import Any, Dict, List, Optional, Union

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

import config
from .exceptions import BundleError
from .logging import logger


@dataclasses.dataclass(frozen=True, slots=True)
class BundleInclusion:
    block: int
    max_block: int

    def to_json(self) -> Dict[str, str]:
        return {
            "block": hex(self.block),
            "maxBlock": hex(self.max_block),
        }


@dataclasses.dataclass(frozen=True, slots=True)
class BundleHashLeg:
    """
    A bundle leg referencing a pending transaction by hash only. The relay
    will only land the bundle after that transaction.
    """

    hash: str

    def to_json(self) -> Dict[str, Any]:
        return {"hash": self.hash}


@dataclasses.dataclass(frozen=True, slots=True)
class BundleTxLeg:
    tx: HexBytes
    can_revert: bool = False

    @property
    def tx_hash(self) -> HexBytes:
        return HexBytes(Web3.keccak(self.tx))

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx": self.tx.to_0x_hex(),
            "canRevert": self.can_revert,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class BundleParams:
    inclusion: BundleInclusion
    body: List[Union[BundleHashLeg, BundleTxLeg]]

    @property
    def backrun_tx(self) -> Optional[BundleTxLeg]:
        """
        The last signed transaction in the bundle body, if any
        """
        for leg in reversed(self.body):
            if isinstance(leg, BundleTxLeg):
                return leg
        return None

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": "v0.1",
            "inclusion": self.inclusion.to_json(),
            "body": [leg.to_json() for leg in self.body],
        }


def build_backrun_bundle(
    probe_tx: Dict[str, Any],
    account: LocalAccount,
    pending_tx_hash: str,
    target_block: int,
    num_target_blocks: int = config.NUM_TARGET_BLOCKS,
) -> BundleParams:
    """
    Build a two-leg bundle: the pending transaction by hash, followed by a
    copy of `probe_tx` signed with the next nonce for the same account.

    `probe_tx` is the unsigned transaction dictionary used for the probe, so
    the backrun nonce is always one past the probe's nonce.
    """

    if (probe_nonce := probe_tx.get("nonce")) is None:
        raise BundleError("Probe transaction has no nonce")

    backrun_tx = {
        **probe_tx,
        "nonce": probe_nonce + 1,
    }

    try:
        signed_backrun = account.sign_transaction(backrun_tx)
    except (TypeError, ValueError) as exc:
        raise BundleError(f"Could not sign backrun transaction: {exc}") from exc

    logger.info(
        f"sending backrun bundles targeting next {num_target_blocks} blocks..."
    )

    return BundleParams(
        inclusion=BundleInclusion(
            block=target_block,
            max_block=target_block + num_target_blocks,
        ),
        body=[
            BundleHashLeg(hash=pending_tx_hash),
            BundleTxLeg(
                tx=HexBytes(signed_backrun.raw_transaction),
                can_revert=False,
            ),
        ],
    )
