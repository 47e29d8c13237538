import asyncio
import enum
from typing import Any, Optional

from web3 import Web3

import config
from .bundle import BundleParams
from .chain import ChainProvider
from .exceptions import BundleError, SimulationError
from .gate import CompletionGate
from .logging import logger
from .mevshare import MevShareClient


class InclusionOutcome(enum.Enum):
    INCLUDED = "included"
    # the inclusion window passed without the backrun landing
    EXHAUSTED = "exhausted"
    # another handler released the completion gate first
    ABORTED = "aborted"


async def _wait_for_height(
    provider: ChainProvider,
    height: int,
    poll_interval: float,
) -> None:
    """
    Stall until the node reports a block number of at least `height`
    """

    while True:
        try:
            if await provider.get_block_number() >= height:
                return
        except Exception:
            # node errors are transient here, try again on the next tick
            logger.exception("(wait_for_height) could not fetch block number")
        await asyncio.sleep(poll_interval)


async def _get_receipt(
    provider: ChainProvider,
    tx_hash: str,
    poll_interval: float,
    retries: int,
) -> Optional[Any]:
    for attempt in range(1, retries + 1):
        try:
            return await provider.get_transaction_receipt(tx_hash)
        except Exception:
            logger.exception(
                f"(get_receipt) receipt fetch failed for {tx_hash} (attempt {attempt}/{retries})"
            )
        if attempt < retries:
            await asyncio.sleep(poll_interval)
    return None


async def _report_profit(
    relay: MevShareClient,
    bundle: BundleParams,
    receipt: Any,
) -> None:
    """
    Simulate the landed bundle and log its profit. Failures are logged only,
    the bundle has already landed.
    """

    parent_block = receipt["blockNumber"] - 1
    try:
        sim_result = await relay.simulate_bundle(bundle, parent_block=parent_block)
        logger.info(f"simResult ({parent_block=}) {sim_result}")

        profit = sim_result.get("profit", 0)
        if isinstance(profit, str):
            profit = int(profit, 16)
        logger.info(f"profit: {Web3.from_wei(profit, 'ether')} ETH")
    except SimulationError:
        logger.exception(f"(report_profit) simulation failed ({parent_block=})")
    except Exception:
        logger.exception(f"(report_profit) could not report profit ({parent_block=})")


async def wait_for_inclusion(
    provider: ChainProvider,
    relay: MevShareClient,
    bundle: BundleParams,
    target_block: int,
    gate: CompletionGate,
    num_target_blocks: int = config.NUM_TARGET_BLOCKS,
    poll_interval: float = config.POLL_INTERVAL,
    receipt_retries: int = config.RECEIPT_RETRIES,
) -> InclusionOutcome:
    """
    Watch blocks `target_block` through `target_block + num_target_blocks - 1`
    for the bundle's backrun transaction.

    The gate is checked before each block. If it is no longer held, another
    handler has already landed a bundle and this one stops early. On
    inclusion, the bundle is simulated against the parent of the including
    block to report profit, and the gate is released.
    """

    if (backrun_leg := bundle.backrun_tx) is None:
        raise BundleError("Bundle has no signed transaction to watch for")

    check_tx_hash = backrun_leg.tx_hash.to_0x_hex()

    for i in range(num_target_blocks):
        current_block = target_block + i

        if not gate.is_held():
            logger.info(f"backrun tx {check_tx_hash} abandoned, gate released elsewhere")
            return InclusionOutcome.ABORTED

        logger.info(f"tx {check_tx_hash} waiting for block {current_block}")
        await _wait_for_height(provider, current_block, poll_interval)

        receipt = await _get_receipt(
            provider,
            check_tx_hash,
            poll_interval,
            receipt_retries,
        )
        if receipt is not None and receipt["status"] == 1:
            logger.info(f"bundle included! (found tx {check_tx_hash})")

            # a handler past the gate check above may have won in the meantime
            if gate.is_held():
                gate.release()

            await _report_profit(relay, bundle, receipt)
            return InclusionOutcome.INCLUDED

        logger.warning(
            f"backrun tx {check_tx_hash} not included in block {current_block}"
        )

    logger.warning(
        f"backrun tx {check_tx_hash} not included by block {target_block + num_target_blocks - 1}, giving up"
    )
    return InclusionOutcome.EXHAUSTED
