"""
Sends a probe transaction through MEV-Share on every block and backruns it
with a second transaction from the same account.

Continues until a backrun lands on-chain, then exits.
"""

import asyncio
import dataclasses
import functools
import logging
import os
import signal
import sys
from typing import Optional, Set

import aiohttp
import eth_account
from eth_account.signers.local import LocalAccount

import config
from backrunner.bundle import build_backrun_bundle
from backrunner.chain import ChainProvider
from backrunner.exceptions import ProviderError, RelayError
from backrunner.gate import CompletionGate
from backrunner.inclusion import InclusionOutcome, wait_for_inclusion
from backrunner.logging import logger
from backrunner.mevshare import MevShareClient, PendingTransaction
from backrunner.probe import ProbeTransactionFactory
from backrunner.tracked import TrackedTransactions


@dataclasses.dataclass
class Backrunner:
    provider: ChainProvider
    relay: MevShareClient
    probe_factory: ProbeTransactionFactory
    # hashes of probe transactions we sent. only these can be backrun, since
    # the backrun reuses the probe account with the next nonce
    tracked: TrackedTransactions = dataclasses.field(
        default_factory=TrackedTransactions
    )
    # held while no backrun has landed
    gate: CompletionGate = dataclasses.field(default_factory=CompletionGate)
    num_target_blocks: int = config.NUM_TARGET_BLOCKS
    poll_interval: float = config.POLL_INTERVAL
    receipt_retries: int = config.RECEIPT_RETRIES


async def handle_backrun(
    pending_tx: PendingTransaction,
    bot: Backrunner,
) -> Optional[InclusionOutcome]:
    """
    Backrun a pending MEV-Share transaction if it is one of our probes, then
    watch the following blocks for the backrun.

    The probe hash is dropped from the tracked set when this returns, whatever
    the outcome.
    """

    logger.debug(f"pendingTxHashes {await bot.tracked.get()}")

    tx_hash = pending_tx.hash.lower()
    if not await bot.tracked.includes(tx_hash):
        # bundles built on other senders' txs would fail, the nonce math
        # assumes the target tx comes from the bot account
        return None

    logger.info(f"pending tx {pending_tx}")

    try:
        target_block = await bot.provider.get_block_number() + 1
        probe_tx, account = await bot.probe_factory.build()
        bundle = build_backrun_bundle(
            probe_tx=probe_tx,
            account=account,
            pending_tx_hash=tx_hash,
            target_block=target_block,
            num_target_blocks=bot.num_target_blocks,
        )

        try:
            backrun_result = await bot.relay.send_bundle(bundle)
        except RelayError:
            logger.exception(f"(handle_backrun) bundle for {tx_hash} was not sent")
            return None
        logger.info(f"backrun result {backrun_result}")

        outcome = await wait_for_inclusion(
            provider=bot.provider,
            relay=bot.relay,
            bundle=bundle,
            target_block=target_block,
            gate=bot.gate,
            num_target_blocks=bot.num_target_blocks,
            poll_interval=bot.poll_interval,
            receipt_retries=bot.receipt_retries,
        )
        logger.info(f"backrun of {tx_hash}: {outcome.value}")
        return outcome
    finally:
        await bot.tracked.remove(tx_hash)
        logger.info(f"dropped target tx {tx_hash}")


async def handle_new_block(
    block_number: int,
    bot: Backrunner,
) -> Optional[str]:
    """
    Send a new probe transaction if none is being tracked. Returns the hash
    of the probe, if one was sent.
    """

    # hold the lock while sending so a second block cannot send another probe
    async with bot.tracked.exclusive() as tracked_hashes:
        if tracked_hashes:
            return None

        tx_hash = await bot.probe_factory.send_probe(
            max_block_number=block_number + bot.num_target_blocks
        )
        tracked_hashes.append(tx_hash.lower())

    logger.info(f"[{block_number}] tracking tx {tx_hash}")
    return tx_hash


async def run(bot: Backrunner) -> None:
    """
    Listen for transactions and blocks until one handler lands a backrun.
    """

    tx_subscription = bot.relay.on(
        "transaction",
        functools.partial(handle_backrun, bot=bot),
    )
    logger.info("listening for transactions...")

    await bot.gate.acquire()

    # send a tx that we can backrun on every block. it is backrun
    # independently by `handle_backrun`
    block_subscription = bot.provider.on_block(
        functools.partial(handle_new_block, bot=bot),
    )

    try:
        # returns once a handler releases the gate
        await bot.gate.acquire()
    finally:
        tx_subscription.close()
        block_subscription.close()
        await tx_subscription.wait_closed()
        await block_subscription.wait_closed()

    logger.info("backrun landed, exiting")


def shutdown(tasks: Set[asyncio.Task]):
    """
    Cancel all tasks in the `tasks` set
    """

    logger.info("\nCancelling tasks")
    for task in [t for t in tasks if not (t.done() or t.cancelled())]:
        task.cancel()


async def main(
    bot_account: LocalAccount,
    flashbots_id_account: LocalAccount,
) -> None:
    all_tasks: Set[asyncio.Task] = set()

    if (main_task := asyncio.current_task()) is not None:
        all_tasks.add(main_task)

    for sig in (
        signal.SIGHUP,
        signal.SIGTERM,
        signal.SIGINT,
    ):
        asyncio.get_running_loop().add_signal_handler(
            sig,
            shutdown,
            all_tasks,
        )

    provider = ChainProvider(
        w3=config.get_web3(),
        websocket_uri=config.NODE_WEBSOCKET_URI,
    )
    await provider.check_connection()

    async with aiohttp.ClientSession(raise_for_status=True) as http_session:
        relay = MevShareClient(
            http_session=http_session,
            identity_account=flashbots_id_account,
            rpc_url=config.MEV_SHARE_RPC_URL,
            stream_url=config.MEV_SHARE_STREAM_URL,
            retries=config.RELAY_RETRIES,
        )
        bot = Backrunner(
            provider=provider,
            relay=relay,
            probe_factory=ProbeTransactionFactory(
                provider=provider,
                relay=relay,
                account=bot_account,
                priority_fee=config.PRIORITY_FEE,
            ),
        )

        try:
            await run(bot)
        except asyncio.CancelledError:
            return


def cli() -> None:
    logger.propagate = False
    logger.setLevel(logging.INFO)
    logger_formatter = logging.Formatter("%(levelname)s - %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logger_formatter)
    logger.addHandler(stream_handler)

    try:
        bot_account = eth_account.Account.from_key(
            os.environ[config.BOT_PRIVATE_KEY_ENV]
        )
        flashbots_id_account = eth_account.Account.from_key(
            os.environ[config.FLASHBOTS_IDENTITY_KEY_ENV]
        )
    except (KeyError, ValueError):
        sys.exit(
            f"Could not load account! Set {config.BOT_PRIVATE_KEY_ENV} and {config.FLASHBOTS_IDENTITY_KEY_ENV} to hex private keys"
        )

    try:
        asyncio.run(main(bot_account, flashbots_id_account))
    except ProviderError as exc:
        sys.exit(f"Could not connect! {exc}")


if __name__ == "__main__":
    cli()
