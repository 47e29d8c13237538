import asyncio
import json
from typing import Any, Optional, Set

import websockets
from eth_typing import ChecksumAddress
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from .exceptions import ProviderError
from .logging import logger
from .subscription import Handler, Subscription, spawn_handler


class ChainProvider:
    """
    Thin async wrapper around the node connection. HTTP for queries,
    websocket for the new block feed.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        websocket_uri: str,
    ):
        self._w3 = w3
        self.websocket_uri = websocket_uri

    async def get_block_number(self) -> int:
        return await self._w3.eth.block_number

    async def get_chain_id(self) -> int:
        return await self._w3.eth.chain_id

    async def get_next_base_fee(self) -> int:
        """
        Return the base fee for the next block, taken from the last entry of
        the fee history
        """
        fee_history = await self._w3.eth.fee_history(1, "latest")
        return fee_history["baseFeePerGas"][-1]

    async def get_transaction_count(self, address: ChecksumAddress) -> int:
        return await self._w3.eth.get_transaction_count(address, "latest")

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Any]:
        """
        Return the receipt for the transaction, or None if the node has not
        seen it mined
        """
        try:
            return await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def check_connection(self) -> None:
        if not await self._w3.is_connected():
            raise ProviderError(f"Could not connect to node at {self._w3.provider}")

    def on_block(self, handler: Handler) -> Subscription:
        """
        Subscribe to new block headers. `handler` is called with the block
        number of each new block, as an independent task.
        """
        tasks: Set[asyncio.Task] = set()
        return Subscription(
            name="new blocks",
            feed=self._watch_new_blocks(handler, tasks),
            handler_tasks=tasks,
        )

    async def _watch_new_blocks(
        self,
        handler: Handler,
        tasks: Set[asyncio.Task],
    ) -> None:
        logger.info("Starting block watcher loop")

        async for websocket in websockets.connect(
            uri=self.websocket_uri,
            ping_timeout=None,
            max_queue=None,
        ):
            try:
                await websocket.send(
                    json.dumps(
                        {
                            "jsonrpc": "2.0",
                            "id": 1,
                            "method": "eth_subscribe",
                            "params": ["newHeads"],
                        }
                    )
                )
                subscription_id = json.loads(await websocket.recv())["result"]
            except (
                websockets.exceptions.WebSocketException,
                KeyError,
                TypeError,
                ValueError,
            ):
                logger.exception("(watch_new_blocks) (eth_subscribe) failed")
                logger.info("watch_new_blocks reconnecting...")
                continue
            logger.info(f"Subscription Active: New Blocks - {subscription_id}")

            while True:
                try:
                    message = json.loads(await websocket.recv())
                except websockets.exceptions.WebSocketException:
                    logger.exception(
                        "(watch_new_blocks) (websocket.recv) (WebSocketException)"
                    )
                    logger.info("watch_new_blocks reconnecting...")
                    break

                try:
                    block_number = int(
                        message["params"]["result"]["number"],
                        16,
                    )
                except (KeyError, TypeError, ValueError):
                    logger.exception(f"(watch_new_blocks)\n{message=}")
                    continue

                spawn_handler("block", handler, block_number, tasks)
