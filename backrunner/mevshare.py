import asyncio
import dataclasses
import json
from typing import Any, Dict, List, Optional, Set

import aiohttp
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

from .bundle import BundleParams
from .exceptions import RelayError, SimulationError
from .logging import logger
from .subscription import Handler, Subscription, spawn_handler

# seconds to wait before reopening a dropped event stream
STREAM_RECONNECT_DELAY = 1.0


@dataclasses.dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A pending transaction as delivered by the MEV-Share event stream. Fields
    other than the hash are whatever the sender chose to reveal.
    """

    hash: str
    logs: List[Dict[str, Any]] = dataclasses.field(default_factory=list)
    txs: List[Dict[str, Any]] = dataclasses.field(default_factory=list)
    mev_gas_price: Optional[int] = None
    gas_used: Optional[int] = None

    @classmethod
    def from_json(cls, event: Dict[str, Any]) -> "PendingTransaction":
        mev_gas_price = event.get("mevGasPrice")
        gas_used = event.get("gasUsed")
        return cls(
            hash=event["hash"],
            logs=event.get("logs") or [],
            txs=event.get("txs") or [],
            mev_gas_price=int(mev_gas_price, 16) if mev_gas_price else None,
            gas_used=int(gas_used, 16) if gas_used else None,
        )


class MevShareClient:
    """
    Client for the MEV-Share JSON-RPC endpoint and its server-sent event
    stream.

    Every RPC request is signed with the Flashbots identity account.

    Ref: https://docs.flashbots.net/flashbots-mev-share/searchers/understanding-bundles
    """

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        identity_account: LocalAccount,
        rpc_url: str,
        stream_url: str,
        retries: int = 3,
    ):
        self._http_session = http_session
        self._identity_account = identity_account
        self.rpc_url = rpc_url
        self.stream_url = stream_url
        self.retries = retries

    def _headers(self, payload: str) -> Dict[str, str]:
        message = self._identity_account.sign_message(
            encode_defunct(text=Web3.keccak(text=payload).to_0x_hex())
        )
        return {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self._identity_account.address
            + ":"
            + message.signature.to_0x_hex(),
        }

    async def _request(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = json.dumps(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": method,
                "params": params,
            }
        )
        async with self._http_session.post(
            url=self.rpc_url,
            headers=self._headers(payload),
            data=payload,
        ) as resp:
            # the relay does not always set the MIME type for JSON data
            return await resp.json(content_type=None)

    async def send_bundle(self, bundle: BundleParams) -> Dict[str, Any]:
        """
        Send the bundle via `mev_sendBundle`, retrying on HTTP errors.
        """

        for attempt in range(1, self.retries + 1):
            try:
                relay_response = await self._request(
                    "mev_sendBundle", [bundle.to_json()]
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(
                    f"(send_bundle) HTTP error on attempt {attempt}/{self.retries}: {exc!r}"
                )
                continue

            if error := relay_response.get("error"):
                raise RelayError(f"(send_bundle) relay error: {error}")
            return relay_response["result"]

        raise RelayError("(send_bundle) Retries exceeded")

    async def simulate_bundle(
        self,
        bundle: BundleParams,
        parent_block: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Simulate the bundle via `mev_simBundle`, optionally on top of the state
        at `parent_block`.
        """

        sim_options: Dict[str, Any] = {}
        if parent_block is not None:
            sim_options["parentBlock"] = hex(parent_block)

        try:
            relay_response = await self._request(
                "mev_simBundle", [bundle.to_json(), sim_options]
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SimulationError(f"(simulate_bundle) HTTP error: {exc!r}") from exc
        except ValueError as exc:
            # body was not JSON
            raise SimulationError(f"(simulate_bundle) bad response: {exc}") from exc

        if result := relay_response.get("result"):
            return result
        raise SimulationError(f"{relay_response=}")

    async def send_transaction(
        self,
        signed_tx: HexBytes,
        hints: List[str],
        max_block_number: int,
    ) -> str:
        """
        Send a signed transaction to the MEV-Share node, revealing only the
        requested hints. Returns the transaction hash.
        """

        try:
            relay_response = await self._request(
                "eth_sendPrivateTransaction",
                [
                    {
                        "tx": signed_tx.to_0x_hex(),
                        "maxBlockNumber": hex(max_block_number),
                        "preferences": {
                            "fast": True,
                            "privacy": {"hints": hints},
                        },
                    }
                ],
            )
        except aiohttp.ClientError as exc:
            raise RelayError(f"(send_transaction) HTTP error: {exc}") from exc

        if error := relay_response.get("error"):
            raise RelayError(f"(send_transaction) relay error: {error}")
        return relay_response["result"]

    def on(self, event: str, handler: Handler) -> Subscription:
        """
        Subscribe to the event stream. Only "transaction" events are
        supported; `handler` receives a `PendingTransaction` for each event.
        """

        if event != "transaction":
            raise ValueError(f"Unsupported event type {event!r}")

        tasks: Set[asyncio.Task] = set()
        return Subscription(
            name="pending transactions",
            feed=self._watch_event_stream(handler, tasks),
            handler_tasks=tasks,
        )

    async def _watch_event_stream(
        self,
        handler: Handler,
        tasks: Set[asyncio.Task],
    ) -> None:
        logger.info("Starting pending transaction watcher loop")

        while True:
            try:
                async with self._http_session.get(
                    url=self.stream_url,
                    headers={"Accept": "text/event-stream"},
                    timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
                ) as resp:
                    logger.info("Subscription Active: Pending Transactions")
                    async for line in resp.content:
                        if (pending_tx := self._parse_event(line)) is not None:
                            spawn_handler("transaction", handler, pending_tx, tasks)
            except (aiohttp.ClientError, asyncio.TimeoutError):
                logger.exception("(watch_event_stream) (ClientError)")

            logger.info("watch_event_stream reconnecting...")
            await asyncio.sleep(STREAM_RECONNECT_DELAY)

    @staticmethod
    def _parse_event(line: bytes) -> Optional[PendingTransaction]:
        """
        Decode one line of the server-sent event stream. Comments, keepalives
        and non-data fields return None.
        """

        text = line.decode("utf-8", errors="replace").strip()
        if not text.startswith("data:"):
            return None

        try:
            event = json.loads(text[len("data:") :])
            if not isinstance(event, dict):
                raise TypeError(f"expected a JSON object, got {type(event).__name__}")
            return PendingTransaction.from_json(event)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.exception(f"(watch_event_stream)\n{text=}")
            return None
