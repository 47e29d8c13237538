from typing import Any, Dict, List, Tuple

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes

from .chain import ChainProvider
from .logging import logger
from .mevshare import MevShareClient

PROBE_CALLDATA = "im backrunniiiiing"
PROBE_HINTS = [
    "logs",
    "contract_address",
    "calldata",
    "function_selector",
]

# intrinsic transaction gas, plus 16 gas per non-zero calldata byte
BASE_TX_GAS = 21_000
CALLDATA_BYTE_GAS = 16


class ProbeTransactionFactory:
    """
    Builds and sends the self-transfer transactions that the bot backruns.
    """

    def __init__(
        self,
        provider: ChainProvider,
        relay: MevShareClient,
        account: LocalAccount,
        priority_fee: int,
        calldata: str = PROBE_CALLDATA,
        hints: List[str] | None = None,
    ):
        self.provider = provider
        self.relay = relay
        self.account = account
        self.priority_fee = priority_fee
        self.calldata = calldata
        self.hints = hints if hints is not None else PROBE_HINTS

    async def build(self) -> Tuple[Dict[str, Any], LocalAccount]:
        """
        Build an unsigned EIP-1559 transaction from the account to itself,
        paying the next base fee plus the fixed priority fee.
        """

        data = HexBytes(self.calldata.encode("utf-8"))
        base_fee = await self.provider.get_next_base_fee()
        tx = {
            "type": 2,
            "chainId": await self.provider.get_chain_id(),
            "to": self.account.address,
            "value": 0,
            "data": data.to_0x_hex(),
            "gas": BASE_TX_GAS + CALLDATA_BYTE_GAS * len(data),
            "nonce": await self.provider.get_transaction_count(
                self.account.address
            ),
            "maxFeePerGas": base_fee + self.priority_fee,
            "maxPriorityFeePerGas": self.priority_fee,
        }
        return tx, self.account

    async def send_probe(self, max_block_number: int) -> str:
        """
        Sign a fresh probe transaction and send it privately through the
        relay. Returns the transaction hash.
        """

        tx, account = await self.build()
        signed_tx = account.sign_transaction(tx)
        tx_hash = await self.relay.send_transaction(
            signed_tx=HexBytes(signed_tx.raw_transaction),
            hints=self.hints,
            max_block_number=max_block_number,
        )
        logger.info(f"sent tx {tx_hash} (nonce {tx['nonce']})")
        return tx_hash
