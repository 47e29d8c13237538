import os
from functools import lru_cache

from web3 import AsyncHTTPProvider, AsyncWeb3

NODE_HTTP_URI = os.environ.get("NODE_HTTP_URI", "http://localhost:8545")
NODE_WEBSOCKET_URI = os.environ.get("NODE_WEBSOCKET_URI", "ws://localhost:8546")

MEV_SHARE_RPC_URL = os.environ.get("MEV_SHARE_RPC_URL", "https://relay.flashbots.net")
MEV_SHARE_STREAM_URL = os.environ.get(
    "MEV_SHARE_STREAM_URL", "https://mev-share.flashbots.net"
)

# private keys for the account sending probes and backruns, and for the
# identity used to sign relay requests
BOT_PRIVATE_KEY_ENV = "BOT_PRIVATE_KEY"
FLASHBOTS_IDENTITY_KEY_ENV = "FLASHBOTS_IDENTITY_KEY"

NUM_TARGET_BLOCKS = int(os.environ.get("NUM_TARGET_BLOCKS", 3))
POLL_INTERVAL = float(os.environ.get("POLL_INTERVAL", 6.0))
PRIORITY_FEE = int(os.environ.get("PRIORITY_FEE", 100 * 10**9))  # 100 gwei
RELAY_RETRIES = int(os.environ.get("RELAY_RETRIES", 3))
RECEIPT_RETRIES = int(os.environ.get("RECEIPT_RETRIES", 3))


@lru_cache
def get_web3() -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(NODE_HTTP_URI))
