from typing import Final
from enum import StrEnum

# Pre-funded key baked into the local network genesis. Needed to distribute genesis funds in tests.
GENESIS_ADDRESS: Final = "6Y3kysjF9jnHnYkdS9yGAuoHyae2eNmeV"
GENESIS_PRIVATE_KEY: Final = "PrivateKey-ewoqjP7PxY4yr3iLTpLisriqt94hdyDFNgchSxGGztUrTXtNN"

SECRET_KEY_PREFIX: Final = "PrivateKey-"
AVAX_ASSET_ID: Final = "AVAX"
LOCAL_NETWORK_ID: Final = 12345

X_CHAIN_ALIAS: Final = "X"
P_CHAIN_ALIAS: Final = "P"


class Endpoint(StrEnum):
    KEYSTORE = "/ext/keystore"
    X_CHAIN  = "/ext/bc/X"
    P_CHAIN  = "/ext/bc/P"
    INFO     = "/ext/info"
    HEALTH   = "/ext/health"


class Chain(StrEnum):
    X = "X"
    P = "P"


class XTxStatus(StrEnum):
    ACCEPTED   = "Accepted"
    PROCESSING = "Processing"
    REJECTED   = "Rejected"
    UNKNOWN    = "Unknown"


class PTxStatus(StrEnum):
    COMMITTED  = "Committed"
    PROCESSING = "Processing"
    DROPPED    = "Dropped"
    ABORTED    = "Aborted"
    UNKNOWN    = "Unknown"


ACCEPTED_STATES: Final = {
    Chain.X: frozenset({XTxStatus.ACCEPTED}),
    Chain.P: frozenset({PTxStatus.COMMITTED}),
}
REJECTED_STATES: Final = {
    Chain.X: frozenset({XTxStatus.REJECTED}),
    Chain.P: frozenset({PTxStatus.DROPPED, PTxStatus.ABORTED}),
}


class Encoding(StrEnum):
    HEX  = "hex"
    CB58 = "cb58"


# Codec type IDs for the X chain (linear codec, version 0)
CODEC_VERSION = 0
BASE_TX_TYPE_ID = 0
TRANSFER_INPUT_TYPE_ID = 5
TRANSFER_OUTPUT_TYPE_ID = 7
CREDENTIAL_TYPE_ID = 9

# Staking schedule
STAKING_DELAY = 20.0                       # seconds until the validation period begins
STAKING_PERIOD = 72 * 60 * 60.0
DELEGATION_DELAY = 20.0
DELEGATION_PERIOD = 36 * 60 * 60.0
STAKING_SYNCHRONY_DELAY = 3.0
DELEGATION_FEE_RATE = 2.0

ACCEPTANCE_TIMEOUT = 30.0
POLL_INTERVAL = 1.0
RPC_TIMEOUT = 10.0
HEALTH_TIMEOUT = 90.0
UTXO_PAGE_SIZE = 1024

__all__ = [
    "ACCEPTANCE_TIMEOUT",
    "ACCEPTED_STATES",
    "AVAX_ASSET_ID",
    "BASE_TX_TYPE_ID",
    "CODEC_VERSION",
    "CREDENTIAL_TYPE_ID",
    "DELEGATION_DELAY",
    "DELEGATION_FEE_RATE",
    "DELEGATION_PERIOD",
    "GENESIS_ADDRESS",
    "GENESIS_PRIVATE_KEY",
    "HEALTH_TIMEOUT",
    "LOCAL_NETWORK_ID",
    "P_CHAIN_ALIAS",
    "POLL_INTERVAL",
    "REJECTED_STATES",
    "RPC_TIMEOUT",
    "SECRET_KEY_PREFIX",
    "STAKING_DELAY",
    "STAKING_PERIOD",
    "STAKING_SYNCHRONY_DELAY",
    "TRANSFER_INPUT_TYPE_ID",
    "TRANSFER_OUTPUT_TYPE_ID",
    "UTXO_PAGE_SIZE",
    "X_CHAIN_ALIAS",

    ######
    "Chain",
    "Encoding",
    "Endpoint",
    "PTxStatus",
    "XTxStatus",
]
