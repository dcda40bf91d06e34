"""
Network identifiers and protocol constants shared across the relay.
"""

from enum import StrEnum


class NetworkID(StrEnum):
    """Chain identifiers used by the localnet gateways."""

    ETHEREUM = "5"
    BNB = "97"
    ZETACHAIN = "7001"
    SOLANA = "901"
    SUI = "103"
    TON = "2015141"


# Chain id the hub's core registry uses for itself
REGISTRY_ZETACHAIN_ID = 31337

EVM_CHAINS: frozenset[str] = frozenset(
    {NetworkID.ETHEREUM, NetworkID.BNB, NetworkID.ZETACHAIN}
)

CHAIN_NAMES: dict[str, str] = {
    NetworkID.ETHEREUM: "Ethereum",
    NetworkID.BNB: "BNB",
    NetworkID.ZETACHAIN: "ZetaChain",
    NetworkID.SOLANA: "Solana",
    NetworkID.SUI: "Sui",
    NetworkID.TON: "TON",
}

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
FUNGIBLE_MODULE_ADDRESS = "0x735b14BB79463307AAcBED86DAf3322B1e6226aB"

ANVIL_MNEMONIC = "test test test test test test test test test test test junk"
TSS_PATH = "m/44'/60'/0'/0/1"

# Gas limits
HUB_GAS_LIMIT = 1_500_000
EVM_GAS_LIMIT = 1_500_000
NON_EVM_REVERT_GAS_LIMIT = 200_000
SUI_WITHDRAW_GAS_BUDGET = 100_000

# Deadline for hub AMM swaps, seconds from now
SWAP_DEADLINE_SECONDS = 1200

SUI_NATIVE_COIN = (
    "0000000000000000000000000000000000000000000000000000000000000002::sui::SUI"
)
SUI_NATIVE_COIN_SHORT = "0x2::sui::SUI"

# System program id doubles as the "default" Solana public key
SOLANA_DEFAULT_PUBKEY = "11111111111111111111111111111111"


def is_evm_chain(chain_id: str) -> bool:
    """Return True when the chain speaks the EVM protocol."""
    return chain_id in EVM_CHAINS


def chain_name(chain_id: str) -> str:
    """Human readable name for a chain id, falling back to the id itself."""
    return CHAIN_NAMES.get(chain_id, str(chain_id))
