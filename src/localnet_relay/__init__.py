"""
Localnet relay package.

Cross-chain message relay for a local multi-chain development network: a hub
chain, EVM side chains, Solana, Sui and TON.
"""

from .config import RelayConfig
from .models import RelayOutcome, RelayState
from .orchestrator import CrossChainRelayOrchestrator
from .registry import ForeignAssetRegistry
from .relayer import LocalnetRelayer

__all__ = [
    "RelayConfig",
    "LocalnetRelayer",
    "CrossChainRelayOrchestrator",
    "ForeignAssetRegistry",
    "RelayOutcome",
    "RelayState",
]
__version__ = "0.1.0"
