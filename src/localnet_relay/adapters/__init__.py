"""Chain adapters, one per chain family."""

from .base import ChainAdapter
from .evm import EVMAdapter
from .hub import HubAdapter
from .solana import SolanaAdapter
from .sui import SuiAdapter
from .ton import TonAdapter

__all__ = ["ChainAdapter", "EVMAdapter", "HubAdapter", "SolanaAdapter", "SuiAdapter", "TonAdapter"]
