"""
Chain-tagged logging.

Every relay step logs through a ``ChainLogger`` so the origin or destination
chain shows up in front of the message and as a ``chain_id`` record attribute.
"""

import logging
from typing import Any, MutableMapping

from ..constants import chain_name

LOCALNET_TAG = "localnet"


class ChainLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes records with a chain name."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("chain_id", self.extra["chain_id"])
        kwargs["extra"] = extra
        return f"[{self.extra['chain']}] {msg}", kwargs

    def for_chain(self, chain_id: str | None) -> "ChainLogger":
        """Return a sibling adapter on the same logger tagged with another chain."""
        return get_chain_logger(self.logger.name, chain_id)


def get_chain_logger(name: str, chain_id: str | None = None) -> ChainLogger:
    """
    Build a chain-tagged logger.

    Args:
        name: Underlying logger name, usually ``__name__``
        chain_id: Network id, or None for process-wide messages

    Returns:
        ChainLogger whose messages start with ``[ChainName]``
    """
    tag = LOCALNET_TAG if chain_id is None else chain_name(chain_id)
    return ChainLogger(logging.getLogger(name), {"chain": tag, "chain_id": chain_id})
