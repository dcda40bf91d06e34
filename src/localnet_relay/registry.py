"""
Foreign asset registry.

Maps a (chain, native asset) pair to its wrapped ZRC20 representation on the
hub. Entries are appended while the registry bootstraps and the table is
frozen before relaying starts. One registry object is created by the relayer
and handed to every component that needs it.
"""

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from web3 import Web3

from .constants import (
    REGISTRY_ZETACHAIN_ID,
    SOLANA_DEFAULT_PUBKEY,
    SUI_NATIVE_COIN,
    ZERO_ADDRESS,
    NetworkID,
)
from .errors import RegistryLookupError
from .models import CoinType, ForeignCoin

logger = logging.getLogger(__name__)


def normalize_sui_type(type_path: str) -> str:
    """Expand a Move type path to the long form without ``0x``.

    ``0x2::sui::SUI`` and ``0x000..02::sui::SUI`` both become
    ``000..02::sui::SUI`` so they compare equal to event coin types.
    """
    address, sep, rest = type_path.partition("::")
    if not sep:
        return type_path
    raw = address[2:] if address.startswith("0x") else address
    return f"{raw.lower().rjust(64, '0')}::{rest}"


def is_native_asset(chain_id: str, asset: str | None) -> bool:
    """True when ``asset`` denotes the chain's own gas token."""
    if asset is None or asset == "":
        return True
    match chain_id:
        case NetworkID.SUI:
            return normalize_sui_type(asset) == SUI_NATIVE_COIN
        case NetworkID.SOLANA:
            return asset == SOLANA_DEFAULT_PUBKEY
        case _:
            return asset.lower() == ZERO_ADDRESS


def _assets_equal(chain_id: str, registered: str, asset: str) -> bool:
    if chain_id == NetworkID.SUI:
        return normalize_sui_type(registered) == normalize_sui_type(asset)
    return registered == asset


def registry_chain_id(chain_id: int | str) -> str:
    """Translate core-registry chain ids into relay network ids."""
    return NetworkID.ZETACHAIN.value if int(chain_id) == REGISTRY_ZETACHAIN_ID else str(chain_id)


def convert_address_bytes(raw: bytes | str | None) -> str:
    """
    Render an address stored as bytes in the core registry.

    Empty or all-zero input becomes the zero address, 20 bytes become a
    checksummed EVM address and anything else is decoded as UTF-8 text
    (Solana, Sui and TON addresses are stored that way).
    """
    if isinstance(raw, str):
        raw = bytes.fromhex(raw[2:]) if raw.startswith("0x") else raw.encode("utf-8")
    if not raw or not any(raw):
        return ZERO_ADDRESS
    if len(raw) == 20:
        return Web3.to_checksum_address(raw)
    return raw.decode("utf-8", errors="replace")


class ForeignAssetRegistry:
    """In-memory table of foreign coins."""

    def __init__(self, coins: Iterable[ForeignCoin] = ()):
        self._coins: list[ForeignCoin] = []
        self._frozen = False
        # Set while gateway contracts are being registered on the hub
        self.registering_gateways = False
        for coin in coins:
            self.register(coin)

    def __len__(self) -> int:
        return len(self._coins)

    def __iter__(self):
        return iter(list(self._coins))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """End the setup phase. Later ``register`` calls raise."""
        self._frozen = True
        logger.info(f"Foreign asset registry frozen with {len(self._coins)} coins")

    def register(self, coin: ForeignCoin) -> None:
        """
        Append a foreign coin.

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the coin duplicates a ZRC20 address or a chain's gas coin
        """
        if self._frozen:
            raise RuntimeError("Foreign asset registry is read-only once relaying has started")
        if any(c.zrc20_address.lower() == coin.zrc20_address.lower() for c in self._coins):
            raise ValueError(f"ZRC20 {coin.zrc20_address} is already registered")
        if coin.coin_type is CoinType.GAS and any(
            c.chain_id == coin.chain_id and c.coin_type is CoinType.GAS for c in self._coins
        ):
            raise ValueError(f"Chain {coin.chain_id} already has a gas coin")
        self._coins.append(coin)
        logger.debug(f"Registered {coin.symbol} ({coin.coin_type}) for chain {coin.chain_id}")

    def find(self, chain_id: str, asset: str | None) -> ForeignCoin:
        """
        Resolve the foreign coin for an asset native to ``chain_id``.

        The native-gas sentinel (zero address, empty asset or the chain's
        native tag) matches the single Gas entry of the chain. Any other asset
        matches on exact native asset equality; Sui compares full type paths.

        Raises:
            RegistryLookupError: If nothing matches, or the chain has several gas coins
        """
        if is_native_asset(chain_id, asset):
            matches = [c for c in self._coins if c.chain_id == chain_id and c.coin_type is CoinType.GAS]
            if len(matches) > 1:
                raise RegistryLookupError(chain_id, asset, reason="ambiguous")
        else:
            matches = [
                c
                for c in self._coins
                if c.chain_id == chain_id
                and c.native_asset is not None
                and _assets_equal(chain_id, c.native_asset, asset)
            ]
        if not matches:
            raise RegistryLookupError(chain_id, asset)
        return matches[0]

    def gas_coin(self, chain_id: str) -> ForeignCoin:
        """The Gas-type coin of ``chain_id``."""
        return self.find(chain_id, None)

    def find_by_zrc20(self, zrc20_address: str) -> ForeignCoin:
        """
        Resolve a coin by its hub token address.

        Raises:
            RegistryLookupError: If the ZRC20 is unknown
        """
        for coin in self._coins:
            if coin.zrc20_address.lower() == zrc20_address.lower():
                return coin
        raise RegistryLookupError(NetworkID.ZETACHAIN, zrc20_address)

    def load_artifact(self, artifact: Mapping[str, Any]) -> int:
        """
        Register every ZRC20 listed in a persisted registry document.

        Args:
            artifact: Document produced by ``build_registry_artifact``

        Returns:
            Number of coins registered
        """
        count = 0
        for entry in artifact.values():
            for token in entry.get("zrc20Tokens", []):
                coin_type = CoinType.parse(token["coinType"])
                origin = token.get("originAddress") or ""
                if coin_type is not CoinType.GAS and is_zero(origin):
                    logger.warning(
                        f"Skipping {coin_type} token {token['symbol']} ({token['address']}): "
                        "no origin asset address"
                    )
                    continue
                native_asset = None if coin_type is CoinType.GAS else origin
                self.register(
                    ForeignCoin(
                        zrc20_address=Web3.to_checksum_address(token["address"]),
                        native_asset=native_asset,
                        chain_id=registry_chain_id(token["originChainId"]),
                        coin_type=coin_type,
                        decimals=int(token["decimals"]),
                        symbol=token["symbol"],
                        name=token.get("name", token["symbol"]),
                    )
                )
                count += 1
        logger.info(f"Loaded {count} foreign coins from registry artifact")
        return count

    def load_artifact_file(self, path: str | Path) -> int:
        with Path(path).open() as file:
            return self.load_artifact(json.load(file))

    def load_coin_list(self, coins: Sequence[Mapping[str, Any]]) -> int:
        """Register coins from a list of plain mappings (foreign coin dumps)."""
        count = 0
        for entry in coins:
            coin_type = CoinType.parse(entry["coin_type"])
            asset = entry.get("asset") or None
            if coin_type is not CoinType.GAS and (asset is None or is_zero(asset)):
                logger.warning(f"Skipping {coin_type} coin {entry['symbol']}: no origin asset address")
                continue
            self.register(
                ForeignCoin(
                    zrc20_address=Web3.to_checksum_address(entry["zrc20_contract_address"]),
                    native_asset=None if coin_type is CoinType.GAS else asset,
                    chain_id=str(entry["foreign_chain_id"]),
                    coin_type=coin_type,
                    decimals=int(entry["decimals"]),
                    symbol=entry["symbol"],
                    name=entry.get("name", entry["symbol"]),
                )
            )
            count += 1
        return count

    def to_artifact(self) -> dict[str, Any]:
        """Registry contents in the persisted document layout.

        Contract rows are only known to the core registry, so they are empty here.
        """
        chains = []
        tokens = []
        for coin in self._coins:
            chain_id = int(coin.chain_id)
            if coin.coin_type is CoinType.GAS:
                chains.append((True, chain_id, coin.zrc20_address, ZERO_ADDRESS))
            tokens.append(
                (
                    True,
                    coin.zrc20_address,
                    _origin_bytes(coin.native_asset),
                    chain_id,
                    coin.symbol,
                    coin.coin_type.value,
                    coin.decimals,
                )
            )
        return build_registry_artifact(chains, [], tokens)

    def get_stats(self) -> dict[str, Any]:
        per_chain: dict[str, int] = {}
        for coin in self._coins:
            per_chain[coin.chain_id] = per_chain.get(coin.chain_id, 0) + 1
        return {"coins": len(self._coins), "per_chain": per_chain, "frozen": self._frozen}


def is_zero(address: str) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def _origin_bytes(native_asset: str | None) -> bytes:
    """Core registry encoding of a native asset: raw EVM address bytes or UTF-8 text."""
    if not native_asset:
        return b""
    if Web3.is_address(native_asset):
        return bytes.fromhex(native_asset[2:])
    return native_asset.encode("utf-8")


def build_registry_artifact(
    chains: Sequence[Sequence[Any]],
    contracts: Sequence[Sequence[Any]],
    tokens: Sequence[Sequence[Any]],
) -> dict[str, Any]:
    """
    Assemble the persisted registry document from core registry reads.

    Args:
        chains: ``getAllChains`` rows ``(active, chainId, gasZRC20, registry)``
        contracts: ``getAllContracts`` rows ``(active, addressBytes, contractType, chainId)``
        tokens: ``getAllZRC20Tokens`` rows
            ``(active, address, originAddress, originChainId, symbol, coinType, decimals)``

    Returns:
        Mapping of chain id to ``{chainInfo, contracts, zrc20Tokens}``
    """
    artifact: dict[str, Any] = {}

    def entry(chain_id: int) -> dict[str, Any]:
        key = str(chain_id)
        if key not in artifact:
            artifact[key] = {"chainInfo": None, "contracts": [], "zrc20Tokens": []}
        return artifact[key]

    for active, chain_id, gas_zrc20, registry in chains:
        entry(chain_id)["chainInfo"] = {
            "active": bool(active),
            "chainId": int(chain_id),
            "gasZRC20": gas_zrc20,
            "registry": Web3.to_hex(registry) if isinstance(registry, (bytes, bytearray)) else registry,
        }

    for active, address_bytes, contract_type, chain_id in contracts:
        entry(chain_id)["contracts"].append(
            {
                "active": bool(active),
                "address": convert_address_bytes(address_bytes),
                "chainId": int(chain_id),
                "contractType": contract_type,
            }
        )

    for active, address, origin_address, origin_chain_id, symbol, coin_type, decimals in tokens:
        entry(origin_chain_id)["zrc20Tokens"].append(
            {
                "active": bool(active),
                "address": address,
                "coinType": coin_type,
                "decimals": int(decimals),
                "originAddress": convert_address_bytes(origin_address),
                "originChainId": int(origin_chain_id),
                "symbol": symbol,
            }
        )

    return artifact


def write_registry_artifact(artifact: Mapping[str, Any], path: str | Path) -> None:
    """Write the registry document as indented JSON."""
    with Path(path).open("w") as file:
        json.dump(artifact, file, indent=2)
    logger.info(f"Registry written to {path}")
