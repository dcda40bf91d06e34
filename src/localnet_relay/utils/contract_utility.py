import json
from functools import cache
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.middleware import SignAndSendRawMiddlewareBuilder

CONTRACTS_DIR = Path(__file__).resolve().parent.parent / "contracts"

Account.enable_unaudited_hdwallet_features()


class ContractUtility:
    """
    Utility for contract interaction and ABI loading on one EVM endpoint.

    Local accounts passed in are registered with the signing middleware, so
    ``transact`` calls from their addresses are signed locally while any other
    ``from`` address (an impersonated module account) is left to the node.
    """

    def __init__(self, rpc_url: str, accounts: list[LocalAccount] | None = None):
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: HTTP RPC endpoint
            accounts: Local accounts used to sign transactions
        """
        self.rpc_url = rpc_url
        self.accounts = list(accounts or [])
        self.w3 = self.setup_web3_middleware(self.accounts)

    def setup_web3_middleware(self, accounts: list[LocalAccount]) -> AsyncWeb3:
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
        if accounts:
            w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(accounts))
        return w3

    def contract(self, contract_name: str, address: str) -> AsyncContract:
        """Bind a contract instance by ABI name."""
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address),
            abi=get_contract_abi(contract_name),
        )

    async def impersonate(self, address: str) -> None:
        """Unlock ``address`` on an anvil node so the node signs for it."""
        await self.w3.provider.make_request("anvil_impersonateAccount", [address])

    async def get_code(self, address: str) -> bytes:
        return bytes(await self.w3.eth.get_code(AsyncWeb3.to_checksum_address(address)))


@cache
def get_contract_abi(contract_name: str) -> list:
    """Fetches ABI of the given contract from the contracts folder"""
    contract_path = (CONTRACTS_DIR / f"{contract_name}.json").resolve()

    with contract_path.open() as file:
        contract_data = json.load(file)

    return contract_data["abi"]


def derive_account(mnemonic: str, path: str) -> LocalAccount:
    """Derive a local account from a BIP-39 mnemonic and derivation path."""
    return Account.from_mnemonic(mnemonic, account_path=path)


def event_input_names(contract_name: str, event_name: str) -> list[str]:
    """Names of an event's inputs in ABI (wire) order."""
    for item in get_contract_abi(contract_name):
        if item.get("type") == "event" and item.get("name") == event_name:
            return [inp["name"] for inp in item["inputs"]]
    raise ValueError(f"Event {event_name} not found in {contract_name} ABI")


def ordered_event_args(contract_name: str, event_name: str, args: dict) -> tuple:
    """Event arguments as a positional tuple in wire order.

    Decoded logs list indexed arguments first, so the ABI order is restored here.
    """
    return tuple(args[name] for name in event_input_names(contract_name, event_name))
