"""
Hub chain adapter.

Wraps the hub gateway (GatewayZEVM), ZRC20 tokens, the AMM router and the
core registry. Hub-side writes are sent by the fungible module account.
"""

from typing import Any

from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.types import EventData, TxReceipt

from ..constants import HUB_GAS_LIMIT, SWAP_DEADLINE_SECONDS, NetworkID
from ..errors import EventValidationError
from ..models import MessageContext
from ..schemas import decode_event
from ..utils.contract_utility import ContractUtility, ordered_event_args
from ..utils.polling_event_listener import PollingEventListener
from ..utils.signer import TransactionSigner
from .base import ChainAdapter, EventCallback

HUB_EVENTS = ["Called", "Withdrawn", "WithdrawnAndCalled"]


class HubAdapter(ChainAdapter):
    """Reads and writes on the hub chain."""

    is_evm = True

    def __init__(
        self,
        contracts: ContractUtility,
        signer: TransactionSigner,
        gateway_address: str,
        router_address: str | None = None,
        wzeta_address: str | None = None,
        core_registry_address: str | None = None,
        poll_interval: float = 1.0,
        lookback_blocks: int = 0,
    ):
        """
        Initialize the hub adapter.

        Args:
            contracts: Contract utility bound to the hub endpoint
            signer: Fungible module signer
            gateway_address: GatewayZEVM address
            router_address: Uniswap V2 router used for gas-cover swaps
            wzeta_address: Wrapped hub native token
            core_registry_address: Core registry contract
            poll_interval: Seconds between log polls
            lookback_blocks: Blocks replayed on startup
        """
        super().__init__(NetworkID.ZETACHAIN)
        self.contracts = contracts
        self.w3: AsyncWeb3 = contracts.w3
        self.signer = signer
        self.gateway: AsyncContract = contracts.contract("GatewayZEVM", gateway_address)
        self.router: AsyncContract | None = (
            contracts.contract("UniswapV2Router02", router_address) if router_address else None
        )
        self.wzeta = AsyncWeb3.to_checksum_address(wzeta_address) if wzeta_address else None
        self.core_registry: AsyncContract | None = (
            contracts.contract("CoreRegistry", core_registry_address) if core_registry_address else None
        )
        self.poll_interval = poll_interval
        self.lookback_blocks = lookback_blocks
        self.listener: PollingEventListener | None = None
        self._zrc20: dict[str, AsyncContract] = {}

    def zrc20(self, address: str) -> AsyncContract:
        key = address.lower()
        if key not in self._zrc20:
            self._zrc20[key] = self.contracts.contract("ZRC20", address)
        return self._zrc20[key]

    def encode_sender(self, sender: str) -> bytes:
        return bytes.fromhex(sender[2:])

    # Observation

    async def observe_inbound(self, on_event: EventCallback) -> None:
        self.listener = PollingEventListener(
            w3=self.w3,
            contract=self.gateway,
            event_names=HUB_EVENTS,
            lookback_blocks=self.lookback_blocks,
            label="GatewayZEVM",
        )

        async def handle(event_name: str, log: EventData) -> None:
            try:
                event = decode_event(
                    event_name,
                    self.chain_id,
                    ordered_event_args("GatewayZEVM", event_name, log["args"]),
                    tx_hash=AsyncWeb3.to_hex(log["transactionHash"]),
                )
            except (EventValidationError, KeyError) as e:
                self.logger.error(f"Dropping malformed {event_name} log: {e}")
                return
            await on_event(event)

        await self.listener.start_polling(handle, interval=self.poll_interval)

    async def stop(self) -> None:
        if self.listener:
            await self.listener.stop()

    # Forward actions

    async def deposit(self, zrc20: str, amount: int, receiver: str) -> TxReceipt:
        """Mint ``amount`` of ``zrc20`` to ``receiver``."""
        receipt = await self.signer.transact(
            self.gateway.functions.deposit(zrc20, amount, receiver),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.deposit",
        )
        self.logger.info(f"Deposited {amount} of {zrc20} to {receiver}")
        return receipt

    async def deposit_and_call(
        self, context: MessageContext, zrc20: str, amount: int, receiver: str, message: bytes
    ) -> TxReceipt:
        """Mint ``amount`` of ``zrc20`` to ``receiver`` and call its ``onCall`` hook."""
        self.logger.info(f"Universal contract {receiver} executing onCall (context: {context})")
        receipt = await self.signer.transact(
            self.gateway.functions.depositAndCall(context.as_tuple(), zrc20, amount, receiver, message),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.depositAndCall",
        )
        await self.log_contract_events(receiver, receipt, "onCall")
        return receipt

    async def execute_call(
        self, context: MessageContext, zrc20: str, receiver: str, message: bytes
    ) -> TxReceipt:
        """Call ``receiver``'s ``onCall`` hook without value."""
        self.logger.info(f"Universal contract {receiver} executing onCall (context: {context})")
        receipt = await self.signer.transact(
            self.gateway.functions.execute(context.as_tuple(), zrc20, 0, receiver, message),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.execute",
        )
        await self.log_contract_events(receiver, receipt, "onCall")
        return receipt

    # Fallback actions

    async def execute_hub_revert(self, revert_address: str, revert_context: tuple) -> TxReceipt:
        """Invoke ``onRevert`` on a hub contract without moving assets."""
        receipt = await self.signer.transact(
            self.gateway.functions.executeRevert(revert_address, revert_context),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.executeRevert",
        )
        await self.log_contract_events(revert_address, receipt, "onRevert")
        return receipt

    async def deposit_and_revert(
        self, zrc20: str, amount: int, revert_address: str, revert_context: tuple
    ) -> TxReceipt:
        """Return ``amount`` of ``zrc20`` to a hub contract and invoke its ``onRevert``."""
        receipt = await self.signer.transact(
            self.gateway.functions.depositAndRevert(zrc20, amount, revert_address, revert_context),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.depositAndRevert",
        )
        await self.log_contract_events(revert_address, receipt, "onRevert")
        return receipt

    async def transfer_zrc20(self, zrc20: str, to: str, amount: int) -> TxReceipt:
        """Transfer ZRC20 held by the fungible module."""
        self.logger.info(f"Transferring {amount} of {zrc20} to {to}")
        return await self.signer.transact(
            self.zrc20(zrc20).functions.transfer(to, amount),
            {"gas": HUB_GAS_LIMIT},
            description="ZRC20.transfer",
        )

    async def execute_abort(self, abort_address: str, abort_context: tuple) -> TxReceipt:
        """Invoke ``onAbort`` on ``abort_address``."""
        receipt = await self.signer.transact(
            self.gateway.functions.executeAbort(abort_address, abort_context),
            {"gas": HUB_GAS_LIMIT},
            description="GatewayZEVM.executeAbort",
        )
        await self.log_contract_events(abort_address, receipt, "onAbort")
        return receipt

    # Quotes and swaps

    async def withdraw_gas_fee(self, zrc20: str, gas_limit: int) -> tuple[str, int]:
        """Gas token and fee a withdrawal of ``zrc20`` with ``gas_limit`` costs."""
        gas_zrc20, gas_fee = await self.zrc20(zrc20).functions.withdrawGasFeeWithGasLimit(gas_limit).call()
        return AsyncWeb3.to_checksum_address(gas_zrc20), int(gas_fee)

    def _require_router(self) -> AsyncContract:
        if self.router is None or self.wzeta is None:
            raise RuntimeError("Hub router and WZETA addresses are required for gas-cover swaps")
        return self.router

    async def get_amounts_in(self, amount_out: int, path: list[str]) -> list[int]:
        router = self._require_router()
        return [int(a) for a in await router.functions.getAmountsIn(amount_out, path).call()]

    async def approve(self, zrc20: str, spender: str, amount: int) -> TxReceipt:
        return await self.signer.transact(
            self.zrc20(zrc20).functions.approve(spender, amount),
            {"gas": HUB_GAS_LIMIT},
            description="ZRC20.approve",
        )

    async def swap_tokens_for_exact_tokens(
        self, amount_out: int, amount_in_max: int, path: list[str], to: str
    ) -> TxReceipt:
        router = self._require_router()
        deadline = await self._deadline()
        return await self.signer.transact(
            router.functions.swapTokensForExactTokens(amount_out, amount_in_max, path, to, deadline),
            {"gas": HUB_GAS_LIMIT},
            description="UniswapV2Router02.swapTokensForExactTokens",
        )

    async def _deadline(self) -> int:
        block = await self.w3.eth.get_block("latest")
        return int(block["timestamp"]) + SWAP_DEADLINE_SECONDS

    # Registry

    async def read_core_registry(self) -> tuple[list, list, list]:
        """Raw ``(chains, contracts, tokens)`` rows of the core registry."""
        if self.core_registry is None:
            raise RuntimeError("Core registry address is not configured")
        functions = self.core_registry.functions
        chains = await functions.getAllChains().call()
        contracts = await functions.getAllContracts().call()
        tokens = await functions.getAllZRC20Tokens().call()
        return chains, contracts, tokens

    async def log_contract_events(self, address: str, receipt: TxReceipt, hook: str) -> None:
        """Log events ``address`` emitted in the receipt's transaction."""
        target = address.lower()
        for entry in receipt.get("logs", []):
            if str(entry.get("address", "")).lower() == target:
                self.logger.info(f"Event from {hook}: topics={[AsyncWeb3.to_hex(t) for t in entry['topics']]}")

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["gateway"] = self.gateway.address
        if self.listener:
            status["listener"] = self.listener.get_status()
        return status
