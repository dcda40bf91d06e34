"""
EVM side-chain adapter.

Observes GatewayEVM logs and performs outbound actions with the TSS account:
native transfers, custody releases, gateway calls and origin-side reverts.
"""

from typing import Any

from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.types import EventData, TxReceipt

from ..constants import EVM_GAS_LIMIT, ZERO_ADDRESS
from ..errors import ArbitraryCallError, EventValidationError, UnsupportedOperation
from ..models import CallOptions, CoinType, ForeignCoin, RevertOptions
from ..schemas import decode_event
from ..utils.contract_utility import ContractUtility, ordered_event_args
from ..utils.polling_event_listener import PollingEventListener
from ..utils.signer import TransactionSigner
from .base import ChainAdapter, EventCallback

GATEWAY_EVENTS = ["Called", "Deposited", "DepositedAndCalled"]


class EVMAdapter(ChainAdapter):
    """Adapter for an EVM chain connected to the hub."""

    is_evm = True

    def __init__(
        self,
        chain_id: str,
        contracts: ContractUtility,
        tss: TransactionSigner,
        gateway_address: str,
        custody_address: str | None = None,
        poll_interval: float = 1.0,
        lookback_blocks: int = 0,
    ):
        """
        Initialize the EVM adapter.

        Args:
            chain_id: Network id of the chain
            contracts: Contract utility bound to the chain endpoint
            tss: Signer for the TSS account that owns gateway and custody
            gateway_address: GatewayEVM address
            custody_address: ERC20Custody address
            poll_interval: Seconds between log polls
            lookback_blocks: Blocks replayed on startup
        """
        super().__init__(chain_id)
        self.contracts = contracts
        self.w3: AsyncWeb3 = contracts.w3
        self.tss = tss
        self.gateway: AsyncContract = contracts.contract("GatewayEVM", gateway_address)
        self.custody: AsyncContract | None = (
            contracts.contract("ERC20Custody", custody_address) if custody_address else None
        )
        self.poll_interval = poll_interval
        self.lookback_blocks = lookback_blocks
        self.listener: PollingEventListener | None = None

    def encode_sender(self, sender: str) -> bytes:
        return bytes.fromhex(sender[2:])

    def decode_recipient(self, receiver: bytes | str) -> str:
        if isinstance(receiver, str):
            return AsyncWeb3.to_checksum_address(receiver)
        raw = bytes(receiver)
        if len(raw) == 20:
            return AsyncWeb3.to_checksum_address(raw)
        # Hex text sent as bytes
        return AsyncWeb3.to_checksum_address(raw.decode("utf-8"))

    def revert_gas_limit(self, revert_options: RevertOptions) -> int:
        return revert_options.on_revert_gas_limit

    def _require_custody(self) -> AsyncContract:
        if self.custody is None:
            raise UnsupportedOperation(f"No ERC20 custody configured on {self.name}")
        return self.custody

    # Observation

    async def observe_inbound(self, on_event: EventCallback) -> None:
        self.listener = PollingEventListener(
            w3=self.w3,
            contract=self.gateway,
            event_names=GATEWAY_EVENTS,
            lookback_blocks=self.lookback_blocks,
            label=f"{self.name} GatewayEVM",
        )

        async def handle(event_name: str, log: EventData) -> None:
            try:
                event = decode_event(
                    event_name,
                    self.chain_id,
                    ordered_event_args("GatewayEVM", event_name, log["args"]),
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

    # Outbound

    async def check_selector(self, receiver: str, message: bytes) -> None:
        """
        Require the message's function selector in the receiver bytecode.

        Raises:
            ArbitraryCallError: If the selector is missing
        """
        selector = bytes(message[:4])
        if len(selector) < 4:
            raise ArbitraryCallError(f"Arbitrary call message too short for a selector: 0x{bytes(message).hex()}")
        code = await self.contracts.get_code(receiver)
        if selector not in code:
            raise ArbitraryCallError(f"Function selector 0x{selector.hex()} not found in {receiver} bytecode")

    async def execute(
        self,
        receiver: str,
        message: bytes,
        *,
        sender: str,
        call_options: CallOptions,
        amount: int = 0,
    ) -> TxReceipt:
        if call_options.is_arbitrary_call:
            await self.check_selector(receiver, message)
            context_sender = ZERO_ADDRESS
        else:
            context_sender = sender

        self.logger.info(
            f"Calling {receiver} through GatewayEVM.execute "
            f"(arbitrary={call_options.is_arbitrary_call}, value={amount})"
        )
        return await self.tss.transact(
            self.gateway.functions.execute((context_sender,), receiver, message),
            {"gas": call_options.gas_limit or EVM_GAS_LIMIT, "value": amount},
            description=f"{self.name} GatewayEVM.execute",
        )

    async def withdraw(self, recipient: str, amount: int, coin: ForeignCoin) -> TxReceipt:
        match coin.coin_type:
            case CoinType.GAS:
                self.logger.info(f"Transferring {amount} {coin.symbol} to {recipient} from TSS")
                return await self.tss.send_value(recipient, amount, description=f"{self.name} TSS transfer")
            case CoinType.ERC20:
                self.logger.info(f"Releasing {amount} {coin.symbol} to {recipient} from custody")
                return await self.tss.transact(
                    self._require_custody().functions.withdraw(recipient, coin.native_asset, amount),
                    {"gas": EVM_GAS_LIMIT},
                    description=f"{self.name} ERC20Custody.withdraw",
                )
            case _:
                raise UnsupportedOperation(f"Unsupported coin type {coin.coin_type} on {self.name}")

    async def withdraw_and_call(
        self,
        recipient: str,
        amount: int,
        coin: ForeignCoin,
        message: bytes,
        *,
        sender: str,
        call_options: CallOptions,
    ) -> TxReceipt:
        match coin.coin_type:
            case CoinType.GAS:
                return await self.execute(
                    recipient, message, sender=sender, call_options=call_options, amount=amount
                )
            case CoinType.ERC20:
                if call_options.is_arbitrary_call:
                    await self.check_selector(recipient, message)
                    context_sender = ZERO_ADDRESS
                else:
                    context_sender = sender
                self.logger.info(f"Releasing {amount} {coin.symbol} to {recipient} with call")
                return await self.tss.transact(
                    self._require_custody().functions.withdrawAndCall(
                        (context_sender,), recipient, coin.native_asset, amount, message
                    ),
                    {"gas": call_options.gas_limit or EVM_GAS_LIMIT},
                    description=f"{self.name} ERC20Custody.withdrawAndCall",
                )
            case _:
                raise UnsupportedOperation(f"Unsupported coin type {coin.coin_type} on {self.name}")

    async def execute_revert(
        self,
        *,
        amount: int,
        coin: ForeignCoin,
        sender: str,
        revert_options: RevertOptions,
    ) -> TxReceipt:
        revert_address = revert_options.revert_address
        is_gas = coin.coin_type is CoinType.GAS
        asset = ZERO_ADDRESS if is_gas else coin.native_asset
        gas = revert_options.on_revert_gas_limit or EVM_GAS_LIMIT

        if not revert_options.call_on_revert:
            self.logger.info(f"Returning {amount} {coin.symbol} to {revert_address}")
            if is_gas:
                return await self.tss.send_value(revert_address, amount, description=f"{self.name} revert transfer")
            return await self.tss.transact(
                self._require_custody().functions.withdraw(revert_address, asset, amount),
                {"gas": gas},
                description=f"{self.name} ERC20Custody.withdraw (revert)",
            )

        revert_context = (sender, asset, amount, revert_options.revert_message)
        self.logger.info(f"Contract {revert_address} executing onRevert with {amount} {coin.symbol}")
        if is_gas:
            return await self.tss.transact(
                self.gateway.functions.executeRevert(revert_address, b"", revert_context),
                {"gas": gas, "value": amount},
                description=f"{self.name} GatewayEVM.executeRevert",
            )
        return await self.tss.transact(
            self._require_custody().functions.withdrawAndRevert(
                revert_address, asset, amount, b"", revert_context
            ),
            {"gas": gas},
            description=f"{self.name} ERC20Custody.withdrawAndRevert",
        )

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["gateway"] = self.gateway.address
        if self.listener:
            status["listener"] = self.listener.get_status()
        return status
