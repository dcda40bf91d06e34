"""
Exception hierarchy for the relay engine.

Configuration errors drop a single event, transient errors are retried by the
polling layer, execution errors drive the revert/abort protocol and terminal
failures mark the end of the fallback chain.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class ConfigurationError(RelayError):
    """A static setup problem. The affected event is dropped, never retried."""


class RegistryLookupError(ConfigurationError):
    """No (or an ambiguous) foreign coin entry matched a lookup."""

    def __init__(self, chain_id: str, asset: str | None, reason: str = "not found"):
        self.chain_id = chain_id
        self.asset = asset
        super().__init__(f"Foreign coin {reason} for asset {asset!r} on chain {chain_id}")


class EventValidationError(ConfigurationError):
    """An observed event did not match its wire shape."""


class TransientChainError(RelayError):
    """Retriable chain client failure such as an RPC timeout."""


class ExecutionError(RelayError):
    """A destination transaction reverted or was rejected."""


class ArbitraryCallError(ExecutionError):
    """Function selector of an arbitrary call is absent from the target bytecode."""


class UnsupportedOperation(ExecutionError):
    """The adapter cannot perform the requested primitive for this asset."""


class TerminalFailure(RelayError):
    """The abort step itself failed. Nothing further is attempted."""


class JsonRpcError(ExecutionError):
    """Error object returned by a JSON-RPC endpoint."""

    def __init__(self, method: str, error: object):
        self.method = method
        self.error = error
        super().__init__(f"RPC {method} failed: {error}")
