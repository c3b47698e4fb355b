"""Exception types.

Everything raised here, except ReceiptWaitError, aborts a run before any batch
is attempted. ReceiptWaitError is caught by the engine and recorded against
the batch being waited on.
"""


class UsageCommitError(Exception):
    """Base class for errors raised by usage_commit."""


class ConfigError(UsageCommitError):
    """Configuration is missing or invalid."""


class SigningKeyError(ConfigError):
    """The signing private key could not be parsed."""


class ChainConnectionError(UsageCommitError):
    """The chain node could not be reached."""


class ContractInterfaceError(UsageCommitError):
    """The contract ABI or address is unusable."""


class RunSetupError(UsageCommitError):
    """Run-level chain state (nonce, gas price, chain id) could not be read."""


class RecordError(UsageCommitError, ValueError):
    """A usage record could not be parsed or converted."""


class ReceiptWaitError(UsageCommitError):
    """Transport error while polling for a transaction receipt."""

    def __init__(self, tx_hash: str, cause: BaseException):
        self.tx_hash = tx_hash
        self.cause = cause
        super().__init__(f"receipt poll failed for {tx_hash}: {cause.__class__.__name__}: {cause}")
