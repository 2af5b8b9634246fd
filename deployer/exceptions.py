"""Error taxonomy for the gateway deployment tooling."""


class DeployerError(Exception):
    """Base class for every error raised by the deployer."""


class ConfigurationError(DeployerError):
    """Missing environment, malformed network store, bad fee value.

    Always raised before any transaction is submitted.
    """


class UnknownNetwork(ConfigurationError, KeyError):
    def __init__(self, network_id: str, known: list[str] | None = None):
        self.network_id = network_id
        self.known = known or []
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Network {network_id} not found in configuration{hint}")

    def __str__(self) -> str:
        # KeyError quotes its message otherwise
        return self.args[0]


class ContractNotDeployed(ConfigurationError):
    def __init__(self, network_id: str):
        self.network_id = network_id
        super().__init__(
            f"Gateway contract address not found for {network_id}. "
            "Deploy first or pass --address."
        )


class ArtifactNotBuilt(ConfigurationError, FileNotFoundError):
    pass


class OperatorAborted(ConfigurationError):
    pass


class TransportError(DeployerError):
    """Raised by transport adapters when the RPC endpoint refuses a request."""


class SubmissionRejected(DeployerError):
    pass


class ConfirmationTimeout(DeployerError):
    def __init__(self, tx_hash: str, waited: float):
        self.tx_hash = tx_hash
        self.waited = waited
        super().__init__(f"Transaction {tx_hash} not final after {waited:.1f}s")


class TransactionReverted(DeployerError):
    def __init__(self, tx_hash: str, reason: str | None):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"Transaction {tx_hash} reverted: {reason or 'no reason given'}")


class QueryFailed(DeployerError):
    pass


class PersistenceConflict(DeployerError):
    pass


class VerificationFailed(DeployerError):
    pass


class PipelineFailed(DeployerError):
    """A required pipeline step failed; carries where and why."""

    def __init__(
        self,
        pipeline: str,
        step: str,
        network_id: str,
        cause: Exception,
        tx_hash: str | None = None,
    ):
        self.pipeline = pipeline
        self.step = step
        self.network_id = network_id
        self.cause = cause
        self.tx_hash = tx_hash or getattr(cause, "tx_hash", None)
        message = f"{pipeline} failed at step '{step}' on {network_id}: {cause}"
        if self.tx_hash:
            message += f" (tx: {self.tx_hash})"
        super().__init__(message)
