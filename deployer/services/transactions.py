"""Transaction lifecycle: submit declare/deploy/upgrade/invoke and wait for finality.

Every state-changing step goes through :class:`TransactionLifecycleManager`,
which turns transport refusals into ``SubmissionRejected`` and blocks the
calling flow in a bounded poll loop until the receipt is terminal:

- accepted on L2/L1 -> the receipt is returned
- reverted/rejected -> ``TransactionReverted`` (never retried here)
- deadline elapsed  -> ``ConfirmationTimeout``
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from deployer.contracts.artifacts import CompiledContract
from deployer.exceptions import (
    ConfirmationTimeout,
    SubmissionRejected,
    TransactionReverted,
    TransportError,
)
from deployer.transport.base import Submitted, TransactionReceipt, Transport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeclareClass:
    contract: CompiledContract


@dataclass(frozen=True)
class DeployInstance:
    class_hash: str
    constructor_args: list = field(default_factory=list)
    abi: list = field(default_factory=list)


@dataclass(frozen=True)
class Upgrade:
    contract_address: str
    class_hash: str
    abi: list = field(default_factory=list)


@dataclass(frozen=True)
class Invoke:
    contract_address: str
    method: str
    args: list = field(default_factory=list)
    abi: list = field(default_factory=list)


Operation = DeclareClass | DeployInstance | Upgrade | Invoke


@dataclass(frozen=True)
class PendingTx:
    """Handle of an accepted (or skipped) operation.

    ``tx_hash`` is None only for a declare whose class was already known to
    the network; there is nothing to wait for in that case.
    """

    network_id: str
    kind: str
    tx_hash: str | None
    class_hash: str | None = None
    contract_address: str | None = None
    already_declared: bool = False

    @property
    def submitted(self) -> bool:
        return self.tx_hash is not None


@dataclass(frozen=True)
class FinalityPolicy:
    max_wait: float = 600.0
    poll_interval: float = 5.0


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class TransactionLifecycleManager:
    def __init__(
        self,
        network_id: str,
        transport: Transport,
        policy: FinalityPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.network_id = network_id
        self.transport = transport
        self.policy = policy or FinalityPolicy()
        self._sleep = sleep
        self._clock = clock

    async def submit(self, operation: Operation) -> PendingTx:
        if isinstance(operation, DeclareClass):
            return await self._declare_if_absent(operation.contract)

        kind = type(operation).__name__
        try:
            if isinstance(operation, DeployInstance):
                result = await self.transport.deploy(
                    operation.class_hash, operation.abi, list(operation.constructor_args)
                )
            elif isinstance(operation, Upgrade):
                result = await self.transport.invoke(
                    operation.contract_address, operation.abi, "upgrade", [operation.class_hash]
                )
                result = Submitted(result.tx_hash, class_hash=operation.class_hash,
                                   contract_address=operation.contract_address)
            elif isinstance(operation, Invoke):
                result = await self.transport.invoke(
                    operation.contract_address, operation.abi, operation.method, list(operation.args)
                )
                result = Submitted(result.tx_hash, contract_address=operation.contract_address)
            else:
                raise TypeError(f"Unsupported operation: {operation!r}")
        except TransportError as e:
            raise SubmissionRejected(f"{kind} rejected by {self.network_id}: {e}") from e

        logger.info(
            "%s submitted on %s: %s", kind, self.network_id, result.tx_hash,
            extra={"network": self.network_id, "tx_hash": result.tx_hash},
        )
        return PendingTx(
            network_id=self.network_id,
            kind=kind,
            tx_hash=result.tx_hash,
            class_hash=result.class_hash,
            contract_address=result.contract_address,
        )

    async def _declare_if_absent(self, contract: CompiledContract) -> PendingTx:
        try:
            class_hash = self.transport.compute_class_hash(contract)
            if await self.transport.is_declared(class_hash):
                logger.info(
                    "Class %s of %s already declared on %s, skipping declare",
                    class_hash, contract.name, self.network_id,
                    extra={"network": self.network_id},
                )
                return PendingTx(
                    network_id=self.network_id,
                    kind="DeclareClass",
                    tx_hash=None,
                    class_hash=class_hash,
                    already_declared=True,
                )
            result = await self.transport.declare(contract)
        except TransportError as e:
            raise SubmissionRejected(f"DeclareClass rejected by {self.network_id}: {e}") from e

        logger.info(
            "DeclareClass submitted on %s: %s (class %s)",
            self.network_id, result.tx_hash, result.class_hash or class_hash,
            extra={"network": self.network_id, "tx_hash": result.tx_hash},
        )
        return PendingTx(
            network_id=self.network_id,
            kind="DeclareClass",
            tx_hash=result.tx_hash,
            class_hash=result.class_hash or class_hash,
        )

    async def await_finality(
        self, pending: PendingTx, policy: FinalityPolicy | None = None
    ) -> TransactionReceipt:
        policy = policy or self.policy
        if not pending.submitted:
            raise ValueError(f"{pending.kind} was not submitted; nothing to wait for")

        tx_hash = pending.tx_hash
        if policy.max_wait <= 0:
            raise ConfirmationTimeout(tx_hash, 0.0)

        start = self._clock()
        deadline = start + policy.max_wait
        logger.info("Waiting for transaction: %s", tx_hash,
                    extra={"network": self.network_id, "tx_hash": tx_hash})

        while True:
            receipt = None
            try:
                receipt = await self.transport.get_receipt(tx_hash)
            except TransportError as e:
                logger.debug("Receipt poll for %s failed: %s", tx_hash, e)

            if receipt is not None and receipt.is_terminal:
                if not receipt.succeeded:
                    raise TransactionReverted(tx_hash, receipt.failure_reason)
                logger.info("Transaction confirmed: %s (%s)", tx_hash, receipt.status.value,
                            extra={"network": self.network_id, "tx_hash": tx_hash})
                return receipt

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ConfirmationTimeout(tx_hash, self._clock() - start)
            await self._sleep(min(policy.poll_interval, remaining))

    async def execute(
        self,
        operation: Operation,
        on_submitted: Callable[[PendingTx], None] | None = None,
    ) -> tuple[PendingTx, TransactionReceipt | None]:
        """Submit and wait; the receipt is None when nothing had to be submitted.

        ``on_submitted`` sees the pending transaction before the wait starts.
        """
        pending = await self.submit(operation)
        if not pending.submitted:
            return pending, None
        if on_submitted is not None:
            on_submitted(pending)
        return pending, await self.await_finality(pending)
