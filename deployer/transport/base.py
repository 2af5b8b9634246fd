"""Transport interface consumed by the transaction lifecycle manager."""

import enum
from dataclasses import dataclass
from typing import Any, Protocol

from deployer.contracts.artifacts import CompiledContract


class TxStatus(str, enum.Enum):
    pending = "PENDING"
    accepted_on_l2 = "ACCEPTED_ON_L2"
    accepted_on_l1 = "ACCEPTED_ON_L1"
    reverted = "REVERTED"
    rejected = "REJECTED"


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    status: TxStatus
    failure_reason: str | None = None
    block_number: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not TxStatus.pending

    @property
    def succeeded(self) -> bool:
        return self.status in (TxStatus.accepted_on_l2, TxStatus.accepted_on_l1)


@dataclass(frozen=True)
class Submitted:
    """What the network handed back when it accepted a transaction."""

    tx_hash: str
    class_hash: str | None = None
    contract_address: str | None = None


class Transport(Protocol):
    """Network-bound RPC adapter.

    Implementations raise :class:`deployer.exceptions.TransportError` when the
    endpoint refuses a request.
    """

    def compute_class_hash(self, contract: CompiledContract) -> str: ...

    async def is_declared(self, class_hash: str) -> bool: ...

    async def declare(self, contract: CompiledContract) -> Submitted: ...

    async def deploy(self, class_hash: str, abi: list, constructor_args: list) -> Submitted: ...

    async def invoke(self, address: str, abi: list, method: str, args: list) -> Submitted: ...

    async def call(self, address: str, abi: list, method: str, args: list) -> Any: ...

    async def get_receipt(self, tx_hash: str) -> TransactionReceipt | None: ...

    async def get_class_hash_at(self, address: str) -> str: ...
