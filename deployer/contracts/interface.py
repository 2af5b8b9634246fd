"""Contract interaction layer for the deployed Gateway contract."""

import logging
from typing import Any

from deployer.exceptions import ContractNotDeployed, QueryFailed, TransportError
from deployer.models.network import TokenConfig
from deployer.services.registry import NetworkRegistry
from deployer.services.transactions import Invoke, PendingTx, TransactionLifecycleManager, Upgrade
from deployer.validation import encode_short_string, validate_address

logger = logging.getLogger(__name__)

PROTOCOL_ADDRESS_KEYS = ("treasury", "aggregator")
TOKEN_SETTING_KEY = "token"


class ContractHandle:
    """Network-bound reference to the deployed Gateway."""

    def __init__(
        self,
        network_id: str,
        address: str,
        manager: TransactionLifecycleManager,
        abi: list | None = None,
    ):
        self.network_id = network_id
        self.address = validate_address(address)
        self.manager = manager
        self.abi = abi or []

    def __repr__(self) -> str:
        return f"ContractHandle({self.network_id!r}, {self.address!r})"

    async def invoke(self, method: str, args: list | tuple = ()) -> PendingTx:
        return await self.manager.submit(
            Invoke(self.address, method, list(args), self.abi)
        )

    async def call(self, method: str, args: list | tuple = ()) -> Any:
        try:
            return await self.manager.transport.call(self.address, self.abi, method, list(args))
        except TransportError as e:
            raise QueryFailed(f"{method} on {self.address} failed: {e}") from e

    async def class_hash(self) -> str:
        try:
            return await self.manager.transport.get_class_hash_at(self.address)
        except TransportError as e:
            raise QueryFailed(f"Could not fetch class hash of {self.address}: {e}") from e

    # --- Administration ---

    async def upgrade(self, new_class_hash: str) -> PendingTx:
        return await self.manager.submit(Upgrade(self.address, new_class_hash, self.abi))

    async def update_protocol_address(self, what: str, address: str) -> PendingTx:
        if what not in PROTOCOL_ADDRESS_KEYS:
            raise ValueError(f"Unknown protocol address {what!r}")
        return await self.invoke(
            "update_protocol_address", [encode_short_string(what), validate_address(address)]
        )

    async def set_token_supported(self, token_address: str, supported: bool = True) -> PendingTx:
        return await self.invoke(
            "setting_manager_bool",
            [encode_short_string(TOKEN_SETTING_KEY), token_address, 1 if supported else 0],
        )

    async def set_token_fee_settings(self, token: TokenConfig) -> PendingTx:
        return await self.invoke("set_token_fee_settings", [token.address, *token.fee_arguments()])

    # --- Queries ---

    async def owner(self) -> str:
        value = await self.call("owner")
        return hex(value) if isinstance(value, int) else str(value)

    async def is_token_supported(self, token_address: str) -> bool:
        return bool(await self.call("is_token_supported", [token_address]))


def resolve_contract(
    registry: NetworkRegistry,
    network_id: str,
    manager: TransactionLifecycleManager,
    abi: list | None = None,
    address: str | None = None,
) -> ContractHandle:
    """Bind to an explicit address, else to the network's recorded deployment."""
    address = address or registry.deployed_address(network_id)
    if not address:
        raise ContractNotDeployed(network_id)
    return ContractHandle(network_id, address, manager, abi)
