"""starknet-py backed transport for a single network."""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any

import aiohttp
from starknet_py.common import create_casm_class, create_sierra_compiled_contract
from starknet_py.contract import Contract
from starknet_py.hash.casm_class_hash import compute_casm_class_hash
from starknet_py.hash.sierra_class_hash import compute_sierra_class_hash
from starknet_py.net.account.account import Account
from starknet_py.net.client_errors import ClientError
from starknet_py.net.client_models import TransactionExecutionStatus, TransactionFinalityStatus
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.signer.stark_curve_signer import KeyPair
from starknet_py.proxy.contract_abi_resolver import AbiNotFoundError, ProxyResolutionError

from deployer.contracts.artifacts import CompiledContract
from deployer.exceptions import ConfigurationError, TransportError
from deployer.transport.base import Submitted, TransactionReceipt, TxStatus
from deployer.validation import encode_short_string, to_felt

logger = logging.getLogger(__name__)

# Starknet JSON-RPC error codes
CLASS_HASH_NOT_FOUND = 28
TXN_HASH_NOT_FOUND = 29

# Node unreachable, dropped connection, slow endpoint
_NODE_ERRORS = (ClientError, aiohttp.ClientError, asyncio.TimeoutError, OSError)

# Plus: fee estimation, ABI lookup of an address, malformed calldata or class files
_SUBMIT_ERRORS = (*_NODE_ERRORS, AbiNotFoundError, ProxyResolutionError, KeyError, ValueError, TypeError)


@contextmanager
def _transport_errors(what: str, errors: tuple = _SUBMIT_ERRORS):
    try:
        yield
    except errors as e:
        raise TransportError(f"{what}: {e}") from e


def _calldata(args: list) -> list:
    """Hex strings become felts; everything else is passed as-is."""
    return [to_felt(a) if isinstance(a, str) and a.lower().startswith("0x") else a for a in args]


def _status_name(value) -> str:
    return getattr(value, "value", value)


class StarknetTransport:
    def __init__(
        self,
        network_id: str,
        rpc_url: str,
        account_address: str | None = None,
        private_key: str | None = None,
    ):
        self.network_id = network_id
        self.client = FullNodeClient(node_url=rpc_url)
        self._account = None
        if account_address and private_key:
            self._account = Account(
                address=to_felt(account_address),
                client=self.client,
                key_pair=KeyPair.from_private_key(to_felt(private_key)),
                chain=encode_short_string(network_id),
            )

    @property
    def account(self) -> Account:
        if self._account is None:
            raise ConfigurationError("No deployer account configured")
        return self._account

    async def _contract(self, address: str, abi: list, provider) -> Contract:
        if abi:
            return Contract(address=to_felt(address), abi=abi, provider=provider, cairo_version=1)
        return await Contract.from_address(address=to_felt(address), provider=provider)

    def compute_class_hash(self, contract: CompiledContract) -> str:
        with _transport_errors(f"class hash of {contract.name}"):
            sierra = create_sierra_compiled_contract(compiled_contract=contract.sierra_json())
            return hex(compute_sierra_class_hash(sierra))

    async def is_declared(self, class_hash: str) -> bool:
        try:
            await self.client.get_class_by_hash(class_hash=to_felt(class_hash))
        except ClientError as e:
            if e.code == CLASS_HASH_NOT_FOUND:
                return False
            raise TransportError(str(e)) from e
        except _NODE_ERRORS as e:
            raise TransportError(f"get_class_by_hash: {e}") from e
        return True

    async def declare(self, contract: CompiledContract) -> Submitted:
        with _transport_errors(f"declare {contract.name}"):
            casm_hash = compute_casm_class_hash(create_casm_class(contract.casm_json()))
            result = await Contract.declare_v3(
                account=self.account,
                compiled_contract=contract.sierra_json(),
                compiled_class_hash=casm_hash,
                auto_estimate=True,
            )
        return Submitted(tx_hash=hex(result.hash), class_hash=hex(result.class_hash))

    async def deploy(self, class_hash: str, abi: list, constructor_args: list) -> Submitted:
        with _transport_errors("deploy"):
            result = await Contract.deploy_contract_v3(
                account=self.account,
                class_hash=to_felt(class_hash),
                abi=abi,
                constructor_args=_calldata(constructor_args),
                auto_estimate=True,
            )
        return Submitted(
            tx_hash=hex(result.hash),
            class_hash=class_hash,
            contract_address=hex(result.deployed_contract.address),
        )

    async def invoke(self, address: str, abi: list, method: str, args: list) -> Submitted:
        with _transport_errors(method):
            contract = await self._contract(address, abi, self.account)
            result = await contract.functions[method].invoke_v3(*_calldata(args), auto_estimate=True)
        return Submitted(tx_hash=hex(result.hash), contract_address=address)

    async def call(self, address: str, abi: list, method: str, args: list) -> Any:
        with _transport_errors(method):
            contract = await self._contract(address, abi, self.client)
            result = await contract.functions[method].call(*_calldata(args))
        return result[0] if len(result) == 1 else tuple(result)

    async def _rejected(self, tx_hash: str) -> TransactionReceipt | None:
        """Receipt-less transactions are either still propagating or were rejected."""
        try:
            status = await self.client.get_transaction_status(tx_hash=to_felt(tx_hash))
        except ClientError as e:
            if e.code == TXN_HASH_NOT_FOUND:
                return None
            raise TransportError(str(e)) from e
        except _NODE_ERRORS as e:
            raise TransportError(f"get_transaction_status: {e}") from e

        if _status_name(status.finality_status) == "REJECTED":
            return TransactionReceipt(
                tx_hash=tx_hash,
                status=TxStatus.rejected,
                failure_reason=getattr(status, "failure_reason", None) or "rejected by the sequencer",
            )
        return None

    async def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        try:
            receipt = await self.client.get_transaction_receipt(tx_hash=to_felt(tx_hash))
        except ClientError as e:
            if e.code == TXN_HASH_NOT_FOUND:
                return await self._rejected(tx_hash)
            raise TransportError(str(e)) from e
        except _NODE_ERRORS as e:
            raise TransportError(f"get_transaction_receipt: {e}") from e

        if receipt.execution_status == TransactionExecutionStatus.REVERTED:
            status = TxStatus.reverted
        elif receipt.finality_status == TransactionFinalityStatus.ACCEPTED_ON_L1:
            status = TxStatus.accepted_on_l1
        elif receipt.finality_status == TransactionFinalityStatus.ACCEPTED_ON_L2:
            status = TxStatus.accepted_on_l2
        else:
            status = TxStatus.pending
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            failure_reason=receipt.revert_reason,
            block_number=receipt.block_number,
        )

    async def get_class_hash_at(self, address: str) -> str:
        with _transport_errors("get_class_hash_at", _NODE_ERRORS):
            return hex(await self.client.get_class_hash_at(contract_address=to_felt(address)))


def build_transport(network_id: str, rpc_url: str, settings) -> StarknetTransport:
    return StarknetTransport(
        network_id,
        rpc_url,
        account_address=settings.deployer_address or None,
        private_key=settings.deployer_private_key or None,
    )
