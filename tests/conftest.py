"""Shared fixtures: an in-memory Starknet transport and a temporary network store."""

import json

import pytest

from deployer.config import Settings
from deployer.contracts.artifacts import CompiledContract
from deployer.exceptions import TransportError
from deployer.services.confirmation import AutoConfirm
from deployer.services.persistence import ConfigPersistence
from deployer.services.pipelines import PipelineContext
from deployer.services.registry import NetworkRegistry
from deployer.services.transactions import FinalityPolicy, TransactionLifecycleManager
from deployer.transport.base import Submitted, TransactionReceipt, TxStatus

DEPLOYER = "0xde910e4"
TREASURY = "0x7ea5"
AGGREGATOR = "0xa66"
CLASS_HASH = "0xc1a55"
NEW_ADDRESS = "0xabc"
MAINNET_GATEWAY = "0x06ff3a3b1532da65594fc98f9ca7200af6c3dbaf37e7339b0ebd3b3f2390c583"

STRK = "0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d"
ETH = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
USDC = "0x053c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8"

GATEWAY_ABI = [
    {"type": "function", "name": "owner", "inputs": [], "outputs": [{"type": "core::starknet::contract_address::ContractAddress"}]},
]


def _token(address, fx_provider=500):
    return {
        "address": address,
        "local": {"senderToProvider": 50000, "providerToAggregator": 50000},
        "fx": {"senderToAggregator": 0, "providerToAggregator": fx_provider},
    }


def sample_store() -> dict:
    return {
        "SN_MAIN": {
            "rpcUrl": "https://mainnet.example/rpc",
            "explorerUrl": "https://starkscan.co",
            "supportedTokens": {"USDC": _token(USDC)},
            "deployedAddress": MAINNET_GATEWAY,
        },
        "SN_SEPOLIA": {
            "rpcUrl": "https://sepolia.example/rpc",
            "explorerUrl": "https://sepolia.starkscan.co",
            "supportedTokens": {
                "STRK": _token(STRK),
                "ETH": _token(ETH),
                "USDC": _token(USDC, fx_provider=250),
            },
        },
    }


class FakeTransport:
    """Scriptable stand-in for a Starknet node.

    Every transaction is accepted and finalizes on its first receipt poll
    unless told otherwise through ``reject_args`` (submission refused),
    ``revert_args`` (reverts on-chain) or ``never_final`` (stays pending).
    """

    def __init__(self):
        self.class_hash = CLASS_HASH
        self.deploy_address = NEW_ADDRESS
        self.declared: set[str] = set()
        self.calls: list[tuple] = []
        self.call_results: dict = {}
        self.call_errors: set[str] = set()
        self.reject_args: set = set()
        self.revert_args: set = set()
        self.reject_deploy = False
        self.never_final = False
        self.reverted: set[str] = set()
        self.receipt_polls = 0
        self._counter = 0

    def _next_hash(self) -> str:
        self._counter += 1
        return hex(0x1000 + self._counter)

    def invoked(self, method: str | None = None) -> list[tuple]:
        return [c for c in self.calls if c[0] == "invoke" and (method is None or c[2] == method)]

    def compute_class_hash(self, contract):
        return self.class_hash

    async def is_declared(self, class_hash):
        return class_hash in self.declared

    async def declare(self, contract):
        self.calls.append(("declare", contract.name))
        self.declared.add(self.class_hash)
        return Submitted(self._next_hash(), class_hash=self.class_hash)

    async def deploy(self, class_hash, abi, constructor_args):
        self.calls.append(("deploy", class_hash, list(constructor_args)))
        if self.reject_deploy:
            raise TransportError("insufficient max fee")
        return Submitted(self._next_hash(), class_hash=class_hash, contract_address=self.deploy_address)

    async def invoke(self, address, abi, method, args):
        self.calls.append(("invoke", address, method, list(args)))
        if self.reject_args.intersection(map(str, args)):
            raise TransportError("Account validation failed")
        tx_hash = self._next_hash()
        if self.revert_args.intersection(map(str, args)):
            self.reverted.add(tx_hash)
        return Submitted(tx_hash, contract_address=address)

    async def call(self, address, abi, method, args):
        self.calls.append(("call", address, method, list(args)))
        if method in self.call_errors:
            raise TransportError(f"{method} not found")
        value = self.call_results.get(method)
        return value(*args) if callable(value) else value

    async def get_receipt(self, tx_hash):
        self.receipt_polls += 1
        if self.never_final:
            return TransactionReceipt(tx_hash, TxStatus.pending)
        if tx_hash in self.reverted:
            return TransactionReceipt(tx_hash, TxStatus.reverted, failure_reason="Caller is not the owner")
        return TransactionReceipt(tx_hash, TxStatus.accepted_on_l2, block_number=1)

    async def get_class_hash_at(self, address):
        return self.class_hash


class FakeClock:
    """Monotonic clock advanced only by the manager's sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store_path(tmp_path):
    path = tmp_path / "networks.json"
    path.write_text(json.dumps(sample_store(), indent=2) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def registry(store_path):
    return NetworkRegistry.load(store_path, environ={})


@pytest.fixture
def settings(store_path, tmp_path):
    return Settings(
        _env_file=None,
        deployer_private_key="0x1234",
        deployer_address=DEPLOYER,
        treasury_address=TREASURY,
        aggregator_address=AGGREGATOR,
        networks_file=store_path,
        artifacts_dir=tmp_path / "target" / "dev",
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager_factory(transport, clock):
    def _make(network_id="SN_SEPOLIA", max_wait=30.0, poll_interval=5.0):
        return TransactionLifecycleManager(
            network_id, transport, FinalityPolicy(max_wait, poll_interval),
            sleep=clock.sleep, clock=clock,
        )
    return _make


@pytest.fixture
def contract():
    return CompiledContract(
        name="Gateway",
        sierra={"abi": GATEWAY_ABI, "sierra_program": []},
        casm={"bytecode": []},
    )


@pytest.fixture
def make_ctx(registry, settings, manager_factory, contract, store_path):
    def _make(network_id="SN_SEPOLIA", persist=False, **overrides):
        values = dict(
            registry=registry,
            network_id=network_id,
            manager=manager_factory(network_id),
            settings=settings,
            load_contract=lambda: contract,
            confirm=AutoConfirm(),
            persistence=ConfigPersistence(store_path) if persist else None,
        )
        values.update(overrides)
        return PipelineContext(**values)
    return _make
