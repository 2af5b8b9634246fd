"""Deployment and configuration pipelines for the Gateway contract.

Every pipeline runs the same linear sequence:

    Init -> Confirm -> Execute(step 1..N) -> Finalize

A failure in a required step raises ``PipelineFailed`` naming the step, the
network and (when one exists) the transaction hash. The per-token loops of
``set_supported_tokens`` and ``set_token_fee_settings`` are the exception:
each token is attempted, failures are collected, and the result reports them.
"""

import enum
import functools
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable

from deployer.config import Settings
from deployer.contracts.artifacts import CompiledContract
from deployer.contracts.interface import ContractHandle, resolve_contract
from deployer.exceptions import (
    ArtifactNotBuilt,
    ContractNotDeployed,
    DeployerError,
    PersistenceConflict,
    PipelineFailed,
    VerificationFailed,
)
from deployer.models.network import DeploymentRecord, NetworkConfig, TokenConfig
from deployer.services.confirmation import AutoConfirm, ConfirmationStrategy, require_confirmation
from deployer.services.persistence import ConfigPersistence
from deployer.services.registry import NetworkRegistry
from deployer.services.rpc_probe import ensure_chain_matches, fetch_chain_id
from deployer.services.transactions import (
    DeclareClass,
    DeployInstance,
    PendingTx,
    TransactionLifecycleManager,
)
from deployer.services.verification import ContractVerifier, verifier_network_name
from deployer.validation import bps_to_percent, format_address, same_felt

logger = logging.getLogger(__name__)


class PipelineStatus(str, enum.Enum):
    success = "success"
    partial = "partial"


@dataclass
class StepRecord:
    name: str
    tx_hash: str | None = None
    detail: str | None = None


@dataclass
class ItemFailure:
    item: str
    cause: str
    tx_hash: str | None = None


@dataclass
class PipelineResult:
    pipeline: str
    network_id: str
    status: PipelineStatus = PipelineStatus.success
    steps: list[StepRecord] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    record: DeploymentRecord | None = None
    class_hash: str | None = None
    persisted: bool | None = None

    @property
    def ok(self) -> bool:
        return self.status is PipelineStatus.success


@dataclass
class StatusItem:
    name: str
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class StatusReport:
    network_id: str
    deployed: bool
    address: str | None = None
    explorer_url: str | None = None
    items: list[StatusItem] = field(default_factory=list)

    @property
    def failures(self) -> list[StatusItem]:
        return [item for item in self.items if not item.ok]


@dataclass
class PipelineContext:
    """Everything a pipeline needs, constructed once per command."""

    registry: NetworkRegistry
    network_id: str
    manager: TransactionLifecycleManager
    settings: Settings
    load_contract: Callable[[], CompiledContract]
    confirm: ConfirmationStrategy = field(default_factory=AutoConfirm)
    persistence: ConfigPersistence | None = None
    verifier: ContractVerifier | None = None
    address: str | None = None
    check_chain: bool = False

    @property
    def network(self) -> NetworkConfig:
        return self.registry.resolve(self.network_id)


class _Run:
    def __init__(self, pipeline: str, ctx: PipelineContext):
        self.pipeline = pipeline
        self.ctx = ctx
        self.network = ctx.network
        self.result = PipelineResult(pipeline=pipeline, network_id=ctx.network_id)

    @contextmanager
    def step(self, name: str):
        logger.info("[%s] %s", self.pipeline, name,
                    extra={"network": self.ctx.network_id, "step": name})
        try:
            yield
        except PipelineFailed:
            raise
        except DeployerError as e:
            logger.error("[%s] %s failed on %s: %s", self.pipeline, name, self.ctx.network_id, e,
                         extra={"network": self.ctx.network_id, "step": name,
                                "tx_hash": getattr(e, "tx_hash", None)})
            raise PipelineFailed(self.pipeline, name, self.ctx.network_id, e) from e

    def log_tx(self, step: str, pending: PendingTx) -> None:
        self.result.steps.append(StepRecord(step, pending.tx_hash))
        logger.info("   Transaction hash: %s", pending.tx_hash,
                    extra={"network": self.ctx.network_id, "step": step, "tx_hash": pending.tx_hash,
                           "explorer": self.network.tx_url(pending.tx_hash)})

    async def transact(self, step: str, submit) -> PendingTx:
        """Run one required transaction: submit, log, wait for finality."""
        with self.step(step):
            pending = await submit
            self.log_tx(step, pending)
            await self.ctx.manager.await_finality(pending)
        return pending

    async def preflight(self) -> None:
        if self.ctx.check_chain:
            with self.step("chain check"):
                await ensure_chain_matches(self.ctx.network_id, self.network)

    def confirm(self, title: str, params: dict) -> None:
        with self.step("confirm"):
            require_confirmation(self.ctx.confirm, title, params)

    def resolve_handle(self, abi: list | None = None) -> ContractHandle:
        with self.step("resolve contract"):
            handle = resolve_contract(
                self.ctx.registry, self.ctx.network_id, self.ctx.manager,
                abi=abi, address=self.ctx.address,
            )
        logger.info("Connected to Gateway: %s", handle.address,
                    extra={"network": self.ctx.network_id,
                           "explorer": self.network.contract_url(handle.address)})
        return handle

    def load_contract(self) -> CompiledContract:
        with self.step("load artifact"):
            return self.ctx.load_contract()

    async def declare(self, contract: CompiledContract) -> str:
        with self.step("declare"):
            pending, receipt = await self.ctx.manager.execute(
                DeclareClass(contract), on_submitted=functools.partial(self.log_tx, "declare"),
            )
            if receipt is None:
                self.result.steps.append(StepRecord("declare", detail="already declared"))
        logger.info("   Class hash: %s", pending.class_hash, extra={"network": self.ctx.network_id})
        self.result.class_hash = pending.class_hash
        return pending.class_hash

    async def verify(self, class_hash: str) -> None:
        verifier = self.ctx.verifier
        if verifier is None:
            return
        name = self.ctx.settings.contract_name
        try:
            await verifier.verify(class_hash, name, verifier_network_name(self.ctx.network_id, self.network))
        except VerificationFailed as e:
            message = f"Verification of class {class_hash} failed: {e}"
            logger.warning("%s", message, extra={"network": self.ctx.network_id, "step": "verify"})
            self.result.warnings.append(message)
        else:
            self.result.steps.append(StepRecord("verify", detail=verifier.verifier))

    def finish(self) -> PipelineResult:
        if self.result.failures:
            self.result.status = PipelineStatus.partial
            logger.warning(
                "[%s] finished on %s with %d failure(s): %s",
                self.pipeline, self.ctx.network_id, len(self.result.failures),
                ", ".join(f.item for f in self.result.failures),
                extra={"network": self.ctx.network_id},
            )
        else:
            logger.info("[%s] finished on %s", self.pipeline, self.ctx.network_id,
                        extra={"network": self.ctx.network_id})
        return self.result


# ---------------------------------------------------------------------------
# Deploy / Upgrade
# ---------------------------------------------------------------------------

async def deploy(ctx: PipelineContext) -> PipelineResult:
    """Declare the Gateway class, deploy an instance owned by the deployer, record it."""
    run = _Run("deploy", ctx)
    settings = ctx.settings
    await run.preflight()
    run.confirm(f"Deploying {settings.contract_name} to {ctx.network_id}", {
        "Contract": settings.contract_name,
        "Network": ctx.network_id,
        "Deployer Address": settings.deployer_address,
        "Treasury Address": settings.treasury_address,
        "Aggregator Address": settings.aggregator_address,
    })

    contract = run.load_contract()
    class_hash = await run.declare(contract)

    # Constructor takes only the owner address
    pending = await run.transact(
        "deploy",
        ctx.manager.submit(DeployInstance(class_hash, [settings.deployer_address], contract.abi)),
    )
    address = pending.contract_address
    record = DeploymentRecord(contract_address=address, class_hash=class_hash, tx_hash=pending.tx_hash)
    run.result.record = record
    logger.info("Gateway deployed at %s", address,
                extra={"network": ctx.network_id, "explorer": run.network.contract_url(address)})

    if ctx.persistence is not None:
        try:
            ctx.persistence.record_deployment(ctx.network_id, address)
            run.result.persisted = True
        except PersistenceConflict as e:
            message = (f"Could not record the deployment in {ctx.persistence.store_path}: {e}. "
                       f"Record deployedAddress {address} for {ctx.network_id} manually.")
            logger.warning("%s", message, extra={"network": ctx.network_id, "step": "record deployment"})
            run.result.warnings.append(message)
            run.result.persisted = False

    await run.verify(class_hash)
    return run.finish()


async def upgrade(ctx: PipelineContext) -> PipelineResult:
    """Point the existing Gateway address at a newly declared class."""
    run = _Run("upgrade", ctx)
    settings = ctx.settings
    handle = run.resolve_handle()
    await run.preflight()
    run.confirm(f"Upgrading {settings.contract_name} on {ctx.network_id}", {
        "Network": ctx.network_id,
        "Gateway Address": handle.address,
        "Deployer Address": settings.deployer_address,
        "Action": "Upgrade to new implementation",
    })

    contract = run.load_contract()
    handle.abi = contract.abi
    class_hash = await run.declare(contract)

    pending = await run.transact("upgrade", handle.upgrade(class_hash))
    # The address never changes on upgrade, so the store is not touched
    run.result.record = DeploymentRecord(handle.address, class_hash, pending.tx_hash)
    logger.info("Gateway upgraded: %s now runs class %s", handle.address, class_hash,
                extra={"network": ctx.network_id})

    await run.verify(class_hash)
    return run.finish()


# ---------------------------------------------------------------------------
# Post-deployment configuration
# ---------------------------------------------------------------------------

async def set_protocol_addresses(ctx: PipelineContext) -> PipelineResult:
    run = _Run("set-protocol-addresses", ctx)
    settings = ctx.settings
    await run.preflight()
    run.confirm(f"Updating protocol addresses on {ctx.network_id}", {
        "Network": ctx.network_id,
        "Treasury Address": settings.treasury_address,
        "Aggregator Address": settings.aggregator_address,
    })
    handle = run.resolve_handle(_abi_or_empty(ctx))

    for what, address in (("treasury", settings.treasury_address),
                          ("aggregator", settings.aggregator_address)):
        await run.transact(f"update {what}", handle.update_protocol_address(what, address))
        run.result.succeeded.append(what)
        logger.info("%s address updated to: %s", what.capitalize(), address,
                    extra={"network": ctx.network_id})

    return run.finish()


async def _for_each_token(run: _Run, handle: ContractHandle, action: str, submit) -> None:
    for symbol, token in run.ctx.registry.tokens(run.ctx.network_id):
        logger.info("%s %s (%s)...", action, symbol, format_address(token.address),
                    extra={"network": run.ctx.network_id, "token": symbol})
        pending = None
        try:
            pending = await submit(handle, token)
            run.log_tx(f"{action} {symbol}", pending)
            await run.ctx.manager.await_finality(pending)
        except DeployerError as e:
            tx_hash = getattr(e, "tx_hash", None) or (pending.tx_hash if pending else None)
            logger.error("Failed: %s %s: %s", action, symbol, e,
                         extra={"network": run.ctx.network_id, "token": symbol, "tx_hash": tx_hash})
            run.result.failures.append(ItemFailure(symbol, str(e), tx_hash))
            continue
        run.result.succeeded.append(symbol)


async def set_supported_tokens(ctx: PipelineContext) -> PipelineResult:
    """Whitelist every token configured for the network."""
    run = _Run("set-supported-tokens", ctx)
    tokens = ctx.registry.tokens(ctx.network_id)
    await run.preflight()
    run.confirm(f"Setting supported tokens on {ctx.network_id}", {
        "Network": ctx.network_id,
        "Tokens to whitelist": len(tokens),
        "Tokens": [{"name": s, "address": format_address(t.address)} for s, t in tokens],
    })
    handle = run.resolve_handle(_abi_or_empty(ctx))

    async def submit(handle: ContractHandle, token: TokenConfig) -> PendingTx:
        return await handle.set_token_supported(token.address, True)

    await _for_each_token(run, handle, "whitelist", submit)
    return run.finish()


def fee_table(tokens) -> list[dict]:
    return [
        {
            "name": symbol,
            "address": format_address(token.address),
            "Local (Sender→Provider)": bps_to_percent(token.local.sender_to_provider),
            "Local (Provider→Aggregator)": bps_to_percent(token.local.provider_to_aggregator),
            "FX (Sender→Aggregator)": bps_to_percent(token.fx.sender_to_aggregator),
            "FX (Provider→Aggregator)": bps_to_percent(token.fx.provider_to_aggregator),
        }
        for symbol, token in tokens
    ]


async def set_token_fee_settings(ctx: PipelineContext) -> PipelineResult:
    """Push each token's local and FX fee schedule to the Gateway."""
    run = _Run("set-token-fee-settings", ctx)
    tokens = ctx.registry.tokens(ctx.network_id)
    await run.preflight()
    run.confirm(f"Setting token fee settings on {ctx.network_id}", {
        "Network": ctx.network_id,
        "Tokens to configure": len(tokens),
        "Fee Settings": fee_table(tokens),
    })
    handle = run.resolve_handle(_abi_or_empty(ctx))

    async def submit(handle: ContractHandle, token: TokenConfig) -> PendingTx:
        return await handle.set_token_fee_settings(token)

    await _for_each_token(run, handle, "set fees for", submit)
    return run.finish()


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

async def _query(items: list[StatusItem], name: str, coro) -> Any:
    try:
        value = await coro
    except DeployerError as e:
        items.append(StatusItem(name, error=str(e)))
        return None
    items.append(StatusItem(name, value))
    return value


async def check_status(ctx: PipelineContext) -> StatusReport:
    """Read-only report on the deployed Gateway; no transactions are sent."""
    network = ctx.network
    try:
        handle = resolve_contract(ctx.registry, ctx.network_id, ctx.manager,
                                  abi=_abi_or_empty(ctx), address=ctx.address)
    except ContractNotDeployed:
        logger.info("No gateway contract deployed on %s yet", ctx.network_id,
                    extra={"network": ctx.network_id})
        return StatusReport(ctx.network_id, deployed=False)

    report = StatusReport(
        ctx.network_id,
        deployed=True,
        address=handle.address,
        explorer_url=network.contract_url(handle.address),
    )
    items = report.items

    if ctx.check_chain:
        await _query(items, "chain id", fetch_chain_id(network.endpoint()))
    await _query(items, "class hash", handle.class_hash())

    owner = await _query(items, "owner", handle.owner())
    deployer = ctx.settings.deployer_address
    if owner is not None and deployer:
        items.append(StatusItem("owner is deployer", same_felt(owner, deployer)))

    for symbol, token in ctx.registry.tokens(ctx.network_id):
        await _query(items, f"{symbol} supported", handle.is_token_supported(token.address))

    return report


def _abi_or_empty(ctx: PipelineContext) -> list:
    """ABI for calls on an existing deployment; artifacts are optional here."""
    try:
        return ctx.load_contract().abi
    except ArtifactNotBuilt as e:
        logger.warning("%s Falling back to the ABI published on-chain.", e)
        return []
