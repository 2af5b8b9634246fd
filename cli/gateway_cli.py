"""Gateway deployer CLI - declare, deploy, upgrade and configure the Gateway contract."""

import asyncio
import functools
from dataclasses import dataclass
from pathlib import Path

import click
from dotenv import load_dotenv

from deployer.config import Settings
from deployer.contracts.artifacts import load_compiled_contract
from deployer.exceptions import DeployerError, PipelineFailed
from deployer.logging_setup import configure_logging
from deployer.models.network import NetworkConfig
from deployer.services import pipelines
from deployer.services.confirmation import AutoConfirm, TerminalConfirm
from deployer.services.persistence import ConfigPersistence
from deployer.services.registry import NetworkRegistry
from deployer.services.transactions import TransactionLifecycleManager
from deployer.services.verification import ContractVerifier
from deployer.transport.base import Transport
from deployer.validation import format_address, is_valid_address

DEFAULT_NETWORK = "SN_SEPOLIA"
FEE_SETTINGS_DEFAULT_NETWORK = "SN_MAIN"

EXIT_FAILED = 1
EXIT_PARTIAL = 2


@dataclass
class AppState:
    settings: Settings
    assume_yes: bool = False
    check_chain: bool = True


def make_transport(network_id: str, network: NetworkConfig, settings: Settings) -> Transport:
    # local import: starknet-py is only needed once a command talks to a node
    from deployer.transport.starknet import build_transport

    return build_transport(network_id, network.endpoint(), settings)


def build_context(
    state: AppState,
    network_id: str,
    *,
    require_credentials: bool = True,
    address: str | None = None,
    verify: bool = False,
    persist: bool = False,
) -> pipelines.PipelineContext:
    settings = state.settings
    if require_credentials:
        settings.require_credentials()

    registry = NetworkRegistry.load(settings.networks_file)
    network = registry.resolve(network_id)
    transport = make_transport(network_id, network, settings)
    manager = TransactionLifecycleManager(network_id, transport, settings.finality_policy())

    return pipelines.PipelineContext(
        registry=registry,
        network_id=network_id,
        manager=manager,
        settings=settings,
        load_contract=functools.partial(
            load_compiled_contract,
            settings.contract_name, settings.artifacts_dir, settings.artifact_package,
        ),
        confirm=AutoConfirm() if state.assume_yes else TerminalConfirm(),
        persistence=ConfigPersistence(settings.networks_file) if persist else None,
        verifier=ContractVerifier(settings.verifier) if verify else None,
        address=address,
        check_chain=state.check_chain,
    )


def _check_address(ctx, param, value):
    if value is not None and not is_valid_address(value):
        raise click.BadParameter(f"{value!r} is not a Starknet address")
    return value


def _fail(message: str) -> None:
    click.echo(f"\n[ERROR] {message}", err=True)
    click.get_current_context().exit(EXIT_FAILED)


def _report_failure(e: PipelineFailed, ctx: pipelines.PipelineContext) -> None:
    click.echo(f"\n[ERROR] {e.pipeline} failed", err=True)
    click.echo(f"   Step: {e.step}", err=True)
    click.echo(f"   Network: {e.network_id}", err=True)
    click.echo(f"   Cause: {e.cause}", err=True)
    if e.tx_hash:
        click.echo(f"   Transaction: {e.tx_hash}", err=True)
        click.echo(f"   Explorer: {ctx.network.tx_url(e.tx_hash)}", err=True)
    click.get_current_context().exit(EXIT_FAILED)


def _run_pipeline(state: AppState, network_id: str, pipeline, **kwargs) -> pipelines.PipelineResult:
    try:
        ctx = build_context(state, network_id, **kwargs)
    except DeployerError as e:
        _fail(str(e))

    try:
        result = asyncio.run(pipeline(ctx))
    except PipelineFailed as e:
        _report_failure(e, ctx)
    except DeployerError as e:
        _fail(f"{network_id}: {e}")

    _echo_result(result, ctx)
    return result


def _echo_result(result: pipelines.PipelineResult, ctx: pipelines.PipelineContext) -> None:
    network = ctx.network
    for step in result.steps:
        if step.tx_hash:
            click.echo(f"   {step.name}: {step.tx_hash}")
            click.echo(f"      {network.tx_url(step.tx_hash)}")
        elif step.detail:
            click.echo(f"   {step.name}: {step.detail}")
    for warning in result.warnings:
        click.echo(f"\n[WARNING] {warning}", err=True)
    if result.failures:
        click.echo(f"\n{len(result.failures)} item(s) failed:", err=True)
        for failure in result.failures:
            line = f"   {failure.item}: {failure.cause}"
            if failure.tx_hash:
                line += f" (tx: {failure.tx_hash})"
            click.echo(line, err=True)


def _finish(result: pipelines.PipelineResult, done: str) -> None:
    if result.ok:
        click.echo(f"\n{done}")
        return
    click.echo(f"\nCompleted with failures: {len(result.succeeded)} succeeded, "
               f"{len(result.failures)} failed", err=True)
    click.get_current_context().exit(EXIT_PARTIAL)


@click.group()
@click.option("--networks-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Network store (default: networks.json)")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the confirmation prompt")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None)
@click.option("--max-wait", type=float, default=None, help="Seconds to wait for finality")
@click.option("--poll-interval", type=float, default=None, help="Seconds between receipt polls")
@click.option("--skip-chain-check", is_flag=True, help="Do not compare the RPC chain id with the network")
@click.pass_context
def cli(ctx, networks_file, assume_yes, log_level, log_format, max_wait, poll_interval, skip_chain_check):
    """Gateway deployer - declare, deploy, upgrade and configure the Gateway contract."""
    load_dotenv()
    overrides = {
        "networks_file": networks_file,
        "log_level": log_level,
        "log_format": log_format,
        "finality_max_wait": max_wait,
        "finality_poll_interval": poll_interval,
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings.log_level, settings.log_format)
    ctx.obj = AppState(settings=settings, assume_yes=assume_yes, check_chain=not skip_chain_check)


# --- Lifecycle ---


@cli.command("deploy")
@click.argument("network", default=DEFAULT_NETWORK)
@click.option("--verify/--no-verify", default=False, help="Verify the class on the explorer afterwards")
@click.pass_obj
def deploy_cmd(state: AppState, network: str, verify: bool):
    """Declare and deploy the Gateway, then record its address."""
    click.echo(f"\n=== Deploying Gateway to Starknet ===\nNetwork: {network}")
    result = _run_pipeline(state, network, pipelines.deploy, persist=True, verify=verify)

    record = result.record
    click.echo("\n=== Gateway deployed successfully! ===")
    click.echo(f"   Contract Address: {record.contract_address}")
    click.echo(f"   Class Hash: {record.class_hash}")
    if result.persisted is False:
        click.echo(f"   Record this address manually as deployedAddress of {network}", err=True)
    click.echo("\n=== Next steps ===")
    click.echo(f"   1. gateway-deploy set-protocol-addresses {network}")
    click.echo(f"   2. gateway-deploy set-supported-tokens {network}")
    click.echo(f"   3. gateway-deploy set-token-fee-settings {network}")


@cli.command("upgrade")
@click.argument("network", default=DEFAULT_NETWORK)
@click.option("--address", default=None, callback=_check_address,
              help="Gateway address (default: recorded deployment)")
@click.option("--verify/--no-verify", default=True, help="Verify the new class on the explorer")
@click.pass_obj
def upgrade_cmd(state: AppState, network: str, address: str | None, verify: bool):
    """Declare the current build and upgrade the Gateway in place."""
    click.echo(f"\nUpgrading Gateway\nNetwork: {network}")
    result = _run_pipeline(state, network, pipelines.upgrade, address=address, verify=verify)
    click.echo("\nGateway upgraded successfully!")
    click.echo(f"   Contract Address (unchanged): {result.record.contract_address}")
    click.echo(f"   New Class Hash: {result.record.class_hash}")


# --- Configuration ---


@cli.command("set-protocol-addresses")
@click.argument("network", default=DEFAULT_NETWORK)
@click.option("--address", default=None, callback=_check_address,
              help="Gateway address (default: recorded deployment)")
@click.pass_obj
def set_protocol_addresses_cmd(state: AppState, network: str, address: str | None):
    """Set the treasury and aggregator addresses on the Gateway."""
    click.echo(f"\nUpdating Protocol Addresses\nNetwork: {network}")
    result = _run_pipeline(state, network, pipelines.set_protocol_addresses, address=address)
    _finish(result, "All protocol addresses updated successfully!")


@cli.command("set-supported-tokens")
@click.argument("network", default=DEFAULT_NETWORK)
@click.option("--address", default=None, callback=_check_address,
              help="Gateway address (default: recorded deployment)")
@click.pass_obj
def set_supported_tokens_cmd(state: AppState, network: str, address: str | None):
    """Whitelist every token configured for the network."""
    click.echo(f"\nSetting Supported Tokens\nNetwork: {network}")
    result = _run_pipeline(state, network, pipelines.set_supported_tokens, address=address)
    _finish(result, "All tokens whitelisted successfully!")


@cli.command("set-token-fee-settings")
@click.argument("network", default=FEE_SETTINGS_DEFAULT_NETWORK)
@click.option("--address", default=None, callback=_check_address,
              help="Gateway address (default: recorded deployment)")
@click.pass_obj
def set_token_fee_settings_cmd(state: AppState, network: str, address: str | None):
    """Push each token's local and FX fee schedule."""
    click.echo(f"\nSetting Token Fee Settings\nNetwork: {network}")
    result = _run_pipeline(state, network, pipelines.set_token_fee_settings, address=address)
    _finish(result, "All token fee settings configured successfully!")


# --- Inspection ---


@cli.command("status")
@click.argument("network", default=DEFAULT_NETWORK)
@click.option("--address", default=None, callback=_check_address,
              help="Gateway address (default: recorded deployment)")
@click.pass_obj
def status_cmd(state: AppState, network: str, address: str | None):
    """Read-only report on the deployed Gateway."""
    click.echo(f"\nChecking Gateway Contract Status\nNetwork: {network}\n")
    try:
        ctx = build_context(state, network, require_credentials=False, address=address)
        report = asyncio.run(pipelines.check_status(ctx))
    except DeployerError as e:
        _fail(str(e))

    if not report.deployed:
        click.echo("No gateway contract deployed on this network yet.")
        click.echo(f"   Run 'gateway-deploy deploy {network}' to deploy the contract first.")
        return

    click.echo("Contract Information:")
    click.echo(f"   Address: {report.address}")
    click.echo(f"   Explorer: {report.explorer_url}\n")
    for item in report.items:
        if item.ok:
            value = item.value
            if isinstance(value, bool):
                value = "yes" if value else "no"
            click.echo(f"   {item.name}: {value}")
        else:
            click.echo(f"   {item.name}: could not check ({item.error})")
    click.echo("\nStatus check complete!")


@cli.command("networks")
@click.pass_obj
def networks_cmd(state: AppState):
    """List configured networks."""
    try:
        registry = NetworkRegistry.load(state.settings.networks_file)
    except DeployerError as e:
        _fail(str(e))

    for network_id in registry.network_ids():
        network = registry.resolve(network_id)
        deployed = network.deployed_address or "not deployed"
        rpc = "rpc ok" if network.rpc_url else f"rpc missing ({network.rpc_url_env or 'rpcUrl'})"
        tokens = ", ".join(network.supported_tokens) or "none"
        click.echo(f"  {network_id}  {deployed}  {rpc}  tokens={tokens}")
        for symbol, token in network.supported_tokens.items():
            click.echo(f"      {symbol}: {format_address(token.address)}")


if __name__ == "__main__":
    cli()
