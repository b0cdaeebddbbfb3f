"""CLI entry point for labchain node operations."""

import functools
import logging
import shutil
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from .bootnode import get_bootnode_enode, get_bootnode_enr
from .config import Config, load_config
from .deposits import BalanceCheck, DepositBroadcaster, load_deposits
from .env_file import ENR_ADDRESS_KEY, detect_internal_ip, detect_public_ip, is_ipv4, set_env_value
from .errors import ConfigMissing, LabchainError, OperatorAbort, ValidationError
from .keystores import KeystoreProvisioner
from .lifecycle import NodeLifecycleManager
from .models import ROLE_ORDER, Role
from .wallet import DEPOSIT_AMOUNT_ETHER

logger = logging.getLogger(__name__)

NODE_CHOICES = click.Choice(["el", "cl", "vc", "all"], case_sensitive=False)


def setup_logging(level: str) -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level.upper() != "DEBUG":
        for noisy in ("urllib3", "web3", "docker"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def reports_errors(f):
    """Log a LabchainError and exit non-zero instead of printing a traceback."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LabchainError as e:
            logger.error(str(e))
            sys.exit(1)
    return wrapper


def _parse_node(node: str) -> Optional[Role]:
    return None if node.lower() == "all" else Role.parse(node)


def _manager(config: Config) -> NodeLifecycleManager:
    return NodeLifecycleManager(config.node)


@click.group()
@click.version_option(package_name="labchain-ops")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    help="Path to a YAML config file",
    envvar="LABCHAIN_CONFIG",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
    envvar="LABCHAIN_LOG_LEVEL",
)
@click.pass_context
@reports_errors
def cli(ctx, config_path: Optional[str], log_level: str):
    """LabChain node manager: execution layer, consensus layer and validator client."""
    setup_logging(log_level)
    ctx.obj = load_config(config_path)


@cli.command()
@click.option("-o", "--output", type=click.Path(), help="Directory for lighthouse validator-manager output")
@click.option("-m", "--managed-root", type=click.Path(), help="Directory to store extracted keystores")
@click.option("-c", "--consensus", type=click.Path(), help="Path to consensus metadata")
@click.option("-w", "--withdrawal", help="ETH withdrawal address")
@click.option("-n", "--count", type=int, help="Number of validators to generate")
@click.option("-f", "--first-index", type=int, help="Starting validator index")
@click.option("-i", "--image", help="Lighthouse image tag")
@click.option("--mnemonic", type=click.Path(), help="File holding the mnemonic to derive keys from")
@click.option("--fee-recipient", help="Suggested fee recipient for the new validators")
@click.pass_obj
@reports_errors
def provision(config: Config, output, managed_root, consensus, withdrawal, count,
              first_index, image, mnemonic, fee_recipient):
    """Create validator keystores and deposit data."""
    overrides = {
        "output_dir": Path(output) if output else None,
        "managed_root": Path(managed_root) if managed_root else None,
        "consensus_dir": Path(consensus) if consensus else None,
        "withdrawal_address": withdrawal,
        "count": count,
        "first_index": first_index,
        "image": image,
        "mnemonic_path": Path(mnemonic) if mnemonic else None,
        "fee_recipient": fee_recipient,
    }
    settings = replace(config.provision, **{k: v for k, v in overrides.items() if v is not None})

    result = KeystoreProvisioner(settings).provision(
        count=settings.count,
        first_index=settings.first_index,
        withdrawal_address=settings.withdrawal_address,
        output_dir=settings.output_dir,
        consensus_dir=settings.consensus_dir,
    )
    for record in result.validators:
        click.echo(f"  [{record.index}] {record.pubkey}")
    if result.skipped:
        click.echo(f"Skipped indices without a pubkey: {', '.join(map(str, result.skipped))}")
    click.echo(f"{len(result.validators)} validators ready under {settings.managed_root}")
    click.echo(f"Deposits located at {result.deposits_path}")


@cli.command()
@click.option("--deposits-file", type=click.Path(), help="deposits.json from provision")
@click.option("--rpc-url", envvar="RPC_URL", help="Execution layer RPC endpoint")
@click.option("--chain-id", type=int, envvar="CHAIN_ID", help="Chain ID")
@click.option("--deposit-contract", envvar="DEPOSIT_CONTRACT", help="Deposit contract address")
@click.option("--from", "sender", envvar="FROM_ADDRESS", prompt="Sender address (0x...)",
              help="Address that pays for the deposits")
@click.option("--private-key", envvar="PRIVATE_KEY", prompt="Private key (hex, will be hidden)",
              hide_input=True, help="Private key of the sender")
@click.option("--dry-run", is_flag=True, default=False, help="Validate everything, send nothing")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
@reports_errors
def broadcast(ctx, deposits_file, rpc_url, chain_id, deposit_contract, sender,
              private_key, dry_run, yes):
    """Send a 32 token deposit for every validator in a deposits file."""
    config: Config = ctx.obj
    overrides = {
        "deposits_file": Path(deposits_file) if deposits_file else None,
        "rpc_url": rpc_url,
        "chain_id": chain_id,
        "deposit_contract": deposit_contract,
    }
    settings = replace(config.broadcast, **{k: v for k, v in overrides.items() if v is not None})

    deposits = load_deposits(settings.deposits_file)
    total_required = DEPOSIT_AMOUNT_ETHER * len(deposits)
    logger.info(f"Found {len(deposits)} deposit(s) in {settings.deposits_file}")
    logger.info(f"Required: {total_required} ({len(deposits)} x {DEPOSIT_AMOUNT_ETHER})")

    def confirm_balance(check: BalanceCheck) -> bool:
        return yes or click.confirm("Continue anyway?", default=False)

    def confirm_send() -> bool:
        mode = "DRY-RUN (no transactions will be sent)" if dry_run else "LIVE (transactions will be broadcast)"
        click.echo(f"Deposits to broadcast: {len(deposits)}")
        click.echo(f"RPC endpoint: {settings.rpc_url}")
        click.echo(f"Chain ID: {settings.chain_id}")
        click.echo(f"Deposit contract: {settings.deposit_contract}")
        click.echo(f"Mode: {mode}")
        return yes or click.confirm("Proceed with deposits?", default=True)

    summary = DepositBroadcaster(settings).broadcast(
        deposits,
        sender=sender,
        signing_key=private_key,
        dry_run=dry_run,
        confirm_balance=confirm_balance,
        confirm_send=confirm_send,
    )

    click.echo(f"Successful: {summary.succeeded}")
    click.echo(f"Failed:     {summary.failed}")
    for outcome in summary.per_deposit:
        if outcome.tx_hash:
            click.echo(f"  [{outcome.index}] {outcome.tx_hash}")
    if dry_run:
        click.echo("Dry-run complete. Run again without --dry-run to broadcast deposits.")
    elif summary.succeeded:
        click.echo("Deposits were accepted by the node; confirm inclusion on the explorer.")


@cli.command()
@click.argument("node", type=NODE_CHOICES)
@click.argument("variant", required=False)
@click.pass_obj
@reports_errors
def start(config: Config, node: str, variant: Optional[str]):
    """Start a node (el, cl, vc or all)."""
    manager = _manager(config)
    role = _parse_node(node)
    if role is None:
        manager.start_all(variant)
    else:
        manager.start(role, variant)


@cli.command()
@click.argument("node", type=NODE_CHOICES)
@click.argument("variant", required=False)
@click.pass_obj
@reports_errors
def stop(config: Config, node: str, variant: Optional[str]):
    """Stop a node (el, cl, vc or all)."""
    manager = _manager(config)
    role = _parse_node(node)
    if role is None:
        manager.stop_all(variant)
    else:
        manager.stop(role, variant)


@cli.command()
@click.argument("node", type=NODE_CHOICES)
@click.argument("variant", required=False)
@click.pass_obj
@reports_errors
def restart(config: Config, node: str, variant: Optional[str]):
    """Restart a node (el, cl, vc or all)."""
    manager = _manager(config)
    role = _parse_node(node)
    if role is None:
        manager.restart_all(variant)
    else:
        manager.restart(role, variant)


@cli.command()
@click.argument("node", type=NODE_CHOICES)
@click.argument("variant", required=False)
@click.option("--tail", type=int, help="Number of past lines to show per container")
@click.pass_obj
@reports_errors
def logs(config: Config, node: str, variant: Optional[str], tail: Optional[int]):
    """Follow node logs until interrupted."""
    logger.info(f"Showing logs for {node} - Press Ctrl+C to exit")
    try:
        _manager(config).logs(_parse_node(node), variant, tail)
    except KeyboardInterrupt:
        logger.info("Stopped following logs")


@cli.command()
@click.pass_obj
@reports_errors
def status(config: Config):
    """Show status of all nodes."""
    statuses = _manager(config).status()
    for role in ROLE_ORDER:
        s = statuses[role]
        click.echo(f"=== {role.value.capitalize()} ({role.short_name.upper()}) ===")
        if not s.running:
            click.echo("  Not running")
            continue
        for name in s.containers:
            click.echo(f"  {name}")
        if role is Role.VALIDATOR:
            click.echo("  Validator client running")
        elif s.detail:
            click.echo(f"  {s.detail}")
        else:
            click.echo("  Running, metric unavailable")


@cli.command()
@click.argument("node", type=click.Choice(["cl", "all"], case_sensitive=False))
@click.option("--ip", help="Discovery IP to use instead of choosing interactively")
@click.pass_obj
@reports_errors
def init(config: Config, node: str, ip: Optional[str]):
    """Set the consensus node's discovery IP (BEACON_ENR_ADDRESS)."""
    env_file = config.node.path(config.node.cl_env_file)
    if not env_file.is_file():
        raise ConfigMissing(env_file, "CL env file")

    if ip is None:
        ip = _choose_ip()
    elif not is_ipv4(ip):
        raise ValidationError(f"invalid IPv4 address: {ip}")
    logger.info(f"Selected discovery IP: {ip}")

    previous = set_env_value(env_file, ENR_ADDRESS_KEY, ip)
    if previous == ip:
        logger.info(f"{ENR_ADDRESS_KEY} is already set to {ip}")
    elif previous is None:
        logger.info(f"Added {ENR_ADDRESS_KEY}={ip} to {env_file}")
    else:
        logger.info(f"Updated {ENR_ADDRESS_KEY} from {previous} to {ip} in {env_file}")


def _choose_ip() -> str:
    logger.info("Detecting IP addresses...")
    options = []
    public_ip = detect_public_ip()
    if public_ip:
        options.append(("Public IP", public_ip))
    internal_ip = detect_internal_ip()
    if internal_ip:
        options.append(("Internal IP", internal_ip))
    if not options:
        raise LabchainError("failed to detect any IP addresses; pass --ip")

    click.echo("Available IP addresses:")
    for num, (label, value) in enumerate(options, start=1):
        click.echo(f"  {num}) {label + ':':<13}{value}")
    custom = len(options) + 1
    click.echo(f"  {custom}) Custom IP (enter manually)")

    selection = click.prompt(f"Select IP type [1-{custom}]", type=click.IntRange(1, custom))
    if selection != custom:
        return options[selection - 1][1]
    while True:
        value = click.prompt("Enter custom IP address")
        if is_ipv4(value):
            return value
        logger.warning("Invalid IP format. Please enter a valid IPv4 address (e.g., 192.168.1.100)")


@cli.command()
@click.argument("target", type=click.Choice(["el", "cl", "vc", "output", "keystores"], case_sensitive=False))
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_obj
@reports_errors
def clean(config: Config, target: str, yes: bool):
    """Remove a stopped node's data, or provisioning output."""
    target = target.lower()
    if target == "output":
        path = Path(config.provision.output_dir)
    elif target == "keystores":
        path = Path(config.provision.managed_root)
    else:
        role = Role.parse(target)
        if _manager(config).is_running(role):
            raise ValidationError(f"{role.value} is running; stop it before cleaning")
        path = config.node.data_dir(role)

    if not path.exists():
        logger.warning(f"Nothing to clean at {path}")
        return
    if not yes and not click.confirm(f"Delete {path}?", default=False):
        raise OperatorAbort(f"cancelled, {path} left in place")
    shutil.rmtree(path)
    logger.info(f"Removed {path}")


@cli.command()
@click.option("--rpc-url", envvar="RPC_URL", help="Execution layer RPC endpoint")
@click.pass_obj
@reports_errors
def enode(config: Config, rpc_url: Optional[str]):
    """Print the execution bootnode's enode record."""
    record = get_bootnode_enode(rpc_url or config.node.execution_rpc_url)
    click.echo(record)
    click.echo("\nExport this value before starting non-boot nodes, e.g.")
    click.echo(f'  export BOOTNODE_ENODE="{record}"')


@cli.command()
@click.option("--beacon-url", envvar="BEACON_API_URL", help="Beacon node API endpoint")
@click.pass_obj
@reports_errors
def enr(config: Config, beacon_url: Optional[str]):
    """Print the consensus bootnode's ENR."""
    record = get_bootnode_enr(beacon_url or config.node.beacon_api_url)
    click.echo(record)
    click.echo("\nExport this value before launching follower nodes, e.g.")
    click.echo(f'  export BOOTNODE_ENR="{record}"')


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
