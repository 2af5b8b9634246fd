"""Operator confirmation gate shown before any state-changing pipeline."""

import logging
from typing import Protocol

import click

from deployer.exceptions import OperatorAborted

logger = logging.getLogger(__name__)


class ConfirmationStrategy(Protocol):
    def confirm(self, title: str, params: dict) -> bool: ...


def render_parameters(params: dict) -> list[str]:
    """Flatten parameters (and token tables) into display lines."""
    lines = []
    width = max((len(str(k)) for k in params), default=0)
    for key, value in params.items():
        if isinstance(value, list) and value and isinstance(value[0], dict):
            lines.append(f"  {key}:")
            for row in value:
                lines.append("    - " + ", ".join(f"{k}: {v}" for k, v in row.items()))
        else:
            lines.append(f"  {str(key).ljust(width)} : {value}")
    return lines


class AutoConfirm:
    """Non-interactive confirmation for --yes runs and tests."""

    def confirm(self, title: str, params: dict) -> bool:
        logger.info("%s auto-confirmed", title, extra={"parameters": params})
        return True


class TerminalConfirm:
    def confirm(self, title: str, params: dict) -> bool:
        click.echo(f"\n{title}")
        click.echo("PARAMETERS")
        for line in render_parameters(params):
            click.echo(line)
        try:
            return click.confirm("\nDo you want to continue?", default=False)
        except click.Abort:
            return False


def require_confirmation(strategy: ConfirmationStrategy, title: str, params: dict) -> None:
    if not strategy.confirm(title, params):
        raise OperatorAborted("Aborting: operator chose to exit")
