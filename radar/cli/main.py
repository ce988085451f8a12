"""CLI entry point for the inbox radar."""

import logging
from dataclasses import dataclass

import click
from dotenv import load_dotenv

from radar.config import RadarConfig
from radar.storage.db import RadarDatabase

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Objects shared by every command in one invocation."""

    config: RadarConfig
    db: RadarDatabase


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show INFO-level logs.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Inbox radar — mail polling, task extraction and VIP/suppression rules."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,  # keep CLI output clean
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    config = RadarConfig.from_env()
    db = RadarDatabase(db_path=config.db_path)
    ctx.obj = AppContext(config=config, db=db)
    ctx.call_on_close(db.close)


# Import and register commands after cli is defined to avoid circular imports.
from radar.cli.commands import (  # noqa: E402
    auth,
    config_group,
    poll,
    rules,
    run,
    status,
    vips,
)

cli.add_command(run)
cli.add_command(poll)
cli.add_command(auth)
cli.add_command(status)
cli.add_command(rules)
cli.add_command(vips)
cli.add_command(config_group)
