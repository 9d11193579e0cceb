"""CalcMark CLI entry point."""

import logging

import click


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool):
    """CalcMark: unit-aware calculation language CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )


# Register subcommands
from calcmark.cli.eval_cmd import eval_command  # noqa: E402
from calcmark.cli.functions_cmd import functions  # noqa: E402

cli.add_command(eval_command)
cli.add_command(functions)
