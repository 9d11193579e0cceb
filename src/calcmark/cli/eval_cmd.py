"""Evaluate CalcMark expressions and documents."""

from pathlib import Path

import click

from calcmark.config import CalcMarkConfig
from calcmark.errors import CalcMarkError
from calcmark.session import Session


@click.command("eval")
@click.argument("expression", required=False)
@click.option(
    "--file",
    "file_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Evaluate a CalcMark document (frontmatter allowed) instead of an expression.",
)
def eval_command(expression: str | None, file_path: Path | None):
    """Evaluate an expression or a document, printing one result per line."""
    if (expression is None) == (file_path is None):
        raise click.UsageError("Provide either an EXPRESSION or --file, not both.")

    try:
        session = Session(CalcMarkConfig.from_env())
        if file_path is not None:
            results = session.eval_document(file_path.read_text(encoding="utf-8"))
        else:
            results = session.eval(expression)
    except (CalcMarkError, ValueError) as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        raise SystemExit(1)

    for value in results:
        click.echo(str(value))
