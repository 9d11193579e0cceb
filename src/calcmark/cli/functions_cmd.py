"""List the built-in functions."""

import json

import click

from calcmark.functions import FunctionCategory, FunctionRegistry


@click.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
def functions(as_json: bool):
    """List built-in functions by category."""
    if as_json:
        click.echo(json.dumps(FunctionRegistry.export_documentation(), indent=2))
        return

    for category in FunctionCategory:
        defs = FunctionRegistry.list_by_category(category)
        if not defs:
            continue
        click.echo(click.style(category.value.title(), bold=True))
        for func_def in defs:
            params = ", ".join(p.name for p in func_def.parameters)
            click.echo(f"  {func_def.name}({params}) - {func_def.description}")
            for example in func_def.examples:
                click.echo(f"      {example}")
