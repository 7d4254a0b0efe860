"""CLI entry point for newt-re.

Usage:
    newt-re decompile <file> [-o <out>]   Decompile a function object to NewtonScript
    newt-re disasm <file>                 List the bytecode of a function object
    newt-re dump-ast <file> [--deep]      Show the resolved node sequence

Function objects are read from JSON files; see
``newt_re.nscript.objects.function_from_json`` for the format.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__
from .nscript.errors import DecompileError


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """NewtonScript bytecode reverse engineering toolkit."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(name)s %(levelname)s: %(message)s",
    )


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option(
    "-o",
    "--output",
    type=click.Path(),
    default=None,
    help="Write the source here instead of stdout",
)
@click.option("--strict", is_flag=True, help="Fail if any node stays unresolved")
@click.option("--debug-ast", is_flag=True, help="Log the node sequence after each rewrite")
@click.option("--indent", default="  ", show_default=True, help="Indentation unit")
def decompile(
    file: str, output: str | None, strict: bool, debug_ast: bool, indent: str
) -> None:
    """Decompile a function object to NewtonScript source."""
    from .nscript.decompiler import decompile_function
    from .nscript.objects import load_function

    try:
        func = load_function(file)
        source = decompile_function(func, strict=strict, debug_ast=debug_ast, indent=indent)
    except DecompileError as e:
        raise click.ClickException(f"{file}: {e}") from e

    if output:
        Path(output).write_text(source, encoding="utf-8")
        click.echo(f"Decompiled {file} to {output}")
    else:
        click.echo(source, nl=False)


@main.command()
@click.argument("file", type=click.Path(exists=True))
def disasm(file: str) -> None:
    """List the bytecode of a function object."""
    from .nscript.bytecode import disassemble
    from .nscript.objects import format_ref, load_function

    try:
        func = load_function(file)
        if not isinstance(func.instructions, bytes):
            raise click.ClickException(f"{file}: instructions are not a binary object")
        lines = disassemble(func.instructions)
    except DecompileError as e:
        raise click.ClickException(f"{file}: {e}") from e

    click.echo(f"; {len(func.instructions)} bytes, {len(func.literals)} literals")
    for i, value in enumerate(func.literals):
        click.echo(f";   literal[{i}] = {format_ref(value)}")
    for line in lines:
        click.echo(line)


@main.command(name="dump-ast")
@click.argument("file", type=click.Path(exists=True))
@click.option("--deep", is_flag=True, help="Include attached operands and bodies")
def dump_ast(file: str, deep: bool) -> None:
    """Show the node sequence left after resolution."""
    from .nscript.decompiler import dump_ast as dump
    from .nscript.objects import load_function

    try:
        func = load_function(file)
        text = dump(func, deep=deep)
    except DecompileError as e:
        raise click.ClickException(f"{file}: {e}") from e
    click.echo(text, nl=False)


if __name__ == "__main__":
    main()
