"""
msxasm - Z80 Assembler and Analyzer Command-Line Interface
==========================================================

Analyzes a Z80 source file for MSX: resolves symbols, builds the memory
image, lists executable steps and reports likely label bugs.

Usage Examples
--------------
Analyze and print a summary:
    $ msxasm game.asm

Generate listing and symbol files:
    $ msxasm game.asm -l game.lst -s game.sym

Export a cartridge ROM image:
    $ msxasm game.asm -r game.rom

Dump the whole analysis as JSON:
    $ msxasm game.asm --json > game.json
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from msx_sdk import __version__
from msx_sdk.assembler import Analyzer
from msx_sdk.cli.errors import ExitCode, handle_cli_exception
from msx_sdk.config import SimulatorConfig


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-l", "--listing",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Generate listing file",
)
@click.option(
    "-s", "--symbols",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Generate symbol file",
)
@click.option(
    "-r", "--rom",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the memory image as a contiguous ROM file ($FF padding)",
)
@click.option(
    "--json", "as_json",
    is_flag=True,
    help="Print the analysis as JSON instead of a summary",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="msxasm")
def main(
    input_file: Path,
    listing: Optional[Path],
    symbols: Optional[Path],
    rom: Optional[Path],
    as_json: bool,
    verbose: bool,
) -> None:
    """
    Analyze and assemble Z80 source code for MSX.

    INPUT_FILE is the assembly source file (.asm) to analyze.

    \b
    Examples:
        msxasm game.asm                  # Summary of steps and bugs
        msxasm game.asm -l game.lst      # Write a listing
        msxasm game.asm -r game.rom      # Export the ROM image
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if verbose:
            click.echo(f"Analyzing {input_file}...")

        analyzer = Analyzer(SimulatorConfig.from_env())
        result = analyzer.analyze_file(input_file)

        if result.diagnostics.has_errors():
            click.echo(result.diagnostics.report(), err=True)
            sys.exit(ExitCode.BUILD_ERROR)

        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            image = result.memory_image
            click.echo(f"{len(result.steps)} steps, {len(result.symbols)} symbols, "
                       f"{len(image)} bytes")
            if image:
                click.echo(f"Image: ${image.lowest:04X}-${image.highest:04X}")
            if result.rom_header_detected:
                click.echo("ROM header detected")
            click.echo(f"Entry line: {result.entry_line}")
            for bug in result.bugs:
                click.echo(f"  {bug}")
            for warning in result.diagnostics.warnings:
                click.echo(f"warning: {warning}", err=True)

        if listing:
            listing.write_text(result.listing() + "\n")
            if verbose:
                click.echo(f"Wrote listing to {listing}")

        if symbols:
            symbols.write_text(result.symbols_text())
            if verbose:
                click.echo(f"Wrote symbols to {symbols}")

        if rom:
            if not result.memory_image:
                click.echo("Error: no bytes were assembled, nothing to write", err=True)
                sys.exit(ExitCode.BUILD_ERROR)
            data = result.memory_image.to_rom()
            rom.write_bytes(data)
            if verbose:
                click.echo(f"Wrote {len(data)} bytes to {rom}")

    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Analysis")


if __name__ == "__main__":
    main()
