"""
msxrun - Z80 Line Simulator Command-Line Interface
==================================================

Analyzes a source file, then runs it through the line simulator from the
entry point (or a given label or line) until the outermost RET, the step
limit, or the end of the source.

Usage Examples
--------------
Run from the entry point:
    $ msxrun game.asm

Run a single routine:
    $ msxrun game.asm --from DRAW_SCREEN

Preview the next few hundred lines:
    $ msxrun game.asm --from 42 --lookahead --max-steps 200
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from msx_sdk import __version__
from msx_sdk.assembler import Analyzer
from msx_sdk.cli.errors import ExitCode, handle_cli_exception
from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator.flow import ControlFlowDriver, ExecutionResult
from msx_sdk.emulator.state import MachineState


def format_state(result: ExecutionResult) -> str:
    """Registers, flags, status and VRAM usage as printable text."""
    state = result.state
    regs = state.registers
    flags = state.flags
    lines = [
        f"Status: {result.status} after {result.steps} steps"
        + (f" (last line {result.last_line})" if result.last_line else ""),
        f"AF={state.af:04X} BC={regs.bc:04X} DE={regs.de:04X} HL={regs.hl:04X}",
        f"IX={regs.ix:04X} IY={regs.iy:04X} SP={regs.sp:04X} PC={regs.pc:04X}",
        "Flags: " + " ".join(
            f"{name}={int(value)}"
            for name, value in (("S", flags.s), ("Z", flags.z), ("PV", flags.pv), ("C", flags.c))
        ),
    ]
    ranges = state.vdp.nonzero_ranges()
    if ranges:
        lines.append("VRAM: " + ", ".join(f"${start:04X}-${end:04X}" for start, end in ranges))
    else:
        lines.append("VRAM: empty")
    if result.possible_infinite_loop:
        lines.append("Warning: step limit reached, possible infinite loop")
    return "\n".join(lines)


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-f", "--from", "start",
    default=None,
    help="Label or line number to start from (default: entry point)",
)
@click.option(
    "-n", "--max-steps",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of lines to execute",
)
@click.option(
    "--lookahead",
    is_flag=True,
    help="Use the short lookahead limit instead of the subroutine limit",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="msxrun")
def main(
    input_file: Path,
    start: Optional[str],
    max_steps: Optional[int],
    lookahead: bool,
    verbose: bool,
) -> None:
    """
    Run Z80 source in the MSX line simulator.

    INPUT_FILE is the assembly source file (.asm) to run.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = SimulatorConfig.from_env()
        result = Analyzer(config).analyze_file(input_file)
        driver = ControlFlowDriver.from_analysis(result, config)

        if start is None:
            origin: str | int = result.entry_line
        elif start.isdigit():
            origin = int(start)
        else:
            origin = start

        if isinstance(origin, str) and origin.upper() not in result.labels:
            click.echo(f"Error: unknown label '{origin}'", err=True)
            sys.exit(ExitCode.INVALID_ARGS)

        if verbose:
            click.echo(f"Running {input_file} from {origin}...")

        state = MachineState.initial(config)
        if lookahead:
            outcome = driver.simulate_steps_ahead(origin, state, max_steps)
        else:
            outcome = driver.execute_subroutine(origin, state, max_steps)

        click.echo(format_state(outcome))

    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Simulation")


if __name__ == "__main__":
    main()
