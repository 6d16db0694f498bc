"""
MSX SDK - Z80 Assembly Analyzer and Step Simulator for MSX
==========================================================

This package analyzes, assembles and step-simulates Z80 assembly source
for MSX computers, for interactive educational debugging.

The MSX uses a Zilog Z80A CPU at 3.58 MHz and a TMS9918-class video chip
(VDP) with 16 KB of private VRAM, reached through I/O ports $98/$99 and
the BIOS VRAM routines.

Main Components
---------------
- **assembler**: two-pass analyzer and Z80 encoder (msxasm)
    Resolves labels and constants, builds a memory image, detects label
    aliasing bugs and produces the executable step list

- **emulator**: line interpreter and control-flow drivers (msxrun)
    Executes source lines against registers, flags, memory and VRAM;
    replays subroutines, DJNZ loops and bounded lookahead

Quick Start
-----------
Analyze a program:
    >>> from msx_sdk import analyze
    >>> result = analyze(open("game.asm").read())
    >>> result.bugs
    []

Step through it:
    >>> from msx_sdk import MachineState, simulate_line
    >>> state = simulate_line("LD A, $41", MachineState.initial(), result.symbols)

Run a subroutine:
    >>> from msx_sdk import ControlFlowDriver
    >>> driver = ControlFlowDriver.from_analysis(result)
    >>> outcome = driver.execute_subroutine("START", MachineState.initial())

Or use the command-line tools:
    $ msxasm game.asm -l game.lst -r game.rom
    $ msxrun game.asm --from START

Reference Documentation
-----------------------
- Z80 CPU User Manual (Zilog UM0080)
- MSX2 Technical Handbook: https://github.com/Konamiman/MSX2-Technical-Handbook
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from msx_sdk.assembler import (
    AnalysisResult,
    Analyzer,
    analyze,
    encode_instruction,
)
from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator import (
    CancellationToken,
    ControlFlowDriver,
    ExecutionResult,
    ExecutionStatus,
    MachineState,
    execute_loop,
    execute_subroutine,
    simulate_line,
    simulate_steps_ahead,
)
from msx_sdk.errors import (
    MSXError,
    AssemblerError,
    UndefinedSymbolError,
    AddressingModeError,
    BranchRangeError,
    ExpressionError,
    MacroError,
    ErrorCollector,
)

__all__ = [
    # Version info
    "__version__",
    # Analysis
    "AnalysisResult",
    "Analyzer",
    "analyze",
    "encode_instruction",
    "SimulatorConfig",
    # Simulation
    "MachineState",
    "simulate_line",
    "ControlFlowDriver",
    "ExecutionResult",
    "ExecutionStatus",
    "CancellationToken",
    "execute_subroutine",
    "execute_loop",
    "simulate_steps_ahead",
    # Exception hierarchy
    "MSXError",
    "AssemblerError",
    "UndefinedSymbolError",
    "AddressingModeError",
    "BranchRangeError",
    "ExpressionError",
    "MacroError",
    "ErrorCollector",
]
