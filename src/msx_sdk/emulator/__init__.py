"""
Z80/MSX Line Simulator
======================

Executes assembly source one line at a time against a machine model
(registers, flags, a runtime memory overlay and the video chip), and
drives whole subroutines and loops through it.

Main Components
---------------
- **MachineState**: registers, flags, memory overlay and VDP, deep-copied
  on every step
- **simulate_line**: the line interpreter
- **ControlFlowDriver**: subroutine walks, DJNZ loop replay, lookahead
- **VdpState**: VRAM plus the port $98/$99 address latch
- **bios**: MSX BIOS entry points and system variables
- **BreakpointManager**: conditional line breakpoints

Example:
    >>> from msx_sdk.emulator import MachineState, simulate_line
    >>> state = MachineState.initial()
    >>> state = simulate_line("LD HL, 0", state)
    >>> state = simulate_line("LD A, $41", state)
    >>> state = simulate_line("CALL $004D", state)
    >>> state.vdp.vram[0]
    65
"""

from msx_sdk.emulator.bios import BiosEntry, EntryKind, get_entry, get_entry_at
from msx_sdk.emulator.breakpoints import Breakpoint, BreakpointManager, Condition
from msx_sdk.emulator.flow import (
    CancellationToken,
    ControlFlowDriver,
    ExecutionResult,
    ExecutionStatus,
    execute_loop,
    execute_subroutine,
    simulate_steps_ahead,
)
from msx_sdk.emulator.interpreter import execute_instruction, parity, simulate_line
from msx_sdk.emulator.memory import RuntimeMemory
from msx_sdk.emulator.state import Flags, MachineState, Registers
from msx_sdk.emulator.vdp import VdpState

__all__ = [
    "BiosEntry",
    "EntryKind",
    "get_entry",
    "get_entry_at",
    "Breakpoint",
    "BreakpointManager",
    "Condition",
    "CancellationToken",
    "ControlFlowDriver",
    "ExecutionResult",
    "ExecutionStatus",
    "execute_loop",
    "execute_subroutine",
    "simulate_steps_ahead",
    "execute_instruction",
    "parity",
    "simulate_line",
    "RuntimeMemory",
    "Flags",
    "MachineState",
    "Registers",
    "VdpState",
]
