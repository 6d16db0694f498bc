"""
Control-Flow Drivers
====================

Run many source lines through the interpreter, following calls, returns,
jumps and DJNZ loops by line number.

Three entry points, all bounded by an iteration ceiling:

- execute_subroutine(): walk from a label or line until the outermost RET
- execute_loop(): replay a DJNZ loop body once per remaining count in B
- simulate_steps_ahead(): the subroutine walk with a small ceiling, for
  previewing what the code is about to do

Each takes the full list of source lines, the label map (label -> line
number), the symbol table and the static memory image, and returns an
ExecutionResult holding a new state. The state passed in is never
modified.

Call Handling
-------------
The drivers keep their own call stack of return lines, separate from the
stack bytes the interpreter pushes into memory:

- CALL to a known label pushes the next line and jumps to the label.
- CALL to anything else (BIOS below $4000, unresolvable targets) is a
  black box: the interpreter applies its modelled effects (VRAM
  routines), then the return address is popped and the walk continues.
- RET with an empty call stack ends the walk with status RETURNED.
- JP to firmware is a tail call: the firmware's own RET returns to our
  caller.

Cancellation
------------
Long replays can be aborted from another thread with a CancellationToken;
the drivers check it before every line and stop with status CANCELLED.
"""

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Optional, Union

from msx_sdk.assembler.opcodes import OperandKind
from msx_sdk.assembler.parser import Operand, SourceLine, parse_line
from msx_sdk.assembler.values import resolve_expression
from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator import bios
from msx_sdk.emulator.interpreter import apply_instruction
from msx_sdk.emulator.state import MachineState

if TYPE_CHECKING:
    from msx_sdk.assembler.analyzer import AnalysisResult

logger = logging.getLogger(__name__)

StopPredicate = Callable[[int, MachineState], bool]


# =============================================================================
# Results
# =============================================================================

class ExecutionStatus(Enum):
    """Why a driver stopped."""
    RUNNING = auto()              # stopped at a resumable point (loop finished)
    RETURNED = auto()             # RET with an empty call stack
    STEP_LIMIT_EXCEEDED = auto()  # ceiling reached; state is truncated
    CANCELLED = auto()            # cancellation token fired
    BREAKPOINT = auto()           # stop_when predicate matched
    END_OF_SOURCE = auto()        # ran off the last line, or no such start

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")


@dataclass
class ExecutionResult:
    """
    Outcome of a driver run.

    Attributes:
        state: Machine state after the run
        status: Why the run stopped
        steps: Number of instruction lines executed
        last_line: Line number of the last executed line
        next_line: Line number where execution would resume, if known
    """
    state: MachineState
    status: ExecutionStatus
    steps: int = 0
    last_line: Optional[int] = None
    next_line: Optional[int] = None

    @property
    def possible_infinite_loop(self) -> bool:
        """True when the run was cut short by the iteration ceiling."""
        return self.status == ExecutionStatus.STEP_LIMIT_EXCEEDED


class CancellationToken:
    """Thread-safe flag an interactive caller sets to abort a long run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# =============================================================================
# Driver
# =============================================================================

class ControlFlowDriver:
    """
    Line-indexed program walker over one analyzed source.

    Args:
        lines: Source text lines; line N is lines[N - 1]
        labels: Label -> 1-based line number
        symbols: Symbol table (labels and constants -> value)
        image: Static memory image
        config: Iteration ceilings and firmware boundary
        line_addresses: Line number -> address, used for PC and for
            mapping computed jump targets back to lines
    """

    def __init__(
        self,
        lines: Sequence[str],
        labels: Mapping[str, int],
        symbols: Mapping[str, int],
        image: Optional[Mapping[int, int]] = None,
        config: Optional[SimulatorConfig] = None,
        line_addresses: Optional[Mapping[int, int]] = None,
    ):
        self.labels = {name.upper(): line for name, line in labels.items()}
        self.symbols = symbols
        self.image = image
        self.config = config or SimulatorConfig()
        self.line_addresses = dict(line_addresses or {})
        self._lines: list[Optional[SourceLine]] = [
            parse_line(text, number) for number, text in enumerate(lines, start=1)
        ]

        # Address -> first executable line index at that address
        self._address_index: dict[int, int] = {}
        for number, address in sorted(self.line_addresses.items()):
            index = number - 1
            if 0 <= index < len(self._lines) and self._is_executable(index):
                self._address_index.setdefault(address & 0xFFFF, index)

    @classmethod
    def from_analysis(
        cls,
        result: "AnalysisResult",
        config: Optional[SimulatorConfig] = None,
    ) -> "ControlFlowDriver":
        """Driver over the lines, labels and image of an analysis result."""
        return cls(
            result.lines,
            result.labels,
            result.symbols,
            result.memory_image,
            config,
            result.line_addresses,
        )

    # ========================================
    # Public Entry Points
    # ========================================

    def execute_subroutine(
        self,
        start: Union[str, int],
        state: MachineState,
        max_steps: Optional[int] = None,
        stop_when: Optional[StopPredicate] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Walk from a label or line number until the outermost RET.

        Args:
            start: Label name or 1-based line number
            state: Starting state (not modified)
            max_steps: Ceiling on executed lines (default from config)
            stop_when: Predicate checked before each line after the first;
                a true result stops with status BREAKPOINT
            cancel: Optional cancellation token

        Returns:
            ExecutionResult; an unknown start gives an unchanged state and
            status END_OF_SOURCE
        """
        limit = self.config.max_subroutine_steps if max_steps is None else max_steps
        index = self._start_index(start)
        if index is None:
            logger.debug("Unknown start %r", start)
            return ExecutionResult(state.copy(), ExecutionStatus.END_OF_SOURCE)

        state = state.copy()
        call_stack: list[int] = []
        steps = 0
        last_line = None

        while True:
            index = self._next_executable(index)
            if index is None:
                return ExecutionResult(state, ExecutionStatus.END_OF_SOURCE, steps, last_line)
            line_number = index + 1

            if cancel is not None and cancel.cancelled:
                return ExecutionResult(state, ExecutionStatus.CANCELLED, steps, last_line, line_number)
            if steps >= limit:
                logger.warning(
                    "Step limit of %d reached at line %d: possible infinite loop", limit, line_number
                )
                return ExecutionResult(
                    state, ExecutionStatus.STEP_LIMIT_EXCEEDED, steps, last_line, line_number
                )
            if stop_when is not None and steps and stop_when(line_number, state):
                return ExecutionResult(state, ExecutionStatus.BREAKPOINT, steps, last_line, line_number)

            steps += 1
            last_line = line_number
            next_index = self._step(index, state, call_stack, tail_calls=True)
            if next_index is None:
                return ExecutionResult(state, ExecutionStatus.RETURNED, steps, last_line)
            index = next_index

    def execute_loop(
        self,
        djnz_line: int,
        target_label: str,
        state: MachineState,
        max_steps: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Run a DJNZ loop to completion.

        The loop body (target label up to the DJNZ line) is replayed once
        per count held in B on entry; each pass ends by decrementing B.
        Jumps inside the body are followed, calls into user code are
        walked, and jumps into firmware are skipped.

        Args:
            djnz_line: 1-based line number of the DJNZ
            target_label: Label the DJNZ branches to
            state: Starting state (not modified)
            max_steps: Ceiling on executed lines (default from config)
            cancel: Optional cancellation token

        Returns:
            ExecutionResult with status RUNNING and next_line set to the
            line after the DJNZ when the loop finishes
        """
        limit = self.config.max_loop_steps if max_steps is None else max_steps
        state = state.copy()
        target_line = self.labels.get(target_label.strip().upper())
        djnz_index = djnz_line - 1
        if target_line is None or not 0 <= djnz_index < len(self._lines):
            logger.debug("Unknown loop target %r or line %d", target_label, djnz_line)
            return ExecutionResult(state, ExecutionStatus.END_OF_SOURCE)

        target_index = target_line - 1
        count = state.registers.b
        if count == 0:
            return ExecutionResult(state, ExecutionStatus.RUNNING, next_line=djnz_line + 1)

        call_stack: list[int] = []
        passes = 0
        steps = 0
        last_line = None
        index = target_index

        while True:
            index = self._next_executable(index)
            if index is None:
                return ExecutionResult(state, ExecutionStatus.END_OF_SOURCE, steps, last_line)
            line_number = index + 1

            if cancel is not None and cancel.cancelled:
                return ExecutionResult(state, ExecutionStatus.CANCELLED, steps, last_line, line_number)
            if steps >= limit:
                logger.warning(
                    "Loop step limit of %d reached at line %d after %d of %d passes",
                    limit, line_number, passes, count,
                )
                return ExecutionResult(
                    state, ExecutionStatus.STEP_LIMIT_EXCEEDED, steps, last_line, line_number
                )

            steps += 1
            last_line = line_number
            if index == djnz_index:
                state.registers.b = (state.registers.b - 1) & 0xFF
                passes += 1
                if passes >= count:
                    return ExecutionResult(
                        state, ExecutionStatus.RUNNING, steps, last_line, djnz_line + 1
                    )
                index = target_index
                continue

            next_index = self._step(index, state, call_stack, tail_calls=False)
            if next_index is None:
                return ExecutionResult(state, ExecutionStatus.RETURNED, steps, last_line)
            index = next_index

    def simulate_steps_ahead(
        self,
        start: Union[str, int],
        state: MachineState,
        max_steps: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Bounded lookahead: a subroutine walk with the lookahead ceiling."""
        limit = self.config.lookahead_steps if max_steps is None else max_steps
        return self.execute_subroutine(start, state, max_steps=limit, cancel=cancel)

    # ========================================
    # Line Navigation
    # ========================================

    def _is_executable(self, index: int) -> bool:
        line = self._lines[index]
        return line is not None and line.is_executable

    def _next_executable(self, index: int) -> Optional[int]:
        """First executable line index at or after index, or None."""
        while 0 <= index < len(self._lines):
            if self._is_executable(index):
                return index
            index += 1
        return None

    def _start_index(self, start: Union[str, int]) -> Optional[int]:
        if isinstance(start, int):
            return start - 1 if 1 <= start <= len(self._lines) else None
        line = self.labels.get(start.strip().upper())
        return None if line is None else line - 1

    def _index_of_address(self, address: int) -> Optional[int]:
        """Line index holding the code at an address, via line addresses or labels."""
        address &= 0xFFFF
        if address in self._address_index:
            return self._address_index[address]
        for name, value in self.symbols.items():
            if value == address and name in self.labels:
                return self.labels[name] - 1
        return None

    def _resolve_target(self, operand: Optional[Operand], state: MachineState) -> tuple[Optional[int], Optional[int]]:
        """
        Locate a control-transfer target.

        Returns:
            (line index or None, resolved address or None)
        """
        if operand is None:
            return None, None

        if operand.kind == OperandKind.INDIRECT and operand.register == "HL":
            address = state.registers.hl
            return self._index_of_address(address), address
        if operand.kind == OperandKind.INDEXED:
            address = state.registers.get(operand.register)
            return self._index_of_address(address), address

        name = (operand.expression or "").strip().upper()
        if name in self.labels:
            return self.labels[name] - 1, self.symbols.get(name)

        address = resolve_expression(name, self.symbols, bios.resolve_name)
        if address is None:
            return None, None
        # Numeric, EQU and BIOS targets below the cartridge area are
        # firmware even when user code was assembled at the same address.
        if address < self.config.firmware_limit:
            return None, address
        return self._index_of_address(address), address

    # ========================================
    # Single Step
    # ========================================

    def _pop_return(self, state: MachineState) -> None:
        """Simulate the RET of a black-boxed routine."""
        regs = state.registers
        regs.pc = state.memory.read_word(regs.sp, self.image)
        regs.sp = (regs.sp + 2) & 0xFFFF

    def _step(
        self,
        index: int,
        state: MachineState,
        call_stack: list[int],
        tail_calls: bool,
    ) -> Optional[int]:
        """
        Execute the line at index in place.

        Returns:
            Index of the next line, or None when a RET (or a firmware tail
            call) leaves the outermost routine
        """
        line = self._lines[index]
        instruction = line.instruction()
        address = self.line_addresses.get(line.line_number)
        mnemonic = instruction.mnemonic

        match mnemonic:
            case "CALL" | "RST":
                if not state.flags.check(instruction.condition):
                    return index + 1
                target_index, target = self._resolve_target(instruction.target, state)
                apply_instruction(instruction, state, self.symbols, self.image, address)
                if target_index is not None:
                    call_stack.append(index + 1)
                    return target_index
                if target is None:
                    logger.debug("Line %d: unresolved call target %s", line.line_number, instruction.text)
                else:
                    logger.debug("Line %d: black-box call to $%04X", line.line_number, target)
                self._pop_return(state)
                return index + 1

            case "RET" | "RETI" | "RETN":
                if mnemonic == "RET" and not state.flags.check(instruction.condition):
                    return index + 1
                apply_instruction(instruction, state, self.symbols, self.image, address)
                return call_stack.pop() if call_stack else None

            case "JP" | "JR":
                if not state.flags.check(instruction.condition):
                    return index + 1
                target_index, target = self._resolve_target(instruction.target, state)
                apply_instruction(instruction, state, self.symbols, self.image, address)
                if target_index is not None:
                    return target_index
                if target is not None and target < self.config.firmware_limit:
                    if not tail_calls:
                        logger.debug("Line %d: skipping jump into firmware $%04X", line.line_number, target)
                        return index + 1
                    self._pop_return(state)
                    return call_stack.pop() if call_stack else None
                logger.debug("Line %d: unresolved jump target %s", line.line_number, instruction.text)
                return index + 1

            case "DJNZ":
                apply_instruction(instruction, state, self.symbols, self.image, address)
                if state.registers.b == 0:
                    return index + 1
                target_index, _ = self._resolve_target(instruction.target, state)
                if target_index is None:
                    logger.debug("Line %d: unresolved DJNZ target %s", line.line_number, instruction.text)
                    return index + 1
                return target_index

            case _:
                apply_instruction(instruction, state, self.symbols, self.image, address)
                return index + 1


# =============================================================================
# Functional Interface
# =============================================================================

def execute_subroutine(
    start: Union[str, int],
    state: MachineState,
    lines: Sequence[str],
    labels: Mapping[str, int],
    symbols: Mapping[str, int],
    image: Optional[Mapping[int, int]] = None,
    max_steps: Optional[int] = None,
    stop_when: Optional[StopPredicate] = None,
    cancel: Optional[CancellationToken] = None,
    config: Optional[SimulatorConfig] = None,
    line_addresses: Optional[Mapping[int, int]] = None,
) -> ExecutionResult:
    """Bounded subroutine execution; see ControlFlowDriver.execute_subroutine."""
    driver = ControlFlowDriver(lines, labels, symbols, image, config, line_addresses)
    return driver.execute_subroutine(start, state, max_steps, stop_when, cancel)


def execute_loop(
    djnz_line: int,
    target_label: str,
    state: MachineState,
    lines: Sequence[str],
    labels: Mapping[str, int],
    symbols: Mapping[str, int],
    image: Optional[Mapping[int, int]] = None,
    max_steps: Optional[int] = None,
    cancel: Optional[CancellationToken] = None,
    config: Optional[SimulatorConfig] = None,
    line_addresses: Optional[Mapping[int, int]] = None,
) -> ExecutionResult:
    """Exhaustive loop execution; see ControlFlowDriver.execute_loop."""
    driver = ControlFlowDriver(lines, labels, symbols, image, config, line_addresses)
    return driver.execute_loop(djnz_line, target_label, state, max_steps, cancel)


def simulate_steps_ahead(
    start: Union[str, int],
    state: MachineState,
    lines: Sequence[str],
    labels: Mapping[str, int],
    symbols: Mapping[str, int],
    image: Optional[Mapping[int, int]] = None,
    max_steps: Optional[int] = None,
    cancel: Optional[CancellationToken] = None,
    config: Optional[SimulatorConfig] = None,
    line_addresses: Optional[Mapping[int, int]] = None,
) -> ExecutionResult:
    """Bounded lookahead; see ControlFlowDriver.simulate_steps_ahead."""
    driver = ControlFlowDriver(lines, labels, symbols, image, config, line_addresses)
    return driver.simulate_steps_ahead(start, state, max_steps, cancel)
