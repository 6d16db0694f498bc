"""
Step List Generator (Pass 2)
============================

Filters the source down to executable lines and describes each one for
a step-by-step debugger view. Directives are dropped; unknown words
(macro calls) are kept so the user still sees them.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from msx_sdk.assembler.opcodes import (
    CALL_MNEMONICS,
    CONDITION_CODES,
    JUMP_MNEMONICS,
    RETURN_MNEMONICS,
    OperandKind,
    estimate_cycles,
)
from msx_sdk.assembler.parser import SourceLine
from msx_sdk.assembler.values import Fallback, resolve_expression


class StepKind(Enum):
    """
    Classification of an execution step.

    RST restarts are classified as CALL steps.
    """
    INSTRUCTION = auto()
    CALL = auto()
    JUMP = auto()
    RETURN = auto()

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ExecutionStep:
    """
    One executable source line.

    Attributes:
        id: 1-based sequence number
        line_number: 1-based source line
        mnemonic: Uppercase mnemonic
        operands: Operand text as written
        kind: INSTRUCTION, CALL, JUMP or RETURN
        description: Human-readable summary
        cycles: T-state estimate (0 for unknown mnemonics)
    """
    id: int
    line_number: int
    mnemonic: str
    operands: str
    kind: StepKind
    description: str
    cycles: int


def classify(mnemonic: str) -> StepKind:
    """Step kind for a mnemonic."""
    if mnemonic in CALL_MNEMONICS:
        return StepKind.CALL
    if mnemonic in JUMP_MNEMONICS:
        return StepKind.JUMP
    if mnemonic in RETURN_MNEMONICS:
        return StepKind.RETURN
    return StepKind.INSTRUCTION


def describe(
    line: SourceLine,
    symbols: Optional[Mapping[str, int]] = None,
    describe_address: Optional[Callable] = None,
    fallback: Optional[Fallback] = None,
) -> str:
    """
    Describe an executable line.

    Conditional control transfers spell out the condition; calls into
    known firmware entry points name the routine.
    """
    mnemonic, operands = line.directive, line.args
    description = f"{mnemonic} {operands}".strip()

    instruction = line.instruction()
    if instruction.condition and mnemonic in ("RET", "CALL", "JP", "JR"):
        description = f"{mnemonic} {CONDITION_CODES[instruction.condition]} ({operands})"

    if describe_address and mnemonic in CALL_MNEMONICS and instruction.target is not None:
        target = instruction.target
        if target.kind == OperandKind.IMMEDIATE:
            address = resolve_expression(target.expression, symbols, fallback)
            if address is not None and (note := describe_address(address)):
                description = f"{description} - {note}"

    return description


def generate_steps(
    lines: Iterable[SourceLine],
    symbols: Optional[Mapping[str, int]] = None,
    describe_address: Optional[Callable] = None,
    fallback: Optional[Fallback] = None,
) -> list[ExecutionStep]:
    """
    Build the ordered step list.

    Args:
        lines: Parsed source lines
        symbols: Symbol table, used to name firmware call targets
        describe_address: Address -> description, or None
        fallback: Resolver for names missing from the symbol table

    Returns:
        Steps numbered from 1 in source order
    """
    steps: list[ExecutionStep] = []
    for line in lines:
        if not line.is_executable:
            continue
        steps.append(ExecutionStep(
            id=len(steps) + 1,
            line_number=line.line_number,
            mnemonic=line.directive,
            operands=line.args,
            kind=classify(line.directive),
            description=describe(line, symbols, describe_address, fallback),
            cycles=estimate_cycles(line.instruction()),
        ))
    return steps
