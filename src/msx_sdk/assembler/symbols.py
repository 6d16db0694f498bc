"""
Symbol Table Builder (Pass 0)
=============================

Walks the source once and assigns every label an address, and every
EQU label a constant value, by threading an address counter through the
lines:

- ORG sets the counter (labels on the ORG line bind to the new origin)
- EQU binds its labels to the operand value, recorded as constants
- every other line binds its labels to the counter and then advances it
  by the size of the line

Instruction sizes come from the encoder itself, with forward references
standing in as zero; the static per-mnemonic table is only used for
shapes the encoder rejects. Data directives are sized exactly.

The counter is never shared state: advance() takes the current address
and returns the next one, so a single line can be sized and tested in
isolation.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional

from msx_sdk.assembler.encoder import instruction_size
from msx_sdk.assembler.opcodes import MNEMONICS, estimate_size
from msx_sdk.assembler.parser import SourceLine
from msx_sdk.assembler.values import Fallback, format_hex, resolve_expression

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class Constant:
    """
    A named constant from an EQU line.

    Attributes:
        name: Uppercase constant name
        value: Resolved value
        hex: Canonical hex rendering ("$4010")
    """
    name: str
    value: int
    hex: str


@dataclass(frozen=True)
class LineLayout:
    """
    Outcome of sizing one line.

    Attributes:
        address: Address bound to the line's labels
        size: Bytes the line occupies
        next_address: Counter value for the following line
        constant: Value bound by EQU, None otherwise
    """
    address: int
    size: int
    next_address: int
    constant: Optional[int] = None


@dataclass
class SymbolPass:
    """
    Everything Pass 0 learns about a source text.

    Attributes:
        symbols: Name -> address or constant value (uppercase names)
        labels: Address label -> 1-based line where it is declared
        constants: EQU constants in declaration order
        line_addresses: Line -> address (the value, for EQU lines)
        line_sizes: Line -> bytes occupied (0 for EQU/ORG/label-only lines)
    """
    symbols: dict[str, int] = field(default_factory=dict)
    labels: dict[str, int] = field(default_factory=dict)
    constants: list[Constant] = field(default_factory=list)
    line_addresses: dict[int, int] = field(default_factory=dict)
    line_sizes: dict[int, int] = field(default_factory=dict)

    def is_constant(self, name: str) -> bool:
        return any(constant.name == name for constant in self.constants)


# =============================================================================
# Sizing
# =============================================================================

def line_size(
    line: SourceLine,
    symbols: Optional[Mapping[str, int]] = None,
) -> int:
    """
    Bytes occupied by a non-ORG, non-EQU line.

    Unknown words (macro calls) occupy nothing.
    """
    if line.directive in MNEMONICS:
        size = instruction_size(line.directive, line.args, symbols)
        if size is not None:
            return size
        size = estimate_size(line.directive, line.args, symbols)
        logger.debug("Line %d: using static size %d for %s %s",
                     line.line_number, size, line.directive, line.args)
        return size
    return estimate_size(line.directive, line.args, symbols)


def advance(
    address: int,
    line: SourceLine,
    symbols: Optional[Mapping[str, int]] = None,
    fallback: Optional[Fallback] = None,
) -> LineLayout:
    """
    Lay out one line at the given counter value.

    Args:
        address: Counter value before the line
        line: Parsed line
        symbols: Symbols known so far
        fallback: Resolver for names missing from the symbol table

    Returns:
        LineLayout with the bound address and the next counter value
    """
    match line.directive:
        case "ORG":
            origin = resolve_expression(line.args, symbols, fallback)
            if origin is None:
                logger.debug("Line %d: unresolved ORG '%s' ignored", line.line_number, line.args)
                origin = address
            return LineLayout(address=origin, size=0, next_address=origin)
        case "EQU":
            value = resolve_expression(line.args, symbols, fallback)
            return LineLayout(address=address, size=0, next_address=address, constant=value)
        case _:
            size = line_size(line, symbols)
            return LineLayout(address=address, size=size, next_address=(address + size) & 0xFFFF)


def build_symbol_table(
    lines: Iterable[SourceLine],
    fallback: Optional[Fallback] = None,
) -> SymbolPass:
    """
    Run Pass 0 over parsed lines.

    Args:
        lines: Parsed source lines, in order
        fallback: Resolver for names missing from the symbol table

    Returns:
        SymbolPass with symbols, label lines, constants and line layout
    """
    result = SymbolPass()
    address = 0

    for line in lines:
        layout = advance(address, line, result.symbols, fallback)
        number = line.line_number

        if line.directive == "EQU":
            if layout.constant is None:
                logger.debug("Line %d: unresolved EQU '%s' skipped", number, line.args)
            else:
                result.line_addresses[number] = layout.constant
                for label in line.labels:
                    result.constants.append(
                        Constant(name=label, value=layout.constant, hex=format_hex(layout.constant))
                    )
                    result.symbols[label] = layout.constant
            result.line_sizes[number] = 0
        else:
            result.line_addresses[number] = layout.address
            result.line_sizes[number] = layout.size
            for label in line.labels:
                if label in result.labels and result.labels[label] != number:
                    logger.debug("Label %s redefined at line %d (was line %d)",
                                 label, number, result.labels[label])
                result.labels[label] = number
                result.symbols[label] = layout.address

        address = layout.next_address

    return result
