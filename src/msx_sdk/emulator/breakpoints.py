"""
Breakpoint Conditions
=====================

Line breakpoints with optional conditions such as `A == $FF` or
`HL >= BUFFER`, evaluated against a machine state between lines.

Operands resolve, in order, as:
1. Register names: A..L, I, R, pairs, IX, IY, SP, PC and shadow
   registers (A' or A_PRIME)
2. Literals in any assembler form ($FF, 0FFh, %1010, 0b1010, 'A')
3. Variables written at runtime, by label
4. Symbol table entries (label addresses and constants)

A condition whose operand cannot be resolved is false.

Example:
    >>> manager = BreakpointManager()
    >>> manager.add(12, "B == 0")
    >>> result = driver.execute_subroutine("MAIN", state,
    ...                                    stop_when=manager.predicate(symbols))
"""

import logging
import operator as _operator
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Optional

from msx_sdk.assembler.values import parse_literal
from msx_sdk.emulator.state import MachineState

logger = logging.getLogger(__name__)

# Longest first so that ">=" is not read as ">"
OPERATORS: dict[str, Callable[[int, int], bool]] = {
    "==": _operator.eq,
    "!=": _operator.ne,
    ">=": _operator.ge,
    "<=": _operator.le,
    ">": _operator.gt,
    "<": _operator.lt,
}


def resolve_operand(
    text: str,
    state: MachineState,
    symbols: Optional[Mapping[str, int]] = None,
) -> Optional[int]:
    """Value of one condition operand, or None."""
    name = text.strip().upper()
    if not name:
        return None
    if name.endswith("_PRIME"):
        name = name[: -len("_PRIME")] + "'"

    try:
        return state.get_pair(name)
    except KeyError:
        pass

    value = parse_literal(text.strip())
    if value is not None:
        return value

    symbols = symbols or {}
    variables = state.memory.named_view(symbols)
    if name in variables:
        return variables[name]
    return symbols.get(name)


@dataclass(frozen=True)
class Condition:
    """
    A comparison between two operands.

    Attributes:
        left: Left operand text
        operator: One of == != >= <= > <
        right: Right operand text
    """
    left: str
    operator: str
    right: str

    @classmethod
    def parse(cls, expression: str) -> "Condition":
        """
        Parse "left OP right".

        Raises:
            ValueError: No operator, or an empty operand
        """
        text = expression.strip()
        for symbol in OPERATORS:
            position = text.find(symbol)
            if position == -1:
                continue
            left = text[:position].strip()
            right = text[position + len(symbol):].strip()
            if left and right:
                return cls(left, symbol, right)
        raise ValueError(
            f"invalid condition '{expression}': expected 'operand operator operand' "
            f"with one of {', '.join(OPERATORS)}"
        )

    def evaluate(self, state: MachineState, symbols: Optional[Mapping[str, int]] = None) -> bool:
        """True when the comparison holds; False if an operand is unresolved."""
        left = resolve_operand(self.left, state, symbols)
        right = resolve_operand(self.right, state, symbols)
        if left is None or right is None:
            logger.debug("Unresolved condition operand in '%s'", self)
            return False
        return OPERATORS[self.operator](left, right)

    def __str__(self) -> str:
        return f"{self.left} {self.operator} {self.right}"


@dataclass
class Breakpoint:
    """A line breakpoint, optionally conditional."""
    line: int
    condition: Optional[Condition] = None
    enabled: bool = True

    def hit(self, line: int, state: MachineState, symbols: Optional[Mapping[str, int]] = None) -> bool:
        if not self.enabled or line != self.line:
            return False
        return self.condition is None or self.condition.evaluate(state, symbols)


class BreakpointManager:
    """Set of line breakpoints, checked before each executed line."""

    def __init__(self):
        self._breakpoints: dict[int, Breakpoint] = {}

    def add(self, line: int, condition: Optional[str] = None) -> Breakpoint:
        """
        Add or replace the breakpoint on a line.

        Raises:
            ValueError: Malformed condition
        """
        parsed = Condition.parse(condition) if condition else None
        breakpoint_ = Breakpoint(line, parsed)
        self._breakpoints[line] = breakpoint_
        return breakpoint_

    def remove(self, line: int) -> bool:
        """Remove the breakpoint on a line; False if there was none."""
        return self._breakpoints.pop(line, None) is not None

    def clear(self) -> None:
        self._breakpoints.clear()

    def __len__(self) -> int:
        return len(self._breakpoints)

    def __contains__(self, line: int) -> bool:
        return line in self._breakpoints

    def check(self, line: int, state: MachineState, symbols: Optional[Mapping[str, int]] = None) -> bool:
        """True when an enabled breakpoint on this line fires."""
        breakpoint_ = self._breakpoints.get(line)
        return breakpoint_ is not None and breakpoint_.hit(line, state, symbols)

    def predicate(self, symbols: Optional[Mapping[str, int]] = None) -> Callable[[int, MachineState], bool]:
        """A stop_when callable for the control-flow drivers."""
        return lambda line, state: self.check(line, state, symbols)
