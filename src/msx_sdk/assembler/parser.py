"""
Z80 Assembly Line Parser
========================

Splits Z80 source lines into labels, a directive or mnemonic, and
operand text, and turns instruction operands into a closed set of
operand shapes that the encoder and the interpreter dispatch on.

Line Structure
--------------
```asm
START:  LD   A, 10       ; colon label, mnemonic, operands, comment
ALIAS1: ALIAS2: NOP      ; chained colon labels share one address
BUFFER  DS   16          ; bare label followed by a directive
LOOP                     ; bare label alone on a line
```

A word that is neither a mnemonic nor a directive is taken as a label
when a mnemonic or directive follows it; otherwise it is kept as the
directive of the line (an unknown instruction or macro call) so that
later passes can report it instead of silently dropping it.

Operand Shapes
--------------
| Syntax          | Kind       | Example          |
|-----------------|------------|------------------|
| A, B, ... L     | REG8       | LD A, B          |
| BC, HL, IX, AF' | REG16      | PUSH HL          |
| value           | IMMEDIATE  | LD A, 10         |
| (HL), (BC), (C) | INDIRECT   | LD A, (HL)       |
| (IX+d)          | INDEXED    | LD A, (IX+3)     |
| (nn)            | ABSOLUTE   | LD A, (COUNTER)  |
| NZ, Z, ... M    | CONDITION  | JP NZ, LOOP      |

Comments start at the first `;` outside quotes. The apostrophe in AF'
is part of the register name, not a quote.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from msx_sdk.assembler.opcodes import (
    CONDITION_CODES,
    CONDITIONAL_MNEMONICS,
    MNEMONICS,
    DIRECTIVES,
    REGISTERS_8,
    REGISTER_PAIRS,
    OperandKind,
)

# Leading "NAME:" label, colon optional whitespace
_COLON_LABEL = re.compile(r"^([A-Za-z_.@?][\w.@?$]*)::?\s*")
_INDEXED = re.compile(r"^(IX|IY)\s*(?:([+-])\s*(.+))?$", re.IGNORECASE)


# =============================================================================
# Quote-aware scanning
# =============================================================================

def _unquoted_mask(text: str) -> list[bool]:
    """
    For each character, True when it lies outside a quoted string.

    An apostrophe directly after AF (case-insensitive) names the shadow
    register and does not open a quote.
    """
    mask: list[bool] = []
    quote = ""
    for index, char in enumerate(text):
        if quote:
            mask.append(False)
            if char == quote:
                quote = ""
            continue
        if char in "'\"":
            if char == "'" and text[max(0, index - 2):index].upper() == "AF":
                mask.append(True)
                continue
            quote = char
            mask.append(False)
            continue
        mask.append(True)
    return mask


def strip_comment(text: str) -> str:
    """Remove a trailing `;` comment and surrounding whitespace."""
    for index, outside in enumerate(_unquoted_mask(text)):
        if outside and text[index] == ";":
            return text[:index].strip()
    return text.strip()


def split_operands(args: str) -> list[str]:
    """
    Split operand text on top-level commas.

    Commas inside quotes or parentheses do not split. An empty operand
    string yields an empty list.
    """
    if not args.strip():
        return []
    operands: list[str] = []
    depth = 0
    start = 0
    for index, outside in enumerate(_unquoted_mask(args)):
        if not outside:
            continue
        char = args[index]
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(0, depth - 1)
        elif char == "," and depth == 0:
            operands.append(args[start:index].strip())
            start = index + 1
    operands.append(args[start:].strip())
    return operands


# =============================================================================
# Source Lines
# =============================================================================

@dataclass(frozen=True)
class SourceLine:
    """
    One decomposed source line.

    Attributes:
        line_number: 1-based line number in the analyzed text
        text: Original line text
        labels: Labels declared on the line, uppercase, in order
        directive: Uppercase mnemonic, directive or unknown word ("" if none)
        args: Operand text with the comment removed
    """
    line_number: int
    text: str
    labels: tuple[str, ...]
    directive: str
    args: str

    @property
    def is_instruction(self) -> bool:
        """True for a supported Z80 mnemonic."""
        return self.directive in MNEMONICS

    @property
    def is_directive(self) -> bool:
        """True for an assembler directive such as ORG or DB."""
        return self.directive in DIRECTIVES

    @property
    def is_executable(self) -> bool:
        """True for any line the step list and the drivers execute."""
        return bool(self.directive) and self.directive not in DIRECTIVES

    def instruction(self) -> "Instruction":
        """Parse the operands of an executable line."""
        return parse_instruction(self.directive, self.args)


def _is_keyword(word: str) -> bool:
    upper = word.upper()
    return upper in MNEMONICS or upper in DIRECTIVES


def parse_line(text: str, line_number: int = 1) -> Optional[SourceLine]:
    """
    Decompose a source line into labels, directive and operands.

    Args:
        text: Line text
        line_number: 1-based line number to record

    Returns:
        SourceLine, or None for blank and comment-only lines
    """
    remaining = strip_comment(text)
    if not remaining:
        return None

    labels: list[str] = []
    has_colon_label = False
    while match := _COLON_LABEL.match(remaining):
        labels.append(match.group(1).upper())
        remaining = remaining[match.end():]
        has_colon_label = True

    directive = ""
    args = ""
    if remaining:
        parts = remaining.split(None, 1)
        first = parts[0]
        remainder = parts[1].strip() if len(parts) > 1 else ""

        if _is_keyword(first):
            directive = first.upper()
            args = remainder
        elif remainder:
            next_parts = remainder.split(None, 1)
            if _is_keyword(next_parts[0]):
                # "LABEL OPCODE ARGS"
                labels.append(first.upper())
                directive = next_parts[0].upper()
                args = next_parts[1].strip() if len(next_parts) > 1 else ""
            else:
                # unknown instruction or macro call with arguments
                directive = first.upper()
                args = remainder
        elif has_colon_label:
            # "LABEL: MACRO" is far more likely than a second bare label
            directive = first.upper()
        else:
            labels.append(first.upper())

    return SourceLine(
        line_number=line_number,
        text=text,
        labels=tuple(labels),
        directive=directive,
        args=args,
    )


def parse_source(source: str) -> list[SourceLine]:
    """Parse every non-blank line of a source text."""
    parsed = []
    for number, text in enumerate(source.splitlines(), start=1):
        line = parse_line(text, number)
        if line is not None:
            parsed.append(line)
    return parsed


# =============================================================================
# Instruction Operands
# =============================================================================

@dataclass(frozen=True)
class Operand:
    """
    A single classified operand.

    Attributes:
        kind: Operand shape
        text: Operand text as written
        register: Register name for REG8/REG16/INDIRECT/INDEXED, condition
            name for CONDITION
        expression: Value text for IMMEDIATE/ABSOLUTE, signed displacement
            text (e.g. "+5", "-OFFSET", "0") for INDEXED
    """
    kind: OperandKind
    text: str
    register: Optional[str] = None
    expression: Optional[str] = None

    @property
    def is_memory(self) -> bool:
        """True for operands that address main memory."""
        return self.kind in (OperandKind.INDIRECT, OperandKind.INDEXED, OperandKind.ABSOLUTE)

    def __str__(self) -> str:
        return self.text


def _wrapped_in_parens(text: str) -> bool:
    """True when the opening parenthesis closes at the last character."""
    if not (text.startswith("(") and text.endswith(")")):
        return False
    depth = 0
    mask = _unquoted_mask(text)
    for index, char in enumerate(text):
        if not mask[index]:
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and index != len(text) - 1:
                return False
    return depth == 0


def parse_operand(text: str) -> Operand:
    """Classify one operand string."""
    text = text.strip()
    upper = text.upper()

    if upper in REGISTERS_8:
        return Operand(OperandKind.REG8, text, register=upper)
    if upper in REGISTER_PAIRS:
        return Operand(OperandKind.REG16, text, register=upper)

    if _wrapped_in_parens(text):
        inner = text[1:-1].strip()
        inner_upper = inner.upper()
        if inner_upper in ("HL", "BC", "DE", "SP", "C"):
            return Operand(OperandKind.INDIRECT, text, register=inner_upper)
        if match := _INDEXED.match(inner):
            register = match.group(1).upper()
            if match.group(2):
                displacement = f"{match.group(2)}{match.group(3).strip()}"
            else:
                displacement = "0"
            return Operand(OperandKind.INDEXED, text, register=register, expression=displacement)
        return Operand(OperandKind.ABSOLUTE, text, expression=inner)

    return Operand(OperandKind.IMMEDIATE, text, expression=text)


@dataclass(frozen=True)
class Instruction:
    """
    A parsed instruction: mnemonic, optional condition, operands.

    The condition is split off for JP, JR, CALL and RET so that operands
    only hold data operands.
    """
    mnemonic: str
    operands: tuple[Operand, ...]
    condition: Optional[str] = None
    text: str = ""

    @property
    def is_supported(self) -> bool:
        """False for unknown mnemonics and macro calls."""
        return self.mnemonic in MNEMONICS

    @property
    def target(self) -> Optional[Operand]:
        """Last operand: the destination of a control transfer."""
        return self.operands[-1] if self.operands else None

    def operand(self, index: int) -> Optional[Operand]:
        """Operand at index, or None."""
        return self.operands[index] if index < len(self.operands) else None


@lru_cache(maxsize=4096)
def parse_instruction(mnemonic: str, args: str) -> Instruction:
    """
    Parse operand text for a mnemonic.

    Results are cached: the drivers re-parse the same lines many times
    while replaying loops.
    """
    mnemonic = mnemonic.upper()
    parts = split_operands(args)

    condition = None
    if mnemonic in CONDITIONAL_MNEMONICS and parts:
        first = parts[0].upper()
        if first in CONDITION_CODES and (len(parts) == 2 or mnemonic == "RET"):
            condition = first
            parts = parts[1:]

    operands = tuple(parse_operand(part) for part in parts)
    return Instruction(
        mnemonic=mnemonic,
        operands=operands,
        condition=condition,
        text=args.strip(),
    )
