"""
Z80 Instruction Set Tables
==========================

Static knowledge about the Z80 subset the toolchain understands:
mnemonics, directives, register names, condition codes, the static size
heuristic used when an instruction cannot be encoded, and T-state
timings for step cycle estimates.

Operand Kinds
-------------
Every operand of a parsed instruction falls into one of these shapes:

1. **REG8**: A, B, C, D, E, H, L (plus I and R for the special loads)
2. **REG16**: BC, DE, HL, SP, AF, AF', IX, IY
3. **IMMEDIATE**: literal, label or expression (e.g. LD A, 10)
4. **INDIRECT**: register-indirect memory (HL), (BC), (DE), (SP), or port (C)
5. **INDEXED**: index register plus displacement (IX+5), (IY-2)
6. **ABSOLUTE**: memory address or port number in parentheses (nn)
7. **CONDITION**: flag predicate of a control transfer (NZ, Z, NC, C, PO, PE, P, M)

Condition Codes
---------------
    NZ  Z=0         Z   Z=1
    NC  C=0         C   C=1
    PO  P/V=0       PE  P/V=1
    P   S=0         M   S=1

Reference
---------
- Zilog Z80 CPU User Manual (UM0080)
- MSX Technical Data Book
"""

from collections.abc import Mapping
from enum import Enum, auto
from typing import TYPE_CHECKING, Optional

from msx_sdk.assembler.values import resolve_expression

if TYPE_CHECKING:
    from msx_sdk.assembler.parser import Instruction, Operand


# =============================================================================
# Operand Kind Enumeration
# =============================================================================

class OperandKind(Enum):
    """Shape of a single instruction operand."""
    REG8 = auto()        # 8-bit register
    REG16 = auto()       # register pair or index register
    IMMEDIATE = auto()   # value, label or expression
    INDIRECT = auto()    # (HL), (BC), (DE), (SP), (C)
    INDEXED = auto()     # (IX+d), (IY+d)
    ABSOLUTE = auto()    # (nn)
    CONDITION = auto()   # NZ, Z, NC, C, PO, PE, P, M

    def __str__(self) -> str:
        """Return human-readable name for error messages."""
        return self.name.lower()


# =============================================================================
# Mnemonics and Directives
# =============================================================================

MNEMONICS: frozenset[str] = frozenset({
    "ADC", "ADD", "AND", "BIT", "CALL", "CCF", "CP", "CPD", "CPDR", "CPI",
    "CPIR", "CPL", "DAA", "DEC", "DI", "DJNZ", "EI", "EX", "EXX", "HALT",
    "IM", "IN", "INC", "IND", "INDR", "INI", "INIR", "JP", "JR", "LD",
    "LDD", "LDDR", "LDI", "LDIR", "NEG", "NOP", "OR", "OTDR", "OTIR", "OUT",
    "OUTD", "OUTI", "POP", "PUSH", "RES", "RET", "RETI", "RETN", "RL",
    "RLA", "RLC", "RLCA", "RLD", "RR", "RRA", "RRC", "RRCA", "RRD", "RST",
    "SBC", "SCF", "SET", "SLA", "SLL", "SRA", "SRL", "SUB", "XOR",
})

DIRECTIVES: frozenset[str] = frozenset({
    "EQU", "ORG", "DB", "DW", "DS", "DEFB", "DEFW", "DEFS", "DEFM",
    "INCLUDE", "INCBIN", "END", "MACRO", "ENDM", "REPEAT", "REPT", "ENDR",
})

# Directives that place literal bytes in the memory image
BYTE_DIRECTIVES: frozenset[str] = frozenset({"DB", "DEFB", "DEFM"})
WORD_DIRECTIVES: frozenset[str] = frozenset({"DW", "DEFW"})
SPACE_DIRECTIVES: frozenset[str] = frozenset({"DS", "DEFS"})
DATA_DIRECTIVES: frozenset[str] = BYTE_DIRECTIVES | WORD_DIRECTIVES

# Control transfer mnemonics, classified for the step list
CALL_MNEMONICS: frozenset[str] = frozenset({"CALL", "RST"})
JUMP_MNEMONICS: frozenset[str] = frozenset({"JP", "JR", "DJNZ"})
RETURN_MNEMONICS: frozenset[str] = frozenset({"RET", "RETI", "RETN"})
CONDITIONAL_MNEMONICS: frozenset[str] = frozenset({"JP", "JR", "CALL", "RET"})


# =============================================================================
# Registers
# =============================================================================

REGISTERS_8: frozenset[str] = frozenset({"A", "B", "C", "D", "E", "H", "L", "I", "R"})
REGISTER_PAIRS: frozenset[str] = frozenset({"BC", "DE", "HL", "SP", "AF", "AF'", "IX", "IY"})
INDEX_REGISTERS: frozenset[str] = frozenset({"IX", "IY"})


# =============================================================================
# Condition Codes
# =============================================================================

CONDITION_CODES: dict[str, str] = {
    "NZ": "if Zero Flag is Clear",
    "Z": "if Zero Flag is Set",
    "NC": "if No Carry",
    "C": "if Carry Flag is Set",
    "PO": "if Parity Odd (No Overflow)",
    "PE": "if Parity Even (Overflow)",
    "P": "if Plus (Positive)",
    "M": "if Minus (Negative)",
}

# JR only encodes the first four
RELATIVE_CONDITIONS: frozenset[str] = frozenset({"NZ", "Z", "NC", "C"})


# =============================================================================
# Static Size Heuristic
# =============================================================================

def split_data_operands(args: str) -> list[str]:
    """Split DB/DW operands on commas that are not inside quotes."""
    tokens: list[str] = []
    current: list[str] = []
    quote = ""
    for char in args:
        if quote:
            if char == quote:
                quote = ""
        elif char in "'\"":
            quote = char
        elif char == ",":
            tokens.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tokens.append("".join(current).strip())
    return tokens


def is_quoted(token: str) -> bool:
    """Return True for a complete quoted string token."""
    return len(token) >= 2 and token[0] in "'\"" and token[-1] == token[0]


def data_size(
    directive: str,
    args: str,
    symbols: Optional[Mapping[str, int]] = None,
) -> int:
    """
    Exact byte count of a data directive.

    DB counts one byte per value and one per character of quoted text.
    DW counts two bytes per value. DS reserves the resolved count, with
    symbols allowed so that `DS BUFLEN` works after an EQU.
    """
    directive = directive.upper()
    if directive in BYTE_DIRECTIVES:
        size = 0
        for token in split_data_operands(args):
            size += len(token) - 2 if is_quoted(token) else 1
        return size
    if directive in WORD_DIRECTIVES:
        return 2 * len(split_data_operands(args))
    if directive in SPACE_DIRECTIVES:
        count = resolve_expression(split_data_operands(args)[0], symbols)
        return count or 0
    return 0


def estimate_size(
    directive: str,
    args: str,
    symbols: Optional[Mapping[str, int]] = None,
) -> int:
    """
    Static size estimate for a directive or instruction line.

    Data directives are sized exactly. Instructions use a per-mnemonic
    table without decoding operands, which is only a fallback for shapes
    the encoder rejects.
    """
    directive = directive.upper()
    if directive in DATA_DIRECTIVES or directive in SPACE_DIRECTIVES:
        return data_size(directive, args, symbols)

    if directive not in MNEMONICS:
        return 0

    if directive in ("JR", "DJNZ"):
        return 2
    if directive in ("JP", "CALL"):
        return 3
    if directive == "LD" and "," in args:
        upper = args.upper()
        if any(len(word) >= 3 and all(c in "0123456789ABCDEFH$#" for c in word)
               for word in upper.replace(",", " ").replace("(", " ").replace(")", " ").split()):
            return 3
        if "(" in upper and not any(r in upper for r in ("(HL)", "(BC)", "(DE)")):
            return 3
        return 2
    if directive in ("IM", "OUT", "IN"):
        return 2
    return 1


# =============================================================================
# T-State Timings
# =============================================================================

# Shape codes used as timing keys:
#   r     8-bit register          ir    I or R
#   hl    HL pair                 rr    other pair (BC, DE, SP, AF)
#   xy    IX or IY                af'   shadow AF
#   n     immediate               (nn)  absolute address or port
#   (hl)  (HL)                    (rr)  (BC) or (DE)
#   (sp)  (SP)                    (c)   port (C)
#   (xy)  (IX+d) / (IY+d)

_ALU = ("ADD", "ADC", "SUB", "SBC", "AND", "XOR", "OR", "CP")
_SHIFTS = ("RLC", "RRC", "RL", "RR", "SLA", "SRA", "SLL", "SRL")

CYCLE_TABLE: dict[tuple[str, tuple[str, ...]], int] = {
    # 8-bit loads
    ("LD", ("r", "r")): 4,
    ("LD", ("r", "n")): 7,
    ("LD", ("r", "(hl)")): 7,
    ("LD", ("r", "(rr)")): 7,
    ("LD", ("r", "(xy)")): 19,
    ("LD", ("r", "(nn)")): 13,
    ("LD", ("(hl)", "r")): 7,
    ("LD", ("(hl)", "n")): 10,
    ("LD", ("(rr)", "r")): 7,
    ("LD", ("(xy)", "r")): 19,
    ("LD", ("(xy)", "n")): 19,
    ("LD", ("(nn)", "r")): 13,
    ("LD", ("r", "ir")): 9,
    ("LD", ("ir", "r")): 9,
    # 16-bit loads
    ("LD", ("rr", "n")): 10,
    ("LD", ("hl", "n")): 10,
    ("LD", ("xy", "n")): 14,
    ("LD", ("hl", "(nn)")): 16,
    ("LD", ("rr", "(nn)")): 20,
    ("LD", ("xy", "(nn)")): 20,
    ("LD", ("(nn)", "hl")): 16,
    ("LD", ("(nn)", "rr")): 20,
    ("LD", ("(nn)", "xy")): 20,
    ("LD", ("rr", "hl")): 6,
    ("LD", ("rr", "xy")): 10,
    # stack
    ("PUSH", ("rr",)): 11,
    ("PUSH", ("hl",)): 11,
    ("PUSH", ("xy",)): 15,
    ("POP", ("rr",)): 10,
    ("POP", ("hl",)): 10,
    ("POP", ("xy",)): 14,
    # exchanges
    ("EX", ("rr", "hl")): 4,
    ("EX", ("rr", "af'")): 4,
    ("EX", ("(sp)", "hl")): 19,
    ("EX", ("(sp)", "xy")): 23,
    # 16-bit arithmetic
    ("ADD", ("hl", "rr")): 11,
    ("ADD", ("hl", "hl")): 11,
    ("ADC", ("hl", "rr")): 15,
    ("ADC", ("hl", "hl")): 15,
    ("SBC", ("hl", "rr")): 15,
    ("SBC", ("hl", "hl")): 15,
    ("ADD", ("xy", "rr")): 15,
    ("ADD", ("xy", "xy")): 15,
    # increments
    ("INC", ("r",)): 4,
    ("INC", ("(hl)",)): 11,
    ("INC", ("(xy)",)): 23,
    ("INC", ("rr",)): 6,
    ("INC", ("hl",)): 6,
    ("INC", ("xy",)): 10,
    ("DEC", ("r",)): 4,
    ("DEC", ("(hl)",)): 11,
    ("DEC", ("(xy)",)): 23,
    ("DEC", ("rr",)): 6,
    ("DEC", ("hl",)): 6,
    ("DEC", ("xy",)): 10,
    # jumps
    ("JP", ("n",)): 10,
    ("JP", ("(hl)",)): 4,
    ("JP", ("(xy)",)): 8,
    # I/O
    ("IN", ("r", "(nn)")): 11,
    ("IN", ("r", "(c)")): 12,
    ("OUT", ("(nn)", "r")): 11,
    ("OUT", ("(c)", "r")): 12,
}

for _mnemonic in _ALU:
    CYCLE_TABLE[(_mnemonic, ("r",))] = 4
    CYCLE_TABLE[(_mnemonic, ("n",))] = 7
    CYCLE_TABLE[(_mnemonic, ("(hl)",))] = 7
    CYCLE_TABLE[(_mnemonic, ("(xy)",))] = 19

for _mnemonic in _SHIFTS:
    CYCLE_TABLE[(_mnemonic, ("r",))] = 8
    CYCLE_TABLE[(_mnemonic, ("(hl)",))] = 15
    CYCLE_TABLE[(_mnemonic, ("(xy)",))] = 23

CYCLE_TABLE[("BIT", ("n", "r"))] = 8
CYCLE_TABLE[("BIT", ("n", "(hl)"))] = 12
CYCLE_TABLE[("BIT", ("n", "(xy)"))] = 20
for _mnemonic in ("SET", "RES"):
    CYCLE_TABLE[(_mnemonic, ("n", "r"))] = 8
    CYCLE_TABLE[(_mnemonic, ("n", "(hl)"))] = 15
    CYCLE_TABLE[(_mnemonic, ("n", "(xy)"))] = 23

# Timing when the shape is not in CYCLE_TABLE
MNEMONIC_CYCLES: dict[str, int] = {
    "NOP": 4, "HALT": 4, "DI": 4, "EI": 4, "IM": 8, "EXX": 4,
    "DAA": 4, "CPL": 4, "SCF": 4, "CCF": 4, "NEG": 8,
    "RLCA": 4, "RRCA": 4, "RLA": 4, "RRA": 4, "RLD": 18, "RRD": 18,
    "LDI": 16, "LDD": 16, "CPI": 16, "CPD": 16,
    "INI": 16, "IND": 16, "OUTI": 16, "OUTD": 16,
    "LDIR": 21, "LDDR": 21, "CPIR": 21, "CPDR": 21,
    "INIR": 21, "INDR": 21, "OTIR": 21, "OTDR": 21,
    "JP": 10, "JR": 12, "DJNZ": 13, "CALL": 17, "RET": 10,
    "RETI": 14, "RETN": 14, "RST": 11,
}

del _mnemonic


def operand_shape(operand: "Operand") -> str:
    """Timing key for one operand (see the shape code table above)."""
    register = operand.register or ""
    match operand.kind:
        case OperandKind.REG8:
            return "ir" if register in ("I", "R") else "r"
        case OperandKind.REG16:
            if register == "HL":
                return "hl"
            if register in INDEX_REGISTERS:
                return "xy"
            if register == "AF'":
                return "af'"
            return "rr"
        case OperandKind.INDIRECT:
            if register == "HL":
                return "(hl)"
            if register == "SP":
                return "(sp)"
            if register == "C":
                return "(c)"
            return "(rr)"
        case OperandKind.INDEXED:
            return "(xy)"
        case OperandKind.ABSOLUTE:
            return "(nn)"
        case _:
            return "n"


def estimate_cycles(instruction: "Instruction") -> int:
    """
    T-state estimate for one instruction.

    Conditional transfers report the taken timing. Unknown mnemonics
    estimate 0.
    """
    mnemonic = instruction.mnemonic
    if mnemonic not in MNEMONICS:
        return 0

    shapes = tuple(operand_shape(op) for op in instruction.operands)

    # ALU ops accept an explicit accumulator: "ADD A, B" times like "ADD B"
    if mnemonic in _ALU and len(shapes) == 2 and instruction.operands[0].register == "A":
        shapes = shapes[1:]

    if mnemonic == "RET" and instruction.condition:
        return 11

    cycles = CYCLE_TABLE.get((mnemonic, shapes))
    if cycles is not None:
        return cycles
    return MNEMONIC_CYCLES.get(mnemonic, 4)
