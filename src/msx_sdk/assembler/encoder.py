"""
Z80 Instruction Encoder
=======================

Encodes one parsed instruction into machine code bytes.

Supported Groups
----------------
- 8-bit loads: all register/immediate/(HL)/(IX+d)/(IY+d) combinations,
  LD A,(BC|DE|nn), LD (BC|DE|nn),A, LD A,I|R and LD I|R,A
- 16-bit loads: LD rr,nn, LD rr,(nn), LD (nn),rr, LD SP,HL|IX|IY
- Stack: PUSH/POP BC, DE, HL, AF, IX, IY
- ALU: ADD ADC SUB SBC AND XOR OR CP with register, immediate and memory
  operands; ADD HL|IX|IY,rr; ADC/SBC HL,rr
- INC/DEC on registers, memory and pairs
- CB group: RLC RRC RL RR SLA SRA SLL SRL, BIT, SET, RES
- Control: JP, JR, DJNZ, CALL, RET (all with condition codes), RST, RETI, RETN
- Misc: EX, EXX, IM, IN, OUT, block transfer/compare/I/O, implied opcodes

Relative Jumps
--------------
JR and DJNZ need the address of the instruction to compute their
displacement. Without it (sizing pass) the displacement byte is emitted
as 0; with it, targets outside -128..+127 raise BranchRangeError.

Unresolved Symbols
------------------
When `allow_unresolved` is set, unknown symbols encode as 0 so that the
symbol pass can size forward references. Otherwise they raise
UndefinedSymbolError with close matches offered as a hint.
"""

import difflib
import logging
import re
from collections.abc import Mapping
from typing import Optional

from msx_sdk.assembler.opcodes import (
    INDEX_REGISTERS,
    RELATIVE_CONDITIONS,
    OperandKind,
)
from msx_sdk.assembler.parser import Instruction, Operand, parse_instruction
from msx_sdk.assembler.values import Fallback, resolve_expression, to_signed
from msx_sdk.errors import (
    AddressingModeError,
    AssemblerError,
    BranchRangeError,
    ExpressionError,
    SourceLocation,
    UndefinedSymbolError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Encoding Tables
# =============================================================================

REG8_CODES: dict[str, int] = {"B": 0, "C": 1, "D": 2, "E": 3, "H": 4, "L": 5, "A": 7}
PAIR_CODES: dict[str, int] = {"BC": 0, "DE": 1, "HL": 2, "SP": 3}
STACK_PAIR_CODES: dict[str, int] = {"BC": 0, "DE": 1, "HL": 2, "AF": 3}
CONDITION_BITS: dict[str, int] = {
    "NZ": 0, "Z": 1, "NC": 2, "C": 3, "PO": 4, "PE": 5, "P": 6, "M": 7,
}
ALU_CODES: dict[str, int] = {
    "ADD": 0, "ADC": 1, "SUB": 2, "SBC": 3, "AND": 4, "XOR": 5, "OR": 6, "CP": 7,
}
SHIFT_CODES: dict[str, int] = {
    "RLC": 0, "RRC": 1, "RL": 2, "RR": 3, "SLA": 4, "SRA": 5, "SLL": 6, "SRL": 7,
}
BIT_BASES: dict[str, int] = {"BIT": 0x40, "RES": 0x80, "SET": 0xC0}
INDEX_PREFIX: dict[str, int] = {"IX": 0xDD, "IY": 0xFD}
IM_OPCODES: dict[int, bytes] = {0: b"\xED\x46", 1: b"\xED\x56", 2: b"\xED\x5E"}

IMPLIED_OPCODES: dict[str, bytes] = {
    "NOP": b"\x00", "HALT": b"\x76", "DI": b"\xF3", "EI": b"\xFB",
    "EXX": b"\xD9", "DAA": b"\x27", "CPL": b"\x2F", "SCF": b"\x37",
    "CCF": b"\x3F", "RLCA": b"\x07", "RRCA": b"\x0F", "RLA": b"\x17",
    "RRA": b"\x1F",
    "NEG": b"\xED\x44", "RETI": b"\xED\x4D", "RETN": b"\xED\x45",
    "RLD": b"\xED\x6F", "RRD": b"\xED\x67",
    "LDI": b"\xED\xA0", "LDD": b"\xED\xA8", "LDIR": b"\xED\xB0", "LDDR": b"\xED\xB8",
    "CPI": b"\xED\xA1", "CPD": b"\xED\xA9", "CPIR": b"\xED\xB1", "CPDR": b"\xED\xB9",
    "INI": b"\xED\xA2", "IND": b"\xED\xAA", "INIR": b"\xED\xB2", "INDR": b"\xED\xBA",
    "OUTI": b"\xED\xA3", "OUTD": b"\xED\xAB", "OTIR": b"\xED\xB3", "OTDR": b"\xED\xBB",
}

_IDENTIFIER = re.compile(r"^[A-Za-z_.@?][\w.@?$]*$")


# =============================================================================
# Encoder
# =============================================================================

class _Encoder:
    """Encodes a single instruction; one instance per call."""

    def __init__(
        self,
        instruction: Instruction,
        symbols: Mapping[str, int],
        address: Optional[int],
        allow_unresolved: bool,
        fallback: Optional[Fallback],
        location: Optional[SourceLocation],
        source_line: Optional[str],
    ):
        self.instruction = instruction
        self.symbols = symbols
        self.address = address
        self.allow_unresolved = allow_unresolved
        self.fallback = fallback
        self.location = location
        self.source_line = source_line

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def _mode_error(self) -> AddressingModeError:
        return AddressingModeError(
            self.instruction.mnemonic,
            self.instruction.text,
            location=self.location,
            source_line=self.source_line,
        )

    def _unresolved_error(self, expression: str) -> AssemblerError:
        expression = expression.strip()
        if _IDENTIFIER.match(expression):
            similar = difflib.get_close_matches(expression.upper(), list(self.symbols), n=3)
            return UndefinedSymbolError(
                expression,
                location=self.location,
                source_line=self.source_line,
                similar_symbols=similar,
            )
        return ExpressionError(
            f"cannot evaluate '{expression}'",
            location=self.location,
            source_line=self.source_line,
        )

    # -------------------------------------------------------------------------
    # Operand values
    # -------------------------------------------------------------------------

    def _value(self, expression: Optional[str]) -> int:
        value = resolve_expression(expression or "", self.symbols, self.fallback)
        if value is not None:
            return value
        if self.allow_unresolved:
            return 0
        raise self._unresolved_error(expression or "")

    def _byte(self, operand: Operand) -> bytes:
        return bytes([self._value(operand.expression) & 0xFF])

    def _word(self, operand: Operand) -> bytes:
        value = self._value(operand.expression)
        return bytes([value & 0xFF, (value >> 8) & 0xFF])

    def _displacement(self, operand: Operand) -> int:
        offset = to_signed(self._value(operand.expression))
        if not -128 <= offset <= 127:
            raise ExpressionError(
                f"index displacement {offset} out of range",
                location=self.location,
                hint="displacement must be between -128 and +127",
                source_line=self.source_line,
            )
        return offset & 0xFF

    def _relative(self, operand: Optional[Operand]) -> bytes:
        if operand is None or operand.kind != OperandKind.IMMEDIATE:
            raise self._mode_error()
        target = resolve_expression(operand.expression, self.symbols, self.fallback)
        if target is None:
            if self.allow_unresolved:
                return b"\x00"
            raise self._unresolved_error(operand.expression)
        if self.address is None:
            return b"\x00"
        offset = to_signed(target - (self.address + 2))
        if not -128 <= offset <= 127:
            raise BranchRangeError(
                operand.text,
                offset,
                location=self.location,
                source_line=self.source_line,
            )
        return bytes([offset & 0xFF])

    def _r8(self, operand: Optional[Operand]) -> Optional[tuple[bytes, int, bytes]]:
        """(prefix, register code, displacement) for r, (HL) and (IX+d)."""
        if operand is None:
            return None
        match operand.kind:
            case OperandKind.REG8 if operand.register in REG8_CODES:
                return b"", REG8_CODES[operand.register], b""
            case OperandKind.INDIRECT if operand.register == "HL":
                return b"", 6, b""
            case OperandKind.INDEXED:
                prefix = bytes([INDEX_PREFIX[operand.register]])
                return prefix, 6, bytes([self._displacement(operand)])
        return None

    def _count(self, *allowed: int) -> tuple[Operand, ...]:
        operands = self.instruction.operands
        if len(operands) not in allowed:
            raise self._mode_error()
        return operands

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def encode(self) -> bytes:
        mnemonic = self.instruction.mnemonic

        if mnemonic in IMPLIED_OPCODES:
            self._count(0)
            return IMPLIED_OPCODES[mnemonic]

        match mnemonic:
            case "LD":
                return self._ld()
            case "PUSH" | "POP":
                return self._stack(mnemonic)
            case "ADD" | "ADC" | "SUB" | "SBC" | "AND" | "XOR" | "OR" | "CP":
                return self._alu(mnemonic)
            case "INC" | "DEC":
                return self._inc_dec(mnemonic)
            case "RLC" | "RRC" | "RL" | "RR" | "SLA" | "SRA" | "SLL" | "SRL":
                return self._shift(mnemonic)
            case "BIT" | "SET" | "RES":
                return self._bit(mnemonic)
            case "JP":
                return self._jp()
            case "JR":
                return self._jr()
            case "DJNZ":
                self._count(1)
                return b"\x10" + self._relative(self.instruction.target)
            case "CALL":
                return self._call()
            case "RET":
                self._count(0)
                if self.instruction.condition:
                    return bytes([0xC0 | CONDITION_BITS[self.instruction.condition] << 3])
                return b"\xC9"
            case "RST":
                return self._rst()
            case "IM":
                return self._im()
            case "EX":
                return self._ex()
            case "IN":
                return self._in()
            case "OUT":
                return self._out()
            case _:
                raise self._mode_error()

    # -------------------------------------------------------------------------
    # Loads
    # -------------------------------------------------------------------------

    def _ld(self) -> bytes:
        dst, src = self._count(2)

        # LD I,A / LD R,A / LD A,I / LD A,R
        if dst.kind == OperandKind.REG8 and src.kind == OperandKind.REG8:
            if dst.register in ("I", "R") and src.register == "A":
                return b"\xED" + (b"\x47" if dst.register == "I" else b"\x4F")
            if dst.register == "A" and src.register in ("I", "R"):
                return b"\xED" + (b"\x57" if src.register == "I" else b"\x5F")

        d = self._r8(dst)
        s = self._r8(src)
        if d and s:
            if d[1] == 6 and s[1] == 6:
                raise self._mode_error()
            return (d[0] or s[0]) + bytes([0x40 | d[1] << 3 | s[1]]) + (d[2] or s[2])
        if d and src.kind == OperandKind.IMMEDIATE:
            return d[0] + bytes([0x06 | d[1] << 3]) + d[2] + self._byte(src)

        if dst.kind == OperandKind.REG8 and dst.register == "A":
            if src.kind == OperandKind.INDIRECT and src.register in ("BC", "DE"):
                return b"\x0A" if src.register == "BC" else b"\x1A"
            if src.kind == OperandKind.ABSOLUTE:
                return b"\x3A" + self._word(src)

        if src.kind == OperandKind.REG8 and src.register == "A":
            if dst.kind == OperandKind.INDIRECT and dst.register in ("BC", "DE"):
                return b"\x02" if dst.register == "BC" else b"\x12"
            if dst.kind == OperandKind.ABSOLUTE:
                return b"\x32" + self._word(dst)

        if dst.kind == OperandKind.REG16:
            return self._ld16_to_register(dst, src)

        if dst.kind == OperandKind.ABSOLUTE and src.kind == OperandKind.REG16:
            register = src.register
            if register == "HL":
                return b"\x22" + self._word(dst)
            if register in INDEX_REGISTERS:
                return bytes([INDEX_PREFIX[register], 0x22]) + self._word(dst)
            if register in PAIR_CODES:
                return bytes([0xED, 0x43 | PAIR_CODES[register] << 4]) + self._word(dst)

        raise self._mode_error()

    def _ld16_to_register(self, dst: Operand, src: Operand) -> bytes:
        register = dst.register
        if register in INDEX_REGISTERS:
            prefix = bytes([INDEX_PREFIX[register]])
            if src.kind == OperandKind.IMMEDIATE:
                return prefix + b"\x21" + self._word(src)
            if src.kind == OperandKind.ABSOLUTE:
                return prefix + b"\x2A" + self._word(src)
        elif register in PAIR_CODES:
            code = PAIR_CODES[register]
            if src.kind == OperandKind.IMMEDIATE:
                return bytes([0x01 | code << 4]) + self._word(src)
            if src.kind == OperandKind.ABSOLUTE:
                if register == "HL":
                    return b"\x2A" + self._word(src)
                return bytes([0xED, 0x4B | code << 4]) + self._word(src)
            if register == "SP" and src.kind == OperandKind.REG16:
                if src.register == "HL":
                    return b"\xF9"
                if src.register in INDEX_REGISTERS:
                    return bytes([INDEX_PREFIX[src.register], 0xF9])
        raise self._mode_error()

    def _stack(self, mnemonic: str) -> bytes:
        (operand,) = self._count(1)
        base = 0xC5 if mnemonic == "PUSH" else 0xC1
        if operand.kind == OperandKind.REG16:
            if operand.register in INDEX_REGISTERS:
                return bytes([INDEX_PREFIX[operand.register], base | 0x20])
            if operand.register in STACK_PAIR_CODES:
                return bytes([base | STACK_PAIR_CODES[operand.register] << 4])
        raise self._mode_error()

    # -------------------------------------------------------------------------
    # Arithmetic and logic
    # -------------------------------------------------------------------------

    def _alu(self, mnemonic: str) -> bytes:
        operands = self._count(1, 2)

        if len(operands) == 2 and operands[0].kind == OperandKind.REG16:
            return self._alu16(mnemonic, *operands)

        if len(operands) == 2:
            if operands[0].kind != OperandKind.REG8 or operands[0].register != "A":
                raise self._mode_error()
            source = operands[1]
        else:
            source = operands[0]

        code = ALU_CODES[mnemonic]
        if r := self._r8(source):
            return r[0] + bytes([0x80 | code << 3 | r[1]]) + r[2]
        if source.kind == OperandKind.IMMEDIATE:
            return bytes([0xC6 | code << 3]) + self._byte(source)
        raise self._mode_error()

    def _alu16(self, mnemonic: str, dst: Operand, src: Operand) -> bytes:
        if src.kind != OperandKind.REG16:
            raise self._mode_error()

        if dst.register == "HL" and src.register in PAIR_CODES:
            code = PAIR_CODES[src.register] << 4
            match mnemonic:
                case "ADD":
                    return bytes([0x09 | code])
                case "ADC":
                    return bytes([0xED, 0x4A | code])
                case "SBC":
                    return bytes([0xED, 0x42 | code])

        if dst.register in INDEX_REGISTERS and mnemonic == "ADD":
            codes = {"BC": 0, "DE": 1, dst.register: 2, "SP": 3}
            if src.register in codes:
                return bytes([INDEX_PREFIX[dst.register], 0x09 | codes[src.register] << 4])

        raise self._mode_error()

    def _inc_dec(self, mnemonic: str) -> bytes:
        (operand,) = self._count(1)
        increment = mnemonic == "INC"

        if r := self._r8(operand):
            return r[0] + bytes([(0x04 if increment else 0x05) | r[1] << 3]) + r[2]
        if operand.kind == OperandKind.REG16:
            if operand.register in INDEX_REGISTERS:
                return bytes([INDEX_PREFIX[operand.register], 0x23 if increment else 0x2B])
            if operand.register in PAIR_CODES:
                base = 0x03 if increment else 0x0B
                return bytes([base | PAIR_CODES[operand.register] << 4])
        raise self._mode_error()

    # -------------------------------------------------------------------------
    # CB group
    # -------------------------------------------------------------------------

    def _cb(self, operand: Operand, opcode: int) -> bytes:
        r = self._r8(operand)
        if r is None:
            raise self._mode_error()
        prefix, code, displacement = r
        if prefix:
            return prefix + b"\xCB" + displacement + bytes([opcode | code])
        return bytes([0xCB, opcode | code])

    def _shift(self, mnemonic: str) -> bytes:
        (operand,) = self._count(1)
        return self._cb(operand, SHIFT_CODES[mnemonic] << 3)

    def _bit(self, mnemonic: str) -> bytes:
        number, operand = self._count(2)
        if number.kind != OperandKind.IMMEDIATE:
            raise self._mode_error()
        bit = self._value(number.expression)
        if not 0 <= bit <= 7:
            raise ExpressionError(
                f"bit number {bit} out of range",
                location=self.location,
                hint="bit number must be between 0 and 7",
                source_line=self.source_line,
            )
        return self._cb(operand, BIT_BASES[mnemonic] | bit << 3)

    # -------------------------------------------------------------------------
    # Control transfer
    # -------------------------------------------------------------------------

    def _jp(self) -> bytes:
        (target,) = self._count(1)
        condition = self.instruction.condition

        if condition is None:
            if target.kind == OperandKind.INDIRECT and target.register == "HL":
                return b"\xE9"
            if target.kind == OperandKind.INDEXED and target.expression == "0":
                return bytes([INDEX_PREFIX[target.register], 0xE9])

        if target.kind != OperandKind.IMMEDIATE:
            raise self._mode_error()
        if condition:
            return bytes([0xC2 | CONDITION_BITS[condition] << 3]) + self._word(target)
        return b"\xC3" + self._word(target)

    def _jr(self) -> bytes:
        (target,) = self._count(1)
        condition = self.instruction.condition
        if condition is None:
            return b"\x18" + self._relative(target)
        if condition not in RELATIVE_CONDITIONS:
            raise self._mode_error()
        return bytes([0x20 | CONDITION_BITS[condition] << 3]) + self._relative(target)

    def _call(self) -> bytes:
        (target,) = self._count(1)
        if target.kind != OperandKind.IMMEDIATE:
            raise self._mode_error()
        condition = self.instruction.condition
        if condition:
            return bytes([0xC4 | CONDITION_BITS[condition] << 3]) + self._word(target)
        return b"\xCD" + self._word(target)

    def _rst(self) -> bytes:
        (vector,) = self._count(1)
        if vector.kind != OperandKind.IMMEDIATE:
            raise self._mode_error()
        value = self._value(vector.expression)
        if value not in range(0, 0x40, 8):
            raise ExpressionError(
                f"invalid RST vector ${value:02X}",
                location=self.location,
                hint="RST takes one of $00, $08, $10, ... $38",
                source_line=self.source_line,
            )
        return bytes([0xC7 | value])

    # -------------------------------------------------------------------------
    # Miscellaneous
    # -------------------------------------------------------------------------

    def _im(self) -> bytes:
        (mode,) = self._count(1)
        value = self._value(mode.expression)
        if value not in IM_OPCODES:
            raise ExpressionError(
                f"invalid interrupt mode {value}",
                location=self.location,
                hint="IM takes 0, 1 or 2",
                source_line=self.source_line,
            )
        return IM_OPCODES[value]

    def _ex(self) -> bytes:
        first, second = self._count(2)
        pair = (first.register, second.register)

        if first.kind == OperandKind.REG16 and second.kind == OperandKind.REG16:
            if pair in (("DE", "HL"), ("HL", "DE")):
                return b"\xEB"
            if pair == ("AF", "AF'"):
                return b"\x08"
        if first.kind == OperandKind.INDIRECT and first.register == "SP":
            if second.register == "HL":
                return b"\xE3"
            if second.register in INDEX_REGISTERS:
                return bytes([INDEX_PREFIX[second.register], 0xE3])
        raise self._mode_error()

    def _in(self) -> bytes:
        dst, port = self._count(2)
        if dst.kind == OperandKind.REG8:
            if port.kind == OperandKind.ABSOLUTE and dst.register == "A":
                return b"\xDB" + self._byte(port)
            if port.kind == OperandKind.INDIRECT and port.register == "C" and dst.register in REG8_CODES:
                return bytes([0xED, 0x40 | REG8_CODES[dst.register] << 3])
        raise self._mode_error()

    def _out(self) -> bytes:
        port, src = self._count(2)
        if src.kind == OperandKind.REG8:
            if port.kind == OperandKind.ABSOLUTE and src.register == "A":
                return b"\xD3" + self._byte(port)
            if port.kind == OperandKind.INDIRECT and port.register == "C" and src.register in REG8_CODES:
                return bytes([0xED, 0x41 | REG8_CODES[src.register] << 3])
        raise self._mode_error()


# =============================================================================
# Public API
# =============================================================================

def encode_instruction(
    mnemonic: str,
    operands: str = "",
    symbols: Optional[Mapping[str, int]] = None,
    address: Optional[int] = None,
    allow_unresolved: bool = False,
    fallback: Optional[Fallback] = None,
    location: Optional[SourceLocation] = None,
    source_line: Optional[str] = None,
) -> bytes:
    """
    Encode one instruction.

    Args:
        mnemonic: Instruction mnemonic (case-insensitive)
        operands: Operand text, e.g. "A, (IX+3)"
        symbols: Symbol table (uppercase names)
        address: Address of the instruction, needed for JR/DJNZ displacements
        allow_unresolved: Encode unknown symbols as 0 instead of raising
        fallback: Resolver for names missing from the symbol table
        location: Source location attached to raised errors
        source_line: Source text attached to raised errors

    Returns:
        Encoded bytes

    Raises:
        AddressingModeError: Unsupported mnemonic or operand combination
        UndefinedSymbolError: Unknown symbol (unless allow_unresolved)
        ExpressionError: Malformed expression or out-of-range value
        BranchRangeError: Relative jump target out of range

    Example:
        >>> encode_instruction("LD", "A, (IX+3)").hex()
        'dd7e03'
    """
    instruction = parse_instruction(mnemonic, operands)
    encoder = _Encoder(
        instruction,
        symbols or {},
        address,
        allow_unresolved,
        fallback,
        location,
        source_line,
    )
    return encoder.encode()


def instruction_size(
    mnemonic: str,
    operands: str = "",
    symbols: Optional[Mapping[str, int]] = None,
) -> Optional[int]:
    """
    Encoded length of an instruction, or None if it cannot be encoded.

    Unknown symbols count as zero, so forward references size correctly.
    """
    try:
        return len(encode_instruction(mnemonic, operands, symbols, allow_unresolved=True))
    except AssemblerError as e:
        logger.debug("Cannot size %s %s: %s", mnemonic, operands, e.message)
        return None
