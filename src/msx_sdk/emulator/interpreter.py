"""
Z80 Line Interpreter
====================

Executes one source line against a machine state and returns the next
state. The input state is never modified: every call starts from a deep
copy.

    >>> state = MachineState.initial()
    >>> state = simulate_line("LD A, $10", state, {})
    >>> state = simulate_line("ADD A, 5", state, {})
    >>> hex(state.registers.a)
    '0x15'

Scope
-----
The interpreter models data movement, arithmetic and flags, stack
traffic and the video chip. Control flow is only partly its business:

- CALL/RST push the return address, drop SP by 2 and set PC to the
  target; RET pops into PC. Condition codes are honoured.
- JP/JR set PC when the target resolves; DJNZ only decrements B.
- Which *line* runs next is decided by the control-flow drivers.

Calls whose target is WRTVRM ($004D), FILVRM ($0056) or LDIRVM ($005C)
apply their VRAM effect immediately. OUT/IN on ports $98/$99 drive the
VDP ports.

Partial Failure Policy
----------------------
An operand, label or address that cannot be resolved leaves the
affected destination unchanged; the rest of the state still advances.
Unsupported mnemonics leave the state unchanged and are logged.
"""

import logging
from collections.abc import Mapping
from typing import Optional, Union

from msx_sdk.assembler.opcodes import INDEX_REGISTERS, OperandKind
from msx_sdk.assembler.parser import Instruction, Operand, SourceLine, parse_line
from msx_sdk.assembler.values import resolve_expression, to_signed
from msx_sdk.emulator import bios
from msx_sdk.emulator.state import Flags, MachineState

logger = logging.getLogger(__name__)

_BYTE_REGISTERS = frozenset({"A", "B", "C", "D", "E", "H", "L"})


# =============================================================================
# Flag Arithmetic
# =============================================================================

def parity(value: int) -> bool:
    """True for even parity (P/V set), by XOR-folding the byte."""
    value &= 0xFF
    value ^= value >> 4
    value ^= value >> 2
    value ^= value >> 1
    return (value & 1) == 0


def add8(a: int, value: int, carry: bool = False) -> tuple[int, Flags]:
    """
    8-bit addition with carry-in.

    Returns:
        (result, flags) with overflow set when both operands share a sign
        the result does not
    """
    result = a + value + int(carry)
    flags = Flags(
        z=(result & 0xFF) == 0,
        s=bool(result & 0x80),
        c=result > 0xFF,
        pv=bool((a ^ result) & (value ^ result) & 0x80),
    )
    return result & 0xFF, flags


def sub8(a: int, value: int, carry: bool = False) -> tuple[int, Flags]:
    """
    8-bit subtraction with borrow-in (also used by CP and NEG).

    Returns:
        (result, flags) with overflow set when the operands differ in sign
        and the result's sign differs from the minuend's
    """
    result = a - value - int(carry)
    flags = Flags(
        z=(result & 0xFF) == 0,
        s=bool(result & 0x80),
        c=result < 0,
        pv=bool((a ^ value) & (a ^ result) & 0x80),
    )
    return result & 0xFF, flags


def logic_flags(result: int) -> Flags:
    """Flags after AND/OR/XOR: carry cleared, P/V is parity."""
    return Flags(z=(result & 0xFF) == 0, s=bool(result & 0x80), c=False, pv=parity(result))


# =============================================================================
# Interpreter
# =============================================================================

class _Interpreter:
    """Executes one instruction against a private copy of the state."""

    def __init__(
        self,
        state: MachineState,
        symbols: Mapping[str, int],
        image: Optional[Mapping[int, int]],
    ):
        self.state = state
        self.regs = state.registers
        self.symbols = symbols
        self.image = image

    # ========================================
    # Values and Memory
    # ========================================

    def resolve(self, expression: Optional[str]) -> Optional[int]:
        if not expression:
            return None
        return resolve_expression(expression, self.symbols, bios.resolve_name)

    def read(self, address: int) -> int:
        return self.state.memory.read(address, self.image)

    def write(self, address: int, value: int) -> None:
        self.state.memory.write(address, value)

    def read_word(self, address: int) -> int:
        return self.state.memory.read_word(address, self.image)

    def write_word(self, address: int, value: int) -> None:
        self.state.memory.write_word(address, value)

    def push(self, value: int) -> None:
        self.regs.sp = (self.regs.sp - 2) & 0xFFFF
        self.write_word(self.regs.sp, value)

    def pop(self) -> int:
        value = self.read_word(self.regs.sp)
        self.regs.sp = (self.regs.sp + 2) & 0xFFFF
        return value

    def address_of(self, operand: Operand) -> Optional[int]:
        """Memory address named by an INDIRECT, INDEXED or ABSOLUTE operand."""
        match operand.kind:
            case OperandKind.INDIRECT if operand.register in ("HL", "BC", "DE", "SP"):
                return self.regs.get(operand.register)
            case OperandKind.INDEXED:
                displacement = self.resolve(operand.expression)
                if displacement is None:
                    return None
                base = self.regs.get(operand.register)
                return (base + to_signed(displacement)) & 0xFFFF
            case OperandKind.ABSOLUTE:
                return self.resolve(operand.expression)
        return None

    def get8(self, operand: Operand) -> Optional[int]:
        """Byte value of a register, memory or immediate operand."""
        match operand.kind:
            case OperandKind.REG8:
                return self.regs.get(operand.register)
            case OperandKind.IMMEDIATE:
                value = self.resolve(operand.expression)
                return None if value is None else value & 0xFF
            case OperandKind.INDIRECT | OperandKind.INDEXED | OperandKind.ABSOLUTE:
                address = self.address_of(operand)
                return None if address is None else self.read(address)
        return None

    def set8(self, operand: Operand, value: int) -> bool:
        """Store a byte into a register or memory operand."""
        if operand.kind == OperandKind.REG8:
            self.regs.set(operand.register, value)
            return True
        if operand.is_memory:
            address = self.address_of(operand)
            if address is None:
                return False
            self.write(address, value)
            return True
        return False

    def get16(self, operand: Operand) -> Optional[int]:
        match operand.kind:
            case OperandKind.REG16:
                return self.state.get_pair(operand.register)
            case OperandKind.IMMEDIATE:
                return self.resolve(operand.expression)
            case OperandKind.ABSOLUTE:
                address = self.resolve(operand.expression)
                return None if address is None else self.read_word(address)
        return None

    def _set_szp(self, value: int) -> None:
        flags = self.state.flags
        flags.z = (value & 0xFF) == 0
        flags.s = bool(value & 0x80)
        flags.pv = parity(value)

    # ========================================
    # Dispatch
    # ========================================

    def execute(self, instruction: Instruction) -> None:
        mnemonic = instruction.mnemonic
        ops = instruction.operands

        match mnemonic:
            case "LD":
                if len(ops) == 2:
                    self._ld(*ops)
            case "PUSH":
                if ops and ops[0].kind == OperandKind.REG16:
                    self.push(self.state.get_pair(ops[0].register))
            case "POP":
                if ops and ops[0].kind == OperandKind.REG16:
                    self.state.set_pair(ops[0].register, self.pop())
            case "EX":
                if len(ops) == 2:
                    self._ex(*ops)
            case "EXX":
                self._exx()
            case "ADD" | "ADC" | "SUB" | "SBC" | "AND" | "XOR" | "OR" | "CP":
                self._alu(mnemonic, ops)
            case "INC" | "DEC":
                if ops:
                    self._inc_dec(mnemonic == "INC", ops[0])
            case "CPL":
                self.regs.a = ~self.regs.a & 0xFF
            case "NEG":
                self.regs.a, self.state.flags = sub8(0, self.regs.a)
            case "SCF":
                self.state.flags.c = True
            case "CCF":
                self.state.flags.c = not self.state.flags.c
            case "RLCA" | "RRCA" | "RLA" | "RRA":
                self._rotate_accumulator(mnemonic)
            case "RLC" | "RRC" | "RL" | "RR" | "SLA" | "SRA" | "SRL" | "SLL":
                if ops:
                    self._shift(mnemonic, ops[0])
            case "BIT" | "SET" | "RES":
                if len(ops) == 2:
                    self._bit(mnemonic, *ops)
            case "RLD" | "RRD":
                self._rotate_digit(mnemonic == "RLD")
            case "DJNZ":
                self.regs.b = (self.regs.b - 1) & 0xFF
            case "JP" | "JR":
                self._jump(instruction)
            case "CALL" | "RST":
                self._call(instruction)
            case "RET" | "RETI" | "RETN":
                if mnemonic != "RET" or self.state.flags.check(instruction.condition):
                    self.regs.pc = self.pop()
            case "OUT":
                if len(ops) == 2:
                    self._out(*ops)
            case "IN":
                if len(ops) == 2:
                    self._in(*ops)
            case "LDI" | "LDD" | "LDIR" | "LDDR":
                self._block_load(mnemonic)
            case "CPI" | "CPD" | "CPIR" | "CPDR":
                self._block_compare(mnemonic)
            case "OUTI" | "OUTD" | "OTIR" | "OTDR" | "INI" | "IND" | "INIR" | "INDR":
                self._block_io(mnemonic)
            case "NOP" | "HALT" | "DI" | "EI" | "IM" | "DAA":
                pass
            case _:
                logger.debug("Unsupported instruction %s %s", mnemonic, instruction.text)

    # ========================================
    # Loads and Exchanges
    # ========================================

    def _ld(self, dst: Operand, src: Operand) -> None:
        regs = self.regs
        flags = self.state.flags

        if dst.kind == OperandKind.REG8 and src.kind == OperandKind.REG8:
            if src.register in ("I", "R") and dst.register == "A":
                regs.a = regs.i if src.register == "I" else regs.r & 0x7F
                flags.z = regs.a == 0
                flags.s = bool(regs.a & 0x80)
                flags.pv = False
                return

        if dst.kind == OperandKind.REG8:
            value = self.get8(src)
            if value is not None:
                regs.set(dst.register, value)
            return

        if dst.kind == OperandKind.REG16:
            value = self.get16(src)
            if value is not None and dst.register not in ("AF", "AF'"):
                regs.set(dst.register, value)
            return

        if dst.is_memory:
            address = self.address_of(dst)
            if address is None:
                return
            if src.kind == OperandKind.REG16:
                self.write_word(address, self.state.get_pair(src.register))
                return
            value = self.get8(src)
            if value is not None:
                self.write(address, value)

    def _ex(self, first: Operand, second: Operand) -> None:
        regs = self.regs
        pair = (first.register, second.register)

        if pair in (("DE", "HL"), ("HL", "DE")):
            regs.de, regs.hl = regs.hl, regs.de
        elif pair == ("AF", "AF'"):
            af = self.state.af
            self.state.af = (regs.a_prime << 8) | regs.f_prime
            regs.a_prime = (af >> 8) & 0xFF
            regs.f_prime = af & 0xFF
        elif first.kind == OperandKind.INDIRECT and first.register == "SP" and second.kind == OperandKind.REG16:
            memory_value = self.read_word(regs.sp)
            self.write_word(regs.sp, regs.get(second.register))
            regs.set(second.register, memory_value)

    def _exx(self) -> None:
        regs = self.regs
        for name in ("b", "c", "d", "e", "h", "l"):
            current = getattr(regs, name)
            setattr(regs, name, getattr(regs, f"{name}_prime"))
            setattr(regs, f"{name}_prime", current)

    # ========================================
    # Arithmetic and Logic
    # ========================================

    def _alu(self, mnemonic: str, ops: tuple[Operand, ...]) -> None:
        if len(ops) == 2 and ops[0].kind == OperandKind.REG16:
            self._alu16(mnemonic, *ops)
            return

        if len(ops) == 2:
            source = ops[1]
        elif len(ops) == 1:
            source = ops[0]
        else:
            return

        value = self.get8(source)
        if value is None:
            return

        regs = self.regs
        carry = self.state.flags.c
        match mnemonic:
            case "ADD":
                regs.a, self.state.flags = add8(regs.a, value)
            case "ADC":
                regs.a, self.state.flags = add8(regs.a, value, carry)
            case "SUB":
                regs.a, self.state.flags = sub8(regs.a, value)
            case "SBC":
                regs.a, self.state.flags = sub8(regs.a, value, carry)
            case "CP":
                _, self.state.flags = sub8(regs.a, value)
            case "AND":
                regs.a &= value
                self.state.flags = logic_flags(regs.a)
            case "OR":
                regs.a |= value
                self.state.flags = logic_flags(regs.a)
            case "XOR":
                regs.a ^= value
                self.state.flags = logic_flags(regs.a)

    def _alu16(self, mnemonic: str, dst: Operand, src: Operand) -> None:
        value = self.get16(src)
        if value is None or dst.register not in ("HL", "IX", "IY"):
            return
        current = self.regs.get(dst.register)
        flags = self.state.flags

        match mnemonic:
            case "ADD":
                result = current + value
                flags.c = result > 0xFFFF
            case "ADC":
                result = current + value + int(flags.c)
                flags.c = result > 0xFFFF
                flags.z = (result & 0xFFFF) == 0
                flags.s = bool(result & 0x8000)
                flags.pv = bool((current ^ result) & (value ^ result) & 0x8000)
            case "SBC":
                result = current - value - int(flags.c)
                flags.c = result < 0
                flags.z = (result & 0xFFFF) == 0
                flags.s = bool(result & 0x8000)
                flags.pv = bool((current ^ value) & (current ^ result) & 0x8000)
            case _:
                return
        self.regs.set(dst.register, result & 0xFFFF)

    def _inc_dec(self, increment: bool, operand: Operand) -> None:
        delta = 1 if increment else -1

        if operand.kind == OperandKind.REG16:
            if operand.register in ("BC", "DE", "HL", "SP", "IX", "IY"):
                self.regs.set(operand.register, self.regs.get(operand.register) + delta)
            return

        current = self.get8(operand)
        if current is None or operand.kind == OperandKind.IMMEDIATE:
            return
        result = (current + delta) & 0xFF
        if not self.set8(operand, result):
            return
        flags = self.state.flags
        flags.z = result == 0
        flags.s = bool(result & 0x80)
        flags.pv = current == (0x7F if increment else 0x80)

    # ========================================
    # Rotates, Shifts and Bits
    # ========================================

    def _rotate_accumulator(self, mnemonic: str) -> None:
        a = self.regs.a
        flags = self.state.flags
        carry_in = int(flags.c)
        match mnemonic:
            case "RLCA":
                flags.c = bool(a & 0x80)
                a = ((a << 1) | (a >> 7)) & 0xFF
            case "RRCA":
                flags.c = bool(a & 0x01)
                a = ((a >> 1) | (a << 7)) & 0xFF
            case "RLA":
                flags.c = bool(a & 0x80)
                a = ((a << 1) | carry_in) & 0xFF
            case "RRA":
                flags.c = bool(a & 0x01)
                a = ((a >> 1) | (carry_in << 7)) & 0xFF
        self.regs.a = a

    def _shift(self, mnemonic: str, operand: Operand) -> None:
        value = self.get8(operand)
        if value is None or operand.kind == OperandKind.IMMEDIATE:
            return
        carry_in = int(self.state.flags.c)

        match mnemonic:
            case "RLC":
                carry, result = value >> 7, (value << 1) | (value >> 7)
            case "RRC":
                carry, result = value & 1, (value >> 1) | (value << 7)
            case "RL":
                carry, result = value >> 7, (value << 1) | carry_in
            case "RR":
                carry, result = value & 1, (value >> 1) | (carry_in << 7)
            case "SLA":
                carry, result = value >> 7, value << 1
            case "SLL":
                carry, result = value >> 7, (value << 1) | 1
            case "SRA":
                carry, result = value & 1, (value >> 1) | (value & 0x80)
            case _:  # SRL
                carry, result = value & 1, value >> 1

        result &= 0xFF
        if self.set8(operand, result):
            self._set_szp(result)
            self.state.flags.c = bool(carry)

    def _bit(self, mnemonic: str, number: Operand, operand: Operand) -> None:
        bit = self.resolve(number.expression)
        value = self.get8(operand)
        if bit is None or value is None or not 0 <= bit <= 7:
            return
        mask = 1 << bit
        flags = self.state.flags

        match mnemonic:
            case "BIT":
                flags.z = not value & mask
                flags.s = bit == 7 and bool(value & mask)
                flags.pv = flags.z
            case "SET":
                self.set8(operand, value | mask)
            case "RES":
                self.set8(operand, value & ~mask)

    def _rotate_digit(self, left: bool) -> None:
        regs = self.regs
        memory_value = self.read(regs.hl)
        if left:
            self.write(regs.hl, ((memory_value << 4) | (regs.a & 0x0F)) & 0xFF)
            regs.a = (regs.a & 0xF0) | (memory_value >> 4)
        else:
            self.write(regs.hl, ((regs.a & 0x0F) << 4) | (memory_value >> 4))
            regs.a = (regs.a & 0xF0) | (memory_value & 0x0F)
        carry = self.state.flags.c
        self._set_szp(regs.a)
        self.state.flags.c = carry

    # ========================================
    # Control Transfer
    # ========================================

    def _jump(self, instruction: Instruction) -> None:
        if not self.state.flags.check(instruction.condition):
            return
        target = instruction.target
        if target is None:
            return
        if target.kind == OperandKind.INDIRECT and target.register == "HL":
            self.regs.pc = self.regs.hl
        elif target.kind == OperandKind.INDEXED and target.register in INDEX_REGISTERS:
            self.regs.pc = self.regs.get(target.register)
        elif (address := self.resolve(target.expression)) is not None:
            self.regs.pc = address

    def _call(self, instruction: Instruction) -> None:
        if not self.state.flags.check(instruction.condition):
            return
        target = instruction.target
        address = self.resolve(target.expression) if target is not None else None

        size = 1 if instruction.mnemonic == "RST" else 3
        self.push((self.regs.pc + size) & 0xFFFF)
        if address is None:
            return
        self.regs.pc = address

        if address in bios.VDP_CALLBACKS:
            self._vdp_callback(address)

    def _vdp_callback(self, address: int) -> None:
        regs = self.regs
        vdp = self.state.vdp
        if address == bios.WRTVRM:
            vdp.write_vram(regs.hl, regs.a)
        elif address == bios.FILVRM:
            vdp.fill(regs.hl, regs.bc, regs.a)
        elif address == bios.LDIRVM:
            data = bytes(self.read(regs.hl + offset) for offset in range(regs.bc))
            vdp.load(regs.de, data)

    # ========================================
    # I/O
    # ========================================

    def _port(self, operand: Operand) -> Optional[int]:
        if operand.kind == OperandKind.INDIRECT and operand.register == "C":
            return self.regs.c
        if operand.kind in (OperandKind.ABSOLUTE, OperandKind.IMMEDIATE):
            return self.resolve(operand.expression)
        return None

    def _out(self, port_operand: Operand, src: Operand) -> None:
        port = self._port(port_operand)
        value = self.get8(src)
        if port is None or value is None:
            return
        if not self.state.vdp.out(port, value):
            logger.debug("OUT to unmodelled port $%02X", port & 0xFF)

    def _in(self, dst: Operand, port_operand: Operand) -> None:
        port = self._port(port_operand)
        if port is None or dst.kind != OperandKind.REG8:
            return
        value = self.state.vdp.inp(port)
        if value is None:
            logger.debug("IN from unmodelled port $%02X", port & 0xFF)
            return
        self.regs.set(dst.register, value)
        if port_operand.kind == OperandKind.INDIRECT:
            carry = self.state.flags.c
            self._set_szp(value)
            self.state.flags.c = carry

    # ========================================
    # Block Instructions
    # ========================================

    def _block_load(self, mnemonic: str) -> None:
        regs = self.regs
        step = 1 if mnemonic in ("LDI", "LDIR") else -1
        repeat = mnemonic in ("LDIR", "LDDR")
        count = (regs.bc or 0x10000) if repeat else 1

        for _ in range(count):
            self.write(regs.de, self.read(regs.hl))
            regs.hl = (regs.hl + step) & 0xFFFF
            regs.de = (regs.de + step) & 0xFFFF
            regs.bc = (regs.bc - 1) & 0xFFFF
        self.state.flags.pv = regs.bc != 0

    def _block_compare(self, mnemonic: str) -> None:
        regs = self.regs
        flags = self.state.flags
        step = 1 if mnemonic in ("CPI", "CPIR") else -1
        repeat = mnemonic in ("CPIR", "CPDR")
        count = (regs.bc or 0x10000) if repeat else 1

        for _ in range(count):
            value = self.read(regs.hl)
            result = (regs.a - value) & 0xFF
            regs.hl = (regs.hl + step) & 0xFFFF
            regs.bc = (regs.bc - 1) & 0xFFFF
            flags.z = result == 0
            flags.s = bool(result & 0x80)
            if flags.z:
                break
        flags.pv = regs.bc != 0

    def _block_io(self, mnemonic: str) -> None:
        regs = self.regs
        step = 1 if mnemonic in ("OUTI", "OTIR", "INI", "INIR") else -1
        repeat = mnemonic in ("OTIR", "OTDR", "INIR", "INDR")
        output = mnemonic in ("OUTI", "OUTD", "OTIR", "OTDR")
        count = (regs.b or 0x100) if repeat else 1

        for _ in range(count):
            if output:
                self.state.vdp.out(regs.c, self.read(regs.hl))
            else:
                value = self.state.vdp.inp(regs.c)
                if value is not None:
                    self.write(regs.hl, value)
            regs.hl = (regs.hl + step) & 0xFFFF
            regs.b = (regs.b - 1) & 0xFF
        self.state.flags.z = regs.b == 0


# =============================================================================
# Public API
# =============================================================================

def apply_instruction(
    instruction: Instruction,
    state: MachineState,
    symbols: Optional[Mapping[str, int]] = None,
    image: Optional[Mapping[int, int]] = None,
    address: Optional[int] = None,
) -> None:
    """
    Execute a parsed instruction in place.

    Only the control-flow drivers call this directly, on a state they
    already own; everything else goes through simulate_line().
    """
    if address is not None:
        state.registers.pc = address & 0xFFFF
    if not instruction.is_supported:
        logger.debug("Skipping unknown instruction or macro %s", instruction.mnemonic)
        return
    _Interpreter(state, symbols or {}, image).execute(instruction)


def execute_instruction(
    instruction: Instruction,
    state: MachineState,
    symbols: Optional[Mapping[str, int]] = None,
    image: Optional[Mapping[int, int]] = None,
    address: Optional[int] = None,
) -> MachineState:
    """
    Execute an already parsed instruction.

    Args:
        instruction: Parsed instruction
        state: Prior state (not modified)
        symbols: Symbol table
        image: Static memory image for reads not covered by the overlay
        address: Address of the instruction, loaded into PC first

    Returns:
        The next state
    """
    next_state = state.copy()
    apply_instruction(instruction, next_state, symbols, image, address)
    return next_state


def simulate_line(
    line: Union[str, SourceLine],
    state: MachineState,
    symbols: Optional[Mapping[str, int]] = None,
    image: Optional[Mapping[int, int]] = None,
    address: Optional[int] = None,
) -> MachineState:
    """
    Execute one source line.

    Labels and comments are stripped; blank, label-only and directive
    lines return an unchanged copy of the state.

    Args:
        line: Source text or a parsed line
        state: Prior state (not modified)
        symbols: Symbol table (uppercase names)
        image: Static memory image
        address: Address of the line, if known

    Returns:
        The next state
    """
    parsed = parse_line(line) if isinstance(line, str) else line
    if parsed is None or not parsed.is_executable:
        return state.copy()
    return execute_instruction(parsed.instruction(), state, symbols, image, address)
