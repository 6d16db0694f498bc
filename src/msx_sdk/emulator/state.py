"""
Machine State
=============

Register file, flags and the complete machine snapshot handed from one
interpreter call to the next. Every call works on a deep copy, so a
snapshot kept by a caller (for undo, say) never changes afterwards.

The Z80 register set:
- 8-bit: A, B, C, D, E, H, L (pairs BC, DE, HL), plus I and R
- 16-bit: IX, IY, SP, PC
- shadow bank: A', F', B', C', D', E', H', L' (touched only by EX AF,AF'
  and EXX)

Only the zero, sign, carry and parity/overflow flags are modelled; the
half-carry and add/subtract flags are not.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator.memory import RuntimeMemory
from msx_sdk.emulator.vdp import VdpState

REGISTER_NAMES_8 = ("A", "B", "C", "D", "E", "H", "L")
PAIR_NAMES = ("BC", "DE", "HL")


# =============================================================================
# Flags
# =============================================================================

@dataclass
class Flags:
    """
    Modelled flags.

    Bit positions in the F register:
        7  6  5  4  3  2  1  0
        S  Z  -  -  -  PV -  C
    """
    z: bool = False
    s: bool = False
    c: bool = False
    pv: bool = False

    S_BIT = 0x80
    Z_BIT = 0x40
    PV_BIT = 0x04
    C_BIT = 0x01

    def to_byte(self) -> int:
        """Pack into an F register value."""
        value = 0
        if self.s:
            value |= self.S_BIT
        if self.z:
            value |= self.Z_BIT
        if self.pv:
            value |= self.PV_BIT
        if self.c:
            value |= self.C_BIT
        return value

    @classmethod
    def from_byte(cls, value: int) -> "Flags":
        """Unpack an F register value."""
        return cls(
            z=bool(value & cls.Z_BIT),
            s=bool(value & cls.S_BIT),
            c=bool(value & cls.C_BIT),
            pv=bool(value & cls.PV_BIT),
        )

    def check(self, condition: Optional[str]) -> bool:
        """
        Evaluate a condition code; None or "" is unconditional.

        Unknown codes evaluate as taken.
        """
        match (condition or "").upper():
            case "NZ":
                return not self.z
            case "Z":
                return self.z
            case "NC":
                return not self.c
            case "C":
                return self.c
            case "P":
                return not self.s
            case "M":
                return self.s
            case "PO":
                return not self.pv
            case "PE":
                return self.pv
            case _:
                return True


# =============================================================================
# Registers
# =============================================================================

@dataclass
class Registers:
    """Z80 register file; all values are masked on write through set()."""
    a: int = 0
    b: int = 0
    c: int = 0
    d: int = 0
    e: int = 0
    h: int = 0
    l: int = 0
    a_prime: int = 0
    f_prime: int = 0
    b_prime: int = 0
    c_prime: int = 0
    d_prime: int = 0
    e_prime: int = 0
    h_prime: int = 0
    l_prime: int = 0
    ix: int = 0
    iy: int = 0
    sp: int = 0xF380
    pc: int = 0
    i: int = 0
    r: int = 0

    # ========================================
    # Pair Properties
    # ========================================

    @property
    def bc(self) -> int:
        return (self.b << 8) | self.c

    @bc.setter
    def bc(self, value: int) -> None:
        self.b = (value >> 8) & 0xFF
        self.c = value & 0xFF

    @property
    def de(self) -> int:
        return (self.d << 8) | self.e

    @de.setter
    def de(self, value: int) -> None:
        self.d = (value >> 8) & 0xFF
        self.e = value & 0xFF

    @property
    def hl(self) -> int:
        return (self.h << 8) | self.l

    @hl.setter
    def hl(self, value: int) -> None:
        self.h = (value >> 8) & 0xFF
        self.l = value & 0xFF

    # ========================================
    # Access by Name
    # ========================================

    def get(self, name: str) -> int:
        """
        Read a register or pair by name (A, BC, IX, SP, PC, A', HL', ...).

        Raises:
            KeyError: Unknown register name
        """
        name = name.upper()
        if name.endswith("'"):
            base = name[:-1]
            if base in ("AF", "BC", "DE", "HL"):
                return (getattr(self, f"{base[0].lower()}_prime") << 8) | getattr(self, f"{base[1].lower()}_prime")
            if base in ("A", "F", "B", "C", "D", "E", "H", "L"):
                return getattr(self, f"{base.lower()}_prime")
            raise KeyError(name)
        if name in REGISTER_NAMES_8 or name in ("I", "R"):
            return getattr(self, name.lower())
        if name in ("BC", "DE", "HL", "IX", "IY", "SP", "PC"):
            return getattr(self, name.lower())
        raise KeyError(name)

    def set(self, name: str, value: int) -> None:
        """
        Write a register or pair by name, masking to its width.

        Raises:
            KeyError: Unknown register name
        """
        name = name.upper()
        if name in REGISTER_NAMES_8 or name == "I":
            setattr(self, name.lower(), value & 0xFF)
        elif name == "R":
            self.r = value & 0x7F
        elif name in ("BC", "DE", "HL"):
            setattr(self, name.lower(), value & 0xFFFF)
        elif name in ("IX", "IY", "SP", "PC"):
            setattr(self, name.lower(), value & 0xFFFF)
        else:
            raise KeyError(name)


# =============================================================================
# Machine State
# =============================================================================

@dataclass
class MachineState:
    """
    Complete snapshot passed between interpreter calls.

    Attributes:
        registers: Register file
        flags: Modelled flags
        memory: Runtime memory overlay
        vdp: Video chip state
    """
    registers: Registers = field(default_factory=Registers)
    flags: Flags = field(default_factory=Flags)
    memory: RuntimeMemory = field(default_factory=RuntimeMemory)
    vdp: VdpState = field(default_factory=VdpState)

    @classmethod
    def initial(cls, config: Optional[SimulatorConfig] = None) -> "MachineState":
        """Fresh machine with SP at the configured stack top."""
        config = config or SimulatorConfig()
        state = cls()
        state.registers.sp = config.initial_stack_pointer & 0xFFFF
        return state

    def copy(self) -> "MachineState":
        """Deep copy: nothing is shared with the original."""
        return MachineState(
            registers=replace(self.registers),
            flags=replace(self.flags),
            memory=self.memory.copy(),
            vdp=self.vdp.copy(),
        )

    @property
    def af(self) -> int:
        return (self.registers.a << 8) | self.flags.to_byte()

    @af.setter
    def af(self, value: int) -> None:
        self.registers.a = (value >> 8) & 0xFF
        self.flags = Flags.from_byte(value & 0xFF)

    def get_pair(self, name: str) -> int:
        """16-bit register by name, AF included."""
        if name.upper() == "AF":
            return self.af
        return self.registers.get(name)

    def set_pair(self, name: str, value: int) -> None:
        if name.upper() == "AF":
            self.af = value & 0xFFFF
        else:
            self.registers.set(name, value)
