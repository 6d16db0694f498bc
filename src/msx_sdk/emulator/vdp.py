"""
Video Chip Model
================

Minimal TMS9918-class VDP: 16 KB of VRAM behind an auto-incrementing
14-bit address register, reached only through two I/O ports and the
three BIOS VRAM routines.

Ports
-----
- $98 (data): writing stores a byte at the address register and
  advances it, wrapping at $3FFF; reading returns the byte and advances
  likewise. Both clear the control-port latch.
- $99 (control): a two-step latch. The first write buffers a byte. The
  second write either selects a VDP register (bit 7 set; registers are
  not modelled, so this is a no-op) or sets the address register to
  ((second & $3F) << 8) | first. Reading the status register clears the
  latch.
"""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DATA_PORT = 0x98
CONTROL_PORT = 0x99
VRAM_SIZE = 0x4000
VRAM_MASK = VRAM_SIZE - 1


@dataclass
class VdpState:
    """
    VDP state.

    Attributes:
        vram: 16384 bytes of video memory
        address_register: Current 14-bit VRAM address
        write_latch: True after the first of two control-port writes
        register_latch: Byte buffered by the first control-port write
    """
    vram: bytearray = field(default_factory=lambda: bytearray(VRAM_SIZE))
    address_register: int = 0
    write_latch: bool = False
    register_latch: int = 0

    def copy(self) -> "VdpState":
        """Independent copy, VRAM included."""
        return VdpState(
            vram=bytearray(self.vram),
            address_register=self.address_register,
            write_latch=self.write_latch,
            register_latch=self.register_latch,
        )

    # ========================================
    # Port Access
    # ========================================

    def write_data(self, value: int) -> None:
        """OUT ($98): store and auto-increment."""
        self.vram[self.address_register & VRAM_MASK] = value & 0xFF
        self.address_register = (self.address_register + 1) & VRAM_MASK
        self.write_latch = False

    def read_data(self) -> int:
        """IN ($98): fetch and auto-increment."""
        value = self.vram[self.address_register & VRAM_MASK]
        self.address_register = (self.address_register + 1) & VRAM_MASK
        self.write_latch = False
        return value

    def write_control(self, value: int) -> None:
        """OUT ($99): two-step address/register latch."""
        value &= 0xFF
        if not self.write_latch:
            self.register_latch = value
            self.write_latch = True
            return

        self.write_latch = False
        if value & 0x80:
            logger.debug("VDP register %d <- $%02X (not modelled)", value & 0x3F, self.register_latch)
            return
        self.address_register = ((value & 0x3F) << 8) | self.register_latch

    def read_status(self) -> int:
        """IN ($99): status register (always 0 here); clears the latch."""
        self.write_latch = False
        return 0

    def out(self, port: int, value: int) -> bool:
        """
        Route an OUT to the VDP.

        Returns:
            True if the port belongs to the VDP
        """
        match port & 0xFF:
            case 0x98:
                self.write_data(value)
            case 0x99:
                self.write_control(value)
            case _:
                return False
        return True

    def inp(self, port: int) -> int | None:
        """Route an IN to the VDP; None for foreign ports."""
        match port & 0xFF:
            case 0x98:
                return self.read_data()
            case 0x99:
                return self.read_status()
        return None

    # ========================================
    # BIOS Routine Effects
    # ========================================

    def write_vram(self, address: int, value: int) -> None:
        """WRTVRM: VRAM[address] = value."""
        self.vram[address & VRAM_MASK] = value & 0xFF

    def fill(self, address: int, length: int, value: int) -> None:
        """FILVRM: fill length bytes from address."""
        for offset in range(length):
            self.vram[(address + offset) & VRAM_MASK] = value & 0xFF

    def load(self, address: int, data: bytes) -> None:
        """LDIRVM: copy data into VRAM from address."""
        for offset, value in enumerate(data):
            self.vram[(address + offset) & VRAM_MASK] = value & 0xFF

    # ========================================
    # Inspection
    # ========================================

    def nonzero_ranges(self) -> list[tuple[int, int]]:
        """Inclusive (start, end) ranges of VRAM holding non-zero bytes."""
        ranges: list[tuple[int, int]] = []
        start = None
        for address, value in enumerate(self.vram):
            if value and start is None:
                start = address
            elif not value and start is not None:
                ranges.append((start, address - 1))
                start = None
        if start is not None:
            ranges.append((start, len(self.vram) - 1))
        return ranges
