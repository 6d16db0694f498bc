"""
MSX Firmware Knowledge Base
===========================

Names and addresses of MSX BIOS entry points and system variables, so
that source can `CALL WRTVRM` without an EQU and the debugger can say
what a call into firmware does.

Memory Map
----------
- $0000-$3FFF: BIOS ROM (page 0); calls here are black boxes to the
  control-flow drivers
- $F380-$FFFF: system work area (variables and hooks)

Three entry points have modelled side effects on the video chip:

| Name   | Address | Effect                                        |
|--------|---------|-----------------------------------------------|
| WRTVRM | $004D   | VRAM[HL] = A                                  |
| FILVRM | $0056   | fill BC bytes of VRAM from HL with A          |
| LDIRVM | $005C   | copy BC bytes from RAM at HL to VRAM at DE    |

Usage
-----
    >>> from msx_sdk.emulator.bios import get_entry, resolve_name
    >>> get_entry("chput").address
    162
    >>> resolve_name("WRTVRM")
    77

Reference
---------
- MSX2 Technical Handbook, chapter 5 (BIOS listing)
- MSX Red Book, system variables
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


# =============================================================================
# Entry Categories
# =============================================================================

class EntryKind(Enum):
    """Kind of firmware entry."""
    ROUTINE = auto()    # BIOS call target
    VARIABLE = auto()   # system variable in the work area
    HOOK = auto()       # RAM hook patched by software


@dataclass(frozen=True)
class BiosEntry:
    """
    A named firmware address.

    Attributes:
        name: Uppercase name as used in source
        address: Address
        description: What the routine does or the variable holds
        kind: ROUTINE, VARIABLE or HOOK
        inputs: Register inputs, if any
        outputs: Register outputs, if any
    """
    name: str
    address: int
    description: str
    kind: EntryKind = EntryKind.ROUTINE
    inputs: str = ""
    outputs: str = ""

    def describe(self) -> str:
        """One-line summary, e.g. 'WRTVRM: Write byte to VRAM (HL=VRAM addr, A=data)'."""
        text = f"{self.name}: {self.description}"
        if self.inputs:
            text += f" ({self.inputs})"
        return text


# =============================================================================
# VDP Callback Addresses
# =============================================================================

WRTVRM = 0x004D
FILVRM = 0x0056
LDIRVM = 0x005C

VDP_CALLBACKS: frozenset[int] = frozenset({WRTVRM, FILVRM, LDIRVM})


# =============================================================================
# Knowledge Base
# =============================================================================

BIOS_ENTRIES: tuple[BiosEntry, ...] = (
    # RST vectors
    BiosEntry("CHKRAM", 0x0000, "System reset / cold start"),
    BiosEntry("KEYINT", 0x0038, "Timer interrupt handler, updates JIFFY and scans keyboard"),

    # Slots
    BiosEntry("RDSLT", 0x000C, "Read RAM in any slot", inputs="A=slot, HL=address", outputs="A=data"),
    BiosEntry("WRSLT", 0x0014, "Write to RAM in any slot", inputs="A=slot, HL=address, E=data"),
    BiosEntry("CALSLT", 0x001C, "Call routine in another slot", inputs="IY=slot, IX=address"),
    BiosEntry("ENASLT", 0x0024, "Enable slot permanently", inputs="A=slot, H=page"),
    BiosEntry("CALLF", 0x0030, "Call routine in another slot (inline parameters)"),

    # VDP
    BiosEntry("WRTVDP", 0x0047, "Write to VDP register", inputs="C=register, B=data"),
    BiosEntry("RDVRM", 0x004A, "Read byte from VRAM", inputs="HL=VRAM address", outputs="A=data"),
    BiosEntry("WRTVRM", WRTVRM, "Write byte to VRAM", inputs="HL=VRAM address, A=data"),
    BiosEntry("SETRD", 0x0050, "Set VDP address for reading", inputs="HL=VRAM address"),
    BiosEntry("SETWRT", 0x0053, "Set VDP address for writing", inputs="HL=VRAM address"),
    BiosEntry("FILVRM", FILVRM, "Fill VRAM block", inputs="HL=VRAM address, BC=length, A=data"),
    BiosEntry("LDIRMV", 0x0059, "Block transfer VRAM to RAM", inputs="HL=VRAM source, DE=RAM destination, BC=length"),
    BiosEntry("LDIRVM", LDIRVM, "Block transfer RAM to VRAM", inputs="HL=RAM source, DE=VRAM destination, BC=length"),
    BiosEntry("CHGMOD", 0x005F, "Switch screen mode", inputs="A=screen mode (0-3)"),
    BiosEntry("CHGCLR", 0x0062, "Change screen colors", inputs="FORCLR, BAKCLR, BDRCLR"),
    BiosEntry("CLRSPR", 0x0069, "Initialize all sprites"),
    BiosEntry("INITXT", 0x006C, "Initialize SCREEN 0 (40x24 text)"),
    BiosEntry("INIT32", 0x006F, "Initialize SCREEN 1 (32x24 text)"),
    BiosEntry("INIGRP", 0x0072, "Initialize SCREEN 2 (graphics)"),
    BiosEntry("INIMLT", 0x0075, "Initialize SCREEN 3 (multicolor)"),
    BiosEntry("DISSCR", 0x0041, "Disable screen display"),
    BiosEntry("ENASCR", 0x0044, "Enable screen display"),
    BiosEntry("CALPAT", 0x0084, "Get sprite pattern table address", inputs="A=sprite", outputs="HL=address"),
    BiosEntry("CALATR", 0x0087, "Get sprite attribute table address", inputs="A=sprite", outputs="HL=address"),
    BiosEntry("GSPSIZ", 0x008A, "Get sprite size", outputs="A=size"),

    # Sound
    BiosEntry("GICINI", 0x0090, "Initialize PSG"),
    BiosEntry("WRTPSG", 0x0093, "Write to PSG register", inputs="A=register, E=data"),
    BiosEntry("RDPSG", 0x0096, "Read PSG register", inputs="A=register", outputs="A=data"),
    BiosEntry("BEEP", 0x00C0, "Generate beep"),

    # Console and input
    BiosEntry("CHSNS", 0x009C, "Test keyboard buffer status", outputs="Z=buffer empty"),
    BiosEntry("CHGET", 0x009F, "Wait for a character from the keyboard", outputs="A=character"),
    BiosEntry("CHPUT", 0x00A2, "Output character to the screen", inputs="A=character"),
    BiosEntry("LPTOUT", 0x00A5, "Output character to the printer", inputs="A=character"),
    BiosEntry("CLS", 0x00C3, "Clear screen"),
    BiosEntry("POSIT", 0x00C6, "Move cursor", inputs="H=column, L=row"),
    BiosEntry("TOTEXT", 0x00D2, "Return to text mode"),
    BiosEntry("GTSTCK", 0x00D5, "Get joystick direction", inputs="A=port", outputs="A=direction (0-8)"),
    BiosEntry("GTTRIG", 0x00D8, "Get trigger status", inputs="A=trigger", outputs="A=0 released, $FF pressed"),
    BiosEntry("GTPAD", 0x00DB, "Get touch pad / mouse data", inputs="A=function", outputs="A=value"),
    BiosEntry("SNSMAT", 0x0141, "Read keyboard matrix row", inputs="A=row", outputs="A=bits"),
    BiosEntry("KILBUF", 0x0156, "Clear keyboard buffer"),
    BiosEntry("RND", 0x013E, "Random number (MSX-BASIC helper)", outputs="BC=value"),

    # System variables
    BiosEntry("LINL40", 0xF3AE, "SCREEN 0 width", EntryKind.VARIABLE),
    BiosEntry("LINL32", 0xF3AF, "SCREEN 1 width", EntryKind.VARIABLE),
    BiosEntry("LINLEN", 0xF3B0, "Current line length", EntryKind.VARIABLE),
    BiosEntry("CRTCNT", 0xF3B1, "Rows on screen", EntryKind.VARIABLE),
    BiosEntry("CLIKSW", 0xF3DB, "Key click switch (0=off)", EntryKind.VARIABLE),
    BiosEntry("CSRY", 0xF3DC, "Cursor row", EntryKind.VARIABLE),
    BiosEntry("CSRX", 0xF3DD, "Cursor column", EntryKind.VARIABLE),
    BiosEntry("FORCLR", 0xF3E9, "Foreground color", EntryKind.VARIABLE),
    BiosEntry("BAKCLR", 0xF3EA, "Background color", EntryKind.VARIABLE),
    BiosEntry("BDRCLR", 0xF3EB, "Border color", EntryKind.VARIABLE),
    BiosEntry("RG0SAV", 0xF3DF, "Copy of VDP register 0", EntryKind.VARIABLE),
    BiosEntry("RG1SAV", 0xF3E0, "Copy of VDP register 1", EntryKind.VARIABLE),
    BiosEntry("STATFL", 0xF3E7, "Copy of VDP status register", EntryKind.VARIABLE),
    BiosEntry("JIFFY", 0xFC9E, "Software clock, incremented every interrupt", EntryKind.VARIABLE),
    BiosEntry("INTCNT", 0xFCA2, "Interrupt counter for ON INTERVAL", EntryKind.VARIABLE),
    BiosEntry("EXPTBL", 0xFCC1, "Slot expansion table", EntryKind.VARIABLE),
    BiosEntry("SLTTBL", 0xFCC5, "Secondary slot register copies", EntryKind.VARIABLE),

    # Hooks
    BiosEntry("H_KEYI", 0xFD9A, "Hook: interrupt handler", EntryKind.HOOK),
    BiosEntry("H_TIMI", 0xFD9F, "Hook: timer interrupt", EntryKind.HOOK),
)


# =============================================================================
# Lookup Functions
# =============================================================================

_ENTRIES_BY_NAME: dict[str, BiosEntry] = {entry.name: entry for entry in BIOS_ENTRIES}
_ENTRIES_BY_ADDRESS: dict[int, BiosEntry] = {}
for _entry in BIOS_ENTRIES:
    _ENTRIES_BY_ADDRESS.setdefault(_entry.address, _entry)
del _entry


def get_entry(name: str) -> Optional[BiosEntry]:
    """
    Look up an entry by name.

    Args:
        name: Entry name (case-insensitive, H.TIMI and H_TIMI both accepted)

    Returns:
        BiosEntry if found, None otherwise
    """
    return _ENTRIES_BY_NAME.get(name.strip().upper().replace(".", "_"))


def get_entry_at(address: int) -> Optional[BiosEntry]:
    """Look up the entry at an address."""
    return _ENTRIES_BY_ADDRESS.get(address & 0xFFFF)


def resolve_name(name: str) -> Optional[int]:
    """
    Address of a named entry, or None.

    Signature matches the value resolver's fallback hook.
    """
    entry = get_entry(name)
    return entry.address if entry else None


def describe_address(address: int) -> Optional[str]:
    """One-line description of the entry at an address, or None."""
    entry = get_entry_at(address)
    return entry.describe() if entry else None


def get_all_entry_names() -> list[str]:
    """Sorted list of every known name."""
    return sorted(_ENTRIES_BY_NAME)
