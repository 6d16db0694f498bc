"""
Runtime Memory Overlay
======================

Bytes written while interpreting code (stores, pushes, call return
addresses). Reads fall through to the static memory image, then to zero.

The overlay is keyed by address only. A by-name view for the debugger
is derived on demand from the symbol table, so the two views can never
disagree.
"""

from collections.abc import Iterator, Mapping
from typing import Optional


class RuntimeMemory:
    """
    Address-indexed overlay of runtime writes.

    Example:
        >>> memory = RuntimeMemory()
        >>> memory.write(0xC000, 0x42)
        >>> memory.read(0xC000)
        66
        >>> memory.named_view({"SCORE": 0xC000})
        {'SCORE': 66}
    """

    def __init__(self, cells: Optional[Mapping[int, int]] = None):
        self._cells: dict[int, int] = dict(cells) if cells else {}

    def copy(self) -> "RuntimeMemory":
        return RuntimeMemory(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, address: int) -> bool:
        return (address & 0xFFFF) in self._cells

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._cells))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuntimeMemory):
            return NotImplemented
        return self._cells == other._cells

    def __repr__(self) -> str:
        return f"RuntimeMemory({len(self._cells)} bytes)"

    # ========================================
    # Access
    # ========================================

    def read(self, address: int, image: Optional[Mapping[int, int]] = None) -> int:
        """Overlay byte, else image byte, else 0."""
        address &= 0xFFFF
        if address in self._cells:
            return self._cells[address]
        if image is not None and address in image:
            return image[address]
        return 0

    def write(self, address: int, value: int) -> None:
        self._cells[address & 0xFFFF] = value & 0xFF

    def read_word(self, address: int, image: Optional[Mapping[int, int]] = None) -> int:
        """Little-endian word."""
        return self.read(address, image) | (self.read(address + 1, image) << 8)

    def write_word(self, address: int, value: int) -> None:
        """Store a little-endian word."""
        self.write(address, value & 0xFF)
        self.write(address + 1, (value >> 8) & 0xFF)

    # ========================================
    # Views
    # ========================================

    def named_view(self, symbols: Mapping[str, int]) -> dict[str, int]:
        """Label -> byte for every label whose address was written."""
        return {
            name: self._cells[address & 0xFFFF]
            for name, address in symbols.items()
            if (address & 0xFFFF) in self._cells
        }

    def to_dict(self) -> dict[int, int]:
        return dict(sorted(self._cells.items()))
