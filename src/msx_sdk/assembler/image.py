"""
Memory Image Builder (Pass 1)
=============================

Re-walks the source with the complete symbol table and materializes a
sparse address -> byte map:

- DB/DEFB/DEFM: quoted text becomes character codes, other values one
  byte each; an unresolved value still takes its byte slot but leaves it
  unpopulated
- DW/DEFW: little-endian words, unresolved values stored as zero
- DS/DEFS: reserves space; filled only when a fill value is given
- instructions: encoded bytes copied verbatim; an encoder failure leaves
  the range unpopulated and is recorded as a diagnostic

Line addresses come from Pass 0, so both passes always agree on layout.
When an instruction encodes to a different length than Pass 0 reserved
for it, a warning is recorded.

Labels on data lines, and labels that point into data emitted elsewhere,
produce InitialVariable snapshots of their first byte or word.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Optional

from msx_sdk.assembler.encoder import encode_instruction
from msx_sdk.assembler.opcodes import (
    BYTE_DIRECTIVES,
    MNEMONICS,
    SPACE_DIRECTIVES,
    WORD_DIRECTIVES,
    is_quoted,
    split_data_operands,
)
from msx_sdk.assembler.parser import SourceLine
from msx_sdk.assembler.symbols import SymbolPass
from msx_sdk.assembler.values import Fallback, format_hex, resolve_expression
from msx_sdk.errors import (
    AssemblerError,
    ErrorCollector,
    SourceLocation,
    UndefinedSymbolError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Memory Image
# =============================================================================

class MemoryImage(Mapping[int, int]):
    """
    Sparse address -> byte map built from literals and encoded instructions.

    The image is the static "ROM truth" of an analysis; the interpreter
    never writes to it.

    Example:
        >>> image = MemoryImage()
        >>> image.write(0x4000, b"AB")
        >>> image[0x4001]
        66
        >>> image.to_rom().hex()
        '4142'
    """

    def __init__(self, data: Optional[Mapping[int, int]] = None):
        self._bytes: dict[int, int] = {}
        if data:
            for address, value in data.items():
                self._bytes[address & 0xFFFF] = value & 0xFF

    def __getitem__(self, address: int) -> int:
        return self._bytes[address & 0xFFFF]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._bytes))

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        return f"MemoryImage({len(self._bytes)} bytes)"

    def write(self, address: int, data: bytes) -> None:
        """Store bytes starting at address (wrapping at 64K)."""
        for offset, value in enumerate(data):
            self._bytes[(address + offset) & 0xFFFF] = value & 0xFF

    def read_word(self, address: int, default: int = 0) -> int:
        """Little-endian word; missing bytes read as default's bytes."""
        low = self._bytes.get(address & 0xFFFF, default & 0xFF)
        high = self._bytes.get((address + 1) & 0xFFFF, (default >> 8) & 0xFF)
        return (high << 8) | low

    @property
    def lowest(self) -> Optional[int]:
        return min(self._bytes) if self._bytes else None

    @property
    def highest(self) -> Optional[int]:
        return max(self._bytes) if self._bytes else None

    def to_rom(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
        fill: int = 0xFF,
    ) -> bytes:
        """
        Export a contiguous block.

        Args:
            start: First address (default: lowest populated address)
            end: Last address, inclusive (default: highest populated address)
            fill: Value for unpopulated bytes (erased EPROM reads $FF)

        Returns:
            The block as bytes

        Raises:
            ValueError: If the image is empty or the range is inverted
        """
        if not self._bytes:
            raise ValueError("memory image is empty, nothing to export")
        start = self.lowest if start is None else start
        end = self.highest if end is None else end
        if end < start:
            raise ValueError(f"invalid range ${start:04X}-${end:04X}")
        return bytes(self._bytes.get(address, fill & 0xFF) for address in range(start, end + 1))

    def to_dict(self) -> dict[int, int]:
        return dict(sorted(self._bytes.items()))


# =============================================================================
# Initial Variables
# =============================================================================

@dataclass(frozen=True)
class InitialVariable:
    """
    Snapshot of a labeled data location before execution.

    Attributes:
        name: Uppercase label
        value: First byte (DB) or first word (DW)
        address: Canonical hex address ("$C000")
    """
    name: str
    value: int
    address: str


@dataclass
class ImageResult:
    """
    Output of Pass 1.

    Attributes:
        image: The sparse memory image
        initial_variables: Labeled data snapshots
        line_bytes: Line -> bytes emitted by that line (for listings)
    """
    image: MemoryImage = field(default_factory=MemoryImage)
    initial_variables: list[InitialVariable] = field(default_factory=list)
    line_bytes: dict[int, bytes] = field(default_factory=dict)


# =============================================================================
# Pass 1
# =============================================================================

class _ImageBuilder:
    """Pass 1 state for one analysis."""

    def __init__(
        self,
        symbol_pass: SymbolPass,
        collector: ErrorCollector,
        fallback: Optional[Fallback],
        filename: str,
    ):
        self.symbol_pass = symbol_pass
        self.symbols = symbol_pass.symbols
        self.collector = collector
        self.fallback = fallback
        self.filename = filename
        self.result = ImageResult()
        self.data_addresses: set[int] = set()
        self.variable_names: set[str] = set()

    def _location(self, line: SourceLine) -> SourceLocation:
        return SourceLocation(self.filename, line.line_number)

    def _resolve(self, token: str) -> Optional[int]:
        return resolve_expression(token, self.symbols, self.fallback)

    def _unresolved(self, line: SourceLine, token: str) -> None:
        logger.debug("Line %d: unresolved value '%s'", line.line_number, token)
        self.collector.add(UndefinedSymbolError(
            token,
            location=self._location(line),
            source_line=line.text.strip(),
        ))

    def _add_variables(self, line: SourceLine, address: int, value: int) -> None:
        for label in line.labels:
            self.result.initial_variables.append(
                InitialVariable(name=label, value=value, address=format_hex(address))
            )
            self.variable_names.add(label)

    def _emit(self, line: SourceLine, address: int, data: bytes) -> None:
        self.result.image.write(address, data)
        self.result.line_bytes[line.line_number] = data

    # -------------------------------------------------------------------------
    # Directives
    # -------------------------------------------------------------------------

    def _bytes(self, line: SourceLine, address: int) -> None:
        offset = 0
        emitted = bytearray()
        image = self.result.image
        for token in split_data_operands(line.args):
            if is_quoted(token):
                for char in token[1:-1]:
                    image.write(address + offset, bytes([ord(char) & 0xFF]))
                    emitted.append(ord(char) & 0xFF)
                    self.data_addresses.add((address + offset) & 0xFFFF)
                    offset += 1
                continue
            value = self._resolve(token)
            if value is None:
                self._unresolved(line, token)
            else:
                image.write(address + offset, bytes([value & 0xFF]))
                emitted.append(value & 0xFF)
                self.data_addresses.add((address + offset) & 0xFFFF)
            offset += 1

        self.result.line_bytes[line.line_number] = bytes(emitted)
        self._add_variables(line, address, image.get(address & 0xFFFF, 0))

    def _words(self, line: SourceLine, address: int) -> None:
        data = bytearray()
        for token in split_data_operands(line.args):
            value = self._resolve(token)
            if value is None:
                self._unresolved(line, token.strip())
                value = 0
            data += bytes([value & 0xFF, (value >> 8) & 0xFF])

        self._emit(line, address, bytes(data))
        self.data_addresses.update((address + i) & 0xFFFF for i in range(len(data)))
        self._add_variables(line, address, self.result.image.read_word(address))

    def _space(self, line: SourceLine, address: int) -> None:
        operands = split_data_operands(line.args)
        if len(operands) < 2:
            return
        size = self.symbol_pass.line_sizes.get(line.line_number, 0)
        fill = self._resolve(operands[1])
        if fill is None:
            self._unresolved(line, operands[1])
            return
        self._emit(line, address, bytes([fill & 0xFF]) * size)

    # -------------------------------------------------------------------------
    # Instructions
    # -------------------------------------------------------------------------

    def _instruction(self, line: SourceLine, address: int) -> None:
        try:
            data = encode_instruction(
                line.directive,
                line.args,
                self.symbols,
                address=address,
                fallback=self.fallback,
                location=self._location(line),
                source_line=line.text.strip(),
            )
        except AssemblerError as e:
            logger.debug("Line %d: not encoded: %s", line.line_number, e.message)
            self.collector.add(e)
            return

        self._emit(line, address, data)
        reserved = self.symbol_pass.line_sizes.get(line.line_number, len(data))
        if reserved != len(data):
            message = (
                f"line {line.line_number}: '{line.directive} {line.args}' encodes to "
                f"{len(data)} bytes but {reserved} were reserved"
            )
            logger.warning(message)
            self.collector.add_warning(message)

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    def build(self, lines: Iterable[SourceLine]) -> ImageResult:
        for line in lines:
            directive = line.directive
            if directive in ("ORG", "EQU", ""):
                continue
            address = self.symbol_pass.line_addresses.get(line.line_number)
            if address is None:
                continue

            if directive in BYTE_DIRECTIVES:
                self._bytes(line, address)
            elif directive in WORD_DIRECTIVES:
                self._words(line, address)
            elif directive in SPACE_DIRECTIVES:
                self._space(line, address)
            elif directive in MNEMONICS:
                self._instruction(line, address)
            elif not line.is_directive:
                self.collector.add_warning(
                    f"line {line.line_number}: unknown instruction or macro '{directive}'"
                )

        self._alias_variables()
        return self.result

    def _alias_variables(self) -> None:
        """Snapshot labels that point into data declared on another line."""
        constants = {constant.name for constant in self.symbol_pass.constants}
        for label in self.symbol_pass.labels:
            if label in self.variable_names or label in constants:
                continue
            address = self.symbols.get(label)
            if address is None or address not in self.data_addresses:
                continue
            self.result.initial_variables.append(
                InitialVariable(name=label, value=self.result.image[address], address=format_hex(address))
            )
            self.variable_names.add(label)


def build_memory_image(
    lines: Iterable[SourceLine],
    symbol_pass: SymbolPass,
    collector: Optional[ErrorCollector] = None,
    fallback: Optional[Fallback] = None,
    filename: str = "<input>",
) -> ImageResult:
    """
    Run Pass 1.

    Args:
        lines: Parsed source lines (same list given to Pass 0)
        symbol_pass: Pass 0 output
        collector: Receives encoder errors and size warnings
        fallback: Resolver for names missing from the symbol table
        filename: Name used in diagnostics

    Returns:
        ImageResult with the image, variable snapshots and per-line bytes
    """
    builder = _ImageBuilder(symbol_pass, collector or ErrorCollector(), fallback, filename)
    return builder.build(lines)
