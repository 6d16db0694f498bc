"""
MSX SDK Error Hierarchy
=======================

This module defines the exception hierarchy for the MSX SDK. All exceptions
inherit from MSXError, allowing callers to catch every SDK-related error
with a single except clause if desired.

Exception Hierarchy
-------------------
MSXError (base)
└── AssemblerError (assembler-related)
    ├── UndefinedSymbolError - reference to undefined label/constant
    ├── AddressingModeError - operand shape the encoder cannot express
    ├── BranchRangeError - relative jump target too far
    ├── ExpressionError - malformed literal or expression
    └── MacroError - malformed REPEAT/ENDR block

Design Philosophy
-----------------
The analysis core is used interactively on arbitrary, possibly broken
source, so none of these errors is fatal there. The encoder raises them;
the analyzer catches them, records them in an ErrorCollector and carries
on. Only the command-line tools let them reach the user.

Error messages follow this format:
    filename:line:column: error: description
    source_line_text
        ^ (pointer to error location)
    hint: suggestion for fixing (when available)
"""

from dataclasses import dataclass
from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class MSXError(Exception):
    """
    Base exception for all MSX SDK errors.

        try:
            encode_instruction("LD", "A, (IX+300)", {})
        except MSXError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    A location in source code for error reporting.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (1-indexed)
        column: Column number (1-indexed, 0 when unknown)
    """
    filename: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        return f"{self.filename}:{self.line}:{self.column}"


# =============================================================================
# Assembler Exceptions
# =============================================================================

class AssemblerError(MSXError):
    """
    Base exception for all assembler-related errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred (optional)
        hint: A suggestion for fixing the error (optional)
        source_line: The actual source text at the error location (optional)
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.source_line = source_line
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """
        Format the error message with location, source context, and hint.

        Example output:
            game.asm:15:10: error: undefined symbol 'WRTVMR'
                CALL WRTVMR
                     ^
            hint: did you mean 'WRTVRM'?
        """
        parts = []

        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        if self.source_line is not None and self.location is not None:
            parts.append(f"    {self.source_line}")
            if self.location.column > 0:
                padding = " " * (4 + self.location.column - 1)
                parts.append(f"{padding}^")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


class UndefinedSymbolError(AssemblerError):
    """
    Reference to an undefined symbol (label or constant).

    Raised by the encoder when an operand names a symbol that Pass 0 did
    not define. Similar names are offered as a hint to catch typos.
    """

    def __init__(
        self,
        symbol: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
        similar_symbols: Optional[list[str]] = None,
    ):
        self.symbol = symbol
        self.similar_symbols = similar_symbols or []

        if not hint and self.similar_symbols:
            suggestions = ", ".join(f"'{s}'" for s in self.similar_symbols[:3])
            hint = f"did you mean {suggestions}?"

        super().__init__(
            f"undefined symbol '{symbol}'",
            location=location,
            hint=hint,
            source_line=source_line,
        )


class AddressingModeError(AssemblerError):
    """
    Operand shape not supported by the encoder.

    Example:
        LD (BC), B   ; only A can be stored through (BC)
    """

    def __init__(
        self,
        mnemonic: str,
        operands: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.mnemonic = mnemonic
        self.operands = operands

        shape = f"{mnemonic} {operands}".strip()
        super().__init__(
            f"cannot encode '{shape}': unsupported operand combination",
            location=location,
            source_line=source_line,
        )


class BranchRangeError(AssemblerError):
    """
    Relative jump target is out of range.

    JR and DJNZ use a signed 8-bit displacement measured from the byte
    after the instruction, limiting the range to -128..+127.
    """

    def __init__(
        self,
        target: str,
        offset: int,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.target = target
        self.offset = offset

        direction = "forward" if offset > 0 else "backward"
        hint = (
            f"displacement is {offset}, but range is -128 to +127; "
            f"consider JP for {direction} references"
        )

        super().__init__(
            f"relative jump target '{target}' is out of range (offset: {offset})",
            location=location,
            hint=hint,
            source_line=source_line,
        )


class ExpressionError(AssemblerError):
    """
    Error evaluating a literal or expression.

    Raised for operands that are neither a literal in a supported base,
    a known symbol, nor a `+`/`-`/`*` combination of those.
    """
    pass


class MacroError(AssemblerError):
    """
    Malformed REPEAT/ENDR block.

    Recorded (not raised) by the preprocessor for unterminated blocks and
    counts that cannot be resolved.
    """
    pass


# =============================================================================
# Error Collection for Multiple Error Reporting
# =============================================================================

class ErrorCollector:
    """
    Collects errors and warnings for batch reporting.

    The analyzer keeps going after every recoverable problem, so the
    collector is the only place those problems surface.

    Example:
        collector = ErrorCollector()
        collector.add(AddressingModeError("LD", "(BC), B"))
        collector.add_warning("line 12: size 2 differs from encoded size 3")
        if collector.has_errors():
            print(collector.report())
    """

    def __init__(self):
        self.errors: list[AssemblerError] = []
        self.warnings: list[str] = []

    def add(self, error: AssemblerError) -> None:
        """Add an error to the collection."""
        self.errors.append(error)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def has_errors(self) -> bool:
        """Return True if any errors have been collected."""
        return len(self.errors) > 0

    def error_count(self) -> int:
        """Return the number of collected errors."""
        return len(self.errors)

    def warning_count(self) -> int:
        """Return the number of collected warnings."""
        return len(self.warnings)

    def messages(self) -> list[str]:
        """Return every error and warning as a flat list of strings."""
        return [str(error) for error in self.errors] + [f"warning: {w}" for w in self.warnings]

    def report(self) -> str:
        """
        Format all errors and warnings for display.

        Returns:
            Formatted string with all errors and warnings
        """
        lines = []

        for error in self.errors:
            lines.append(str(error))
            lines.append("")

        if self.warnings:
            lines.append("Warnings:")
            for warning in self.warnings:
                lines.append(f"  {warning}")

        error_word = "error" if len(self.errors) == 1 else "errors"
        warning_word = "warning" if len(self.warnings) == 1 else "warnings"
        lines.append(
            f"\n{len(self.errors)} {error_word}, {len(self.warnings)} {warning_word}"
        )

        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all collected errors and warnings."""
        self.errors.clear()
        self.warnings.clear()
