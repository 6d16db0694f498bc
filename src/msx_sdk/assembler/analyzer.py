"""
Source Analysis
===============

The analysis entry point: one call turns Z80 source text into everything
the interpreter, the control-flow drivers and a debugger front end need.

Pipeline
--------
1. REPEAT/ENDR expansion
2. Line decomposition
3. Pass 0: symbol table and line layout
4. Bug detection over Pass 0 label addresses
5. Pass 1: memory image and initial variable snapshots
6. Pass 2: executable step list

Usage
-----
    >>> from msx_sdk.assembler import analyze
    >>> result = analyze("START: LD A, $10\\n       RET\\n")
    >>> result.symbols["START"]
    0
    >>> [step.mnemonic for step in result.steps]
    ['LD', 'RET']

Analysis never raises for bad source: unresolved symbols, unsupported
operand shapes and malformed REPEAT blocks become diagnostics in
`result.diagnostics`, and the rest of the result is still produced.
Analysis is deterministic; identical text gives identical results.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from msx_sdk.assembler.bugs import BugFinding, detect_bugs
from msx_sdk.assembler.image import InitialVariable, MemoryImage, build_memory_image
from msx_sdk.assembler.parser import parse_line, parse_source
from msx_sdk.assembler.preprocessor import expand_repeats, record_errors
from msx_sdk.assembler.steps import ExecutionStep, generate_steps
from msx_sdk.assembler.symbols import Constant, build_symbol_table
from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator import bios
from msx_sdk.errors import ErrorCollector

logger = logging.getLogger(__name__)

# MSX cartridge header: the ROM starts with the bytes "AB"
_ROM_HEADER = re.compile(r"\bdb\s+([\"']AB[\"']|#41|#42|\$41|\$42|41h|42h)", re.IGNORECASE)

# Labels tried, in order, for the line execution starts from
ENTRY_LABELS = ("ROM_HEADER", "START")


# =============================================================================
# Analysis Result
# =============================================================================

@dataclass
class AnalysisResult:
    """
    Everything produced by one analysis run.

    Attributes:
        steps: Executable lines in source order
        symbols: Label and constant name -> value
        labels: Address label -> 1-based line number
        memory_image: Sparse address -> byte map
        initial_variables: Data label snapshots
        constants: EQU definitions
        bugs: Bug detector messages
        findings: Structured bug detector findings
        entry_line: Line execution starts from
        line_addresses: Line number -> address (EQU lines hold their value)
        line_origins: Expanded line number -> line number in the input text
        lines: Expanded source text, one entry per line
        diagnostics: Recoverable errors and warnings
        rom_header_detected: True when the source declares an "AB" header
        line_bytes: Line number -> bytes emitted by Pass 1
    """
    steps: list[ExecutionStep] = field(default_factory=list)
    symbols: dict[str, int] = field(default_factory=dict)
    labels: dict[str, int] = field(default_factory=dict)
    memory_image: MemoryImage = field(default_factory=MemoryImage)
    initial_variables: list[InitialVariable] = field(default_factory=list)
    constants: list[Constant] = field(default_factory=list)
    bugs: list[str] = field(default_factory=list)
    findings: list[BugFinding] = field(default_factory=list)
    entry_line: int = 1
    line_addresses: dict[int, int] = field(default_factory=dict)
    line_origins: dict[int, int] = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)
    diagnostics: ErrorCollector = field(default_factory=ErrorCollector)
    rom_header_detected: bool = False
    line_bytes: dict[int, bytes] = field(default_factory=dict)

    # =========================================================================
    # Output Formats
    # =========================================================================

    def listing(self) -> str:
        """
        Assembly listing.

        One row per source line: line number, address, emitted bytes and
        source text. Lines that occupy no address show a blank address.
        """
        rows = [
            "MSX Assembler Listing",
            "=" * 72,
            "",
            "Line  Addr  Code          Source",
            "-" * 72,
        ]
        for number, text in enumerate(self.lines, start=1):
            data = self.line_bytes.get(number, b"")
            address = self.line_addresses.get(number)
            parsed = parse_line(text, number)
            if address is None or (parsed is not None and parsed.directive == "EQU"):
                address_text = "    "
            else:
                address_text = f"{address:04X}"
            code = " ".join(f"{byte:02X}" for byte in data[:4])
            if len(data) > 4:
                code += "+"
            rows.append(f"{number:4d}  {address_text}  {code:<12s}  {text.rstrip()}")

        rows.append("")
        rows.append("Symbol Table")
        rows.append("-" * 30)
        rows.extend(self.symbols_text().splitlines())
        return "\n".join(rows)

    def symbols_text(self) -> str:
        """Symbol file: NAME $ADDR per line, sorted by name, constants marked EQU."""
        constant_names = {constant.name for constant in self.constants}
        rows = []
        for name, value in sorted(self.symbols.items()):
            suffix = "  EQU" if name in constant_names else ""
            rows.append(f"{name:<20s} ${value:04X}{suffix}")
        return "\n".join(rows) + ("\n" if rows else "")

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable summary."""
        return {
            "entry_line": self.entry_line,
            "rom_header_detected": self.rom_header_detected,
            "steps": [
                {
                    "id": step.id,
                    "line": step.line_number,
                    "mnemonic": step.mnemonic,
                    "operands": step.operands,
                    "kind": str(step.kind),
                    "description": step.description,
                    "cycles": step.cycles,
                }
                for step in self.steps
            ],
            "symbols": {name: self.symbols[name] for name in sorted(self.symbols)},
            "labels": {name: self.labels[name] for name in sorted(self.labels)},
            "constants": [
                {"name": constant.name, "value": constant.value, "hex": constant.hex}
                for constant in self.constants
            ],
            "initial_variables": [
                {"name": variable.name, "value": variable.value, "address": variable.address}
                for variable in self.initial_variables
            ],
            "memory_image": {f"{address:04X}": value for address, value in self.memory_image.items()},
            "bugs": list(self.bugs),
            "diagnostics": self.diagnostics.messages(),
        }


# =============================================================================
# Analyzer
# =============================================================================

class Analyzer:
    """
    Runs the analysis pipeline.

    Args:
        config: Limits for REPEAT expansion
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()

    def analyze(self, source: str, filename: str = "<input>") -> AnalysisResult:
        """
        Analyze source text.

        Args:
            source: Z80 assembly source
            filename: Name used in diagnostics

        Returns:
            AnalysisResult
        """
        collector = ErrorCollector()

        expanded = expand_repeats(source, self.config)
        record_errors(expanded, collector)
        if expanded.rounds:
            logger.debug("Expanded REPEAT blocks in %d round(s): %d lines",
                         expanded.rounds, len(expanded.lines))

        lines = parse_source(expanded.text)

        symbol_pass = build_symbol_table(lines, fallback=bios.resolve_name)
        findings = detect_bugs(symbol_pass.labels, symbol_pass.symbols)
        image = build_memory_image(
            lines, symbol_pass, collector, fallback=bios.resolve_name, filename=filename
        )
        steps = generate_steps(
            lines,
            symbol_pass.symbols,
            describe_address=bios.describe_address,
            fallback=bios.resolve_name,
        )

        result = AnalysisResult(
            steps=steps,
            symbols=dict(symbol_pass.symbols),
            labels=dict(symbol_pass.labels),
            memory_image=image.image,
            initial_variables=image.initial_variables,
            constants=symbol_pass.constants,
            bugs=[str(finding) for finding in findings],
            findings=findings,
            line_addresses=dict(symbol_pass.line_addresses),
            line_origins={number: origin for number, origin in enumerate(expanded.origins, start=1)},
            lines=list(expanded.lines),
            diagnostics=collector,
            rom_header_detected=bool(_ROM_HEADER.search(expanded.text)),
            line_bytes=image.line_bytes,
        )
        result.entry_line = self._entry_line(result)

        logger.debug("Analyzed %s: %d steps, %d symbols, %d image bytes, %d bug(s)",
                     filename, len(steps), len(result.symbols), len(result.memory_image),
                     len(findings))
        return result

    def analyze_file(self, path: str | Path) -> AnalysisResult:
        """
        Analyze a source file.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        path = Path(path)
        return self.analyze(path.read_text(encoding="utf-8", errors="replace"), str(path))

    @staticmethod
    def _entry_line(result: AnalysisResult) -> int:
        for name in ENTRY_LABELS:
            if name in result.labels:
                return result.labels[name]
        if result.steps:
            return result.steps[0].line_number
        return 1


def analyze(source: str, config: Optional[SimulatorConfig] = None) -> AnalysisResult:
    """Analyze source text with a default Analyzer."""
    return Analyzer(config).analyze(source)
