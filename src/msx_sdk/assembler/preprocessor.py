"""
REPEAT Block Expansion
======================

The only macro construct the toolchain supports is a bounded repeat:

```asm
    REPEAT 32*3        ; REPT is accepted as an alias
        DB 0
    ENDR
```

Blocks are expanded textually before the symbol pass. Nested blocks are
handled by expanding repeatedly until no REPEAT line remains, bounded by
SimulatorConfig.max_repeat_depth rounds. Labels written on a REPEAT or
ENDR line are kept on a line of their own at that end of the block, and
counts may name EQU constants.

Each expanded line keeps the 1-based line number it came from in the
original text, so steps and diagnostics can point back at what the user
actually wrote.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from msx_sdk.assembler.parser import parse_line
from msx_sdk.assembler.values import resolve_expression
from msx_sdk.config import SimulatorConfig
from msx_sdk.errors import ErrorCollector, MacroError, SourceLocation

logger = logging.getLogger(__name__)

_REPEAT_DIRECTIVES = frozenset({"REPEAT", "REPT"})


@dataclass
class ExpandedSource:
    """
    Result of REPEAT expansion.

    Attributes:
        lines: Expanded line texts
        origins: For each expanded line, its 1-based line in the input
        rounds: Number of expansion rounds performed
        errors: Unresolved counts and unterminated blocks
    """
    lines: list[str]
    origins: list[int]
    rounds: int = 0
    errors: list[MacroError] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def _block_marker(text: str) -> tuple[Optional[str], tuple[str, ...], str]:
    """
    Classify a line as REPEAT, ENDR or neither.

    Returns:
        (marker or None, leading labels, count expression)
    """
    line = parse_line(text)
    if line is None:
        return None, (), ""
    if line.directive in _REPEAT_DIRECTIVES:
        return "REPEAT", line.labels, line.args
    if line.directive == "ENDR":
        return "ENDR", line.labels, ""
    return None, line.labels, ""


def _label_line(labels: tuple[str, ...]) -> str:
    return " ".join(f"{label}:" for label in labels)


def scan_constants(lines: list[str]) -> dict[str, int]:
    """EQU values that resolve from literals and earlier constants alone."""
    constants: dict[str, int] = {}
    for text in lines:
        line = parse_line(text)
        if line is None or line.directive != "EQU" or not line.labels:
            continue
        value = resolve_expression(line.args, constants)
        if value is None:
            continue
        for label in line.labels:
            constants[label] = value
    return constants


def _repeat_count(
    expression: str,
    constants: dict[str, int],
    config: SimulatorConfig,
) -> Optional[int]:
    count = resolve_expression(expression, constants)
    if count is None:
        return None
    return min(count, config.max_repeat_count)


def _expand_once(
    lines: list[str],
    origins: list[int],
    constants: dict[str, int],
    config: SimulatorConfig,
    errors: list[MacroError],
) -> tuple[list[str], list[int], bool]:
    """Expand every outermost REPEAT block once."""
    out_lines: list[str] = []
    out_origins: list[int] = []
    changed = False
    index = 0

    while index < len(lines):
        marker, labels, expression = _block_marker(lines[index])

        if marker == "REPEAT":
            start = index
            # Labels on the REPEAT line mark the start of the block
            if labels:
                out_lines.append(_label_line(labels))
                out_origins.append(origins[start])

            count = _repeat_count(expression, constants, config)
            if count is None:
                errors.append(MacroError(
                    f"cannot resolve REPEAT count '{expression.strip()}', expanding once",
                    location=SourceLocation("<input>", origins[start]),
                ))
                count = 1

            body: list[str] = []
            body_origins: list[int] = []
            end_labels: tuple[str, ...] = ()
            depth = 1
            index += 1
            while index < len(lines):
                inner, inner_labels, _ = _block_marker(lines[index])
                if inner == "REPEAT":
                    depth += 1
                elif inner == "ENDR":
                    depth -= 1
                    if depth == 0:
                        end_labels = inner_labels
                        break
                body.append(lines[index])
                body_origins.append(origins[index])
                index += 1

            if depth > 0:
                logger.warning("Unterminated REPEAT at line %d", origins[start])
                errors.append(MacroError(
                    "REPEAT without matching ENDR",
                    location=SourceLocation("<input>", origins[start]),
                    hint="add ENDR after the repeated lines",
                ))

            logger.debug("Expanding REPEAT at line %d: %d x %d lines",
                         origins[start], count, len(body))
            for _ in range(count):
                out_lines.extend(body)
                out_origins.extend(body_origins)
            if end_labels:
                out_lines.append(_label_line(end_labels))
                out_origins.append(origins[index])
            changed = True
            index += 1
        elif marker == "ENDR":
            logger.debug("Dropping orphan ENDR at line %d", origins[index])
            if labels:
                out_lines.append(_label_line(labels))
                out_origins.append(origins[index])
            changed = True
            index += 1
        else:
            out_lines.append(lines[index])
            out_origins.append(origins[index])
            index += 1

    return out_lines, out_origins, changed


def expand_repeats(source: str, config: Optional[SimulatorConfig] = None) -> ExpandedSource:
    """
    Expand all REPEAT/ENDR blocks in a source text.

    Counts may name EQU constants defined anywhere in the source, as long
    as those constants resolve without labels.

    Args:
        source: Original source text
        config: Limits for expansion rounds and counts

    Returns:
        ExpandedSource with the expanded lines and their origins
    """
    config = config or SimulatorConfig()
    lines = source.splitlines()
    origins = list(range(1, len(lines) + 1))
    constants = scan_constants(lines)
    errors: list[MacroError] = []

    rounds = 0
    changed = True
    while changed and rounds < config.max_repeat_depth:
        lines, origins, changed = _expand_once(lines, origins, constants, config, errors)
        if changed:
            rounds += 1

    if changed:
        logger.warning("REPEAT expansion stopped after %d rounds", rounds)

    return ExpandedSource(lines=lines, origins=origins, rounds=rounds, errors=errors)


def record_errors(expanded: ExpandedSource, collector: ErrorCollector) -> None:
    """Copy expansion problems into an analysis error collector."""
    for error in expanded.errors:
        collector.add(error)
