"""
Label Aliasing Bug Detector
===========================

Two labels declared on different lines that end up at the same address
mean nothing was emitted between them. That is legitimate aliasing in
some code, but more often one of two mistakes:

- EMPTY DATA: a data label (name ending in _DATA or containing _STRUCT)
  whose DB/DW line is missing
- FALLTHROUGH: a routine label with no body, so execution falls into
  the next label (usually a missing RET)

Findings are advisory only; false positives from intentional aliasing
are expected.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto


class BugKind(Enum):
    """Classification of an aliasing finding."""
    EMPTY_DATA = auto()
    FALLTHROUGH = auto()


@dataclass(frozen=True)
class BugFinding:
    """
    One aliasing finding.

    Attributes:
        kind: EMPTY_DATA or FALLTHROUGH
        name: The empty label
        next_name: The label it aliases
        line: Line where the empty label is declared
        address: Shared address
    """
    kind: BugKind
    name: str
    next_name: str
    line: int
    address: int

    def __str__(self) -> str:
        if self.kind == BugKind.EMPTY_DATA:
            return (
                f"EMPTY DATA: '{self.name}' has 0 bytes (Line {self.line}). "
                f"It aliases '{self.next_name}'. Missing DB/DW?"
            )
        return (
            f"FALLTHROUGH: '{self.name}' (Line {self.line}) is empty. "
            f"Execution flows directly to '{self.next_name}'. Missing RET?"
        )


def is_data_name(name: str) -> bool:
    """True for names that by convention label data rather than code."""
    upper = name.upper()
    return upper.endswith("_DATA") or "_STRUCT" in upper


def detect_bugs(
    labels: Mapping[str, int],
    symbols: Mapping[str, int],
) -> list[BugFinding]:
    """
    Find adjacent labels that share an address.

    Args:
        labels: Address label -> declaration line
        symbols: Symbol table with label addresses

    Returns:
        Findings in declaration order
    """
    ordered = sorted(labels.items(), key=lambda item: item[1])
    findings: list[BugFinding] = []

    for (name, line), (next_name, next_line) in zip(ordered, ordered[1:]):
        if line == next_line or name == next_name:
            continue
        address = symbols.get(name)
        if address is None or address != symbols.get(next_name):
            continue
        kind = BugKind.EMPTY_DATA if is_data_name(name) else BugKind.FALLTHROUGH
        findings.append(BugFinding(kind, name, next_name, line, address))

    return findings
