"""
Value Resolver
==============

Turns literal and label tokens from Z80 source into integers.

Supported Literal Forms
-----------------------
- Character: 'A' or "A" (exactly one character)
- Hexadecimal: #FF, $FF, 0xFF, &HFF, 0FFH (suffix form needs a leading digit)
- Binary: %1010, 0b1010, 1010B
- Decimal: 42

Anything else is looked up in the symbol table (case-insensitive), then
in an optional fallback resolver such as the MSX BIOS knowledge base.

Expressions
-----------
resolve_expression() additionally accepts a left-to-right chain of terms
joined by `+` and `-`, where each term may be a product of factors joined
by `*`:

    >>> resolve_expression("SCREEN + 32*2", {"SCREEN": 0x1800})
    6208

Results are wrapped to 16 bits. Every resolver returns None instead of
raising when something cannot be resolved; callers decide whether to
default to zero or to skip the operation.
"""

from collections.abc import Callable, Mapping
from typing import Optional

# Signature of a secondary name resolver consulted after the symbol table
Fallback = Callable[[str], Optional[int]]

_HEX_DIGITS = frozenset("0123456789ABCDEF")
_BIN_DIGITS = frozenset("01")
_QUOTES = "'\""


# =============================================================================
# Literals
# =============================================================================

def _parse_digits(text: str, digits: frozenset[str], base: int) -> Optional[int]:
    if not text or not set(text) <= digits:
        return None
    return int(text, base)


def parse_literal(token: str) -> Optional[int]:
    """
    Parse a numeric or character literal.

    Args:
        token: Literal text, surrounding whitespace allowed

    Returns:
        The integer value, or None when the token is not a literal
    """
    text = token.strip()
    if not text:
        return None

    if len(text) == 3 and text[0] in _QUOTES and text[2] == text[0]:
        return ord(text[1])

    upper = text.upper()

    if upper.startswith("0X"):
        return _parse_digits(upper[2:], _HEX_DIGITS, 16)
    if upper.startswith("&H"):
        return _parse_digits(upper[2:], _HEX_DIGITS, 16)
    if upper[0] in "#$":
        return _parse_digits(upper[1:], _HEX_DIGITS, 16)
    if upper[0] == "%":
        return _parse_digits(upper[1:], _BIN_DIGITS, 2)

    # Suffix forms must start with a digit, otherwise labels such as
    # BEACH or FAB would be read as numbers.
    if not upper[0].isdigit():
        return None

    if upper.endswith("H"):
        return _parse_digits(upper[:-1], _HEX_DIGITS, 16)
    if upper.startswith("0B") and len(upper) > 2 and set(upper[2:]) <= _BIN_DIGITS:
        return int(upper[2:], 2)
    if upper.endswith("B") and set(upper[:-1]) <= _BIN_DIGITS:
        return int(upper[:-1], 2)

    return _parse_digits(upper, frozenset("0123456789"), 10)


def format_hex(value: int) -> str:
    """Canonical hex rendering used in listings and variable snapshots."""
    return f"${value:X}"


# =============================================================================
# Labels
# =============================================================================

def parse_value(
    token: str,
    symbols: Optional[Mapping[str, int]] = None,
    fallback: Optional[Fallback] = None,
) -> Optional[int]:
    """
    Resolve a single literal or symbol name.

    Symbols are tried after literals, so a label can never shadow a
    number. The fallback is only consulted for names the symbol table
    does not know.
    """
    value = parse_literal(token)
    if value is not None:
        return value

    name = token.strip().upper()
    if not name:
        return None
    if symbols is not None and name in symbols:
        return symbols[name]
    if fallback is not None:
        return fallback(name)
    return None


# =============================================================================
# Expressions
# =============================================================================

def _split_terms(text: str) -> Optional[list[tuple[int, str]]]:
    """
    Split text into signed terms at top-level `+` and `-`.

    Operators inside quotes are literal characters. A sign with nothing
    before it is unary.
    """
    terms: list[tuple[int, str]] = []
    sign = 1
    current: list[str] = []
    quote = ""

    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = ""
            continue
        if char in _QUOTES:
            quote = char
            current.append(char)
            continue
        if char in "+-":
            term = "".join(current).strip()
            if term:
                terms.append((sign, term))
                sign = 1 if char == "+" else -1
            elif terms:
                # operator directly after operator, e.g. "A+-B"
                return None
            else:
                sign = sign if char == "+" else -sign
            current = []
            continue
        current.append(char)

    term = "".join(current).strip()
    if not term:
        return None
    terms.append((sign, term))
    return terms


def _resolve_term(
    term: str,
    symbols: Optional[Mapping[str, int]],
    fallback: Optional[Fallback],
) -> Optional[int]:
    if "*" not in term or term[0] in _QUOTES:
        return parse_value(term, symbols, fallback)

    product = 1
    for factor in term.split("*"):
        value = parse_value(factor, symbols, fallback)
        if value is None:
            return None
        product *= value
    return product


def resolve_expression(
    text: str,
    symbols: Optional[Mapping[str, int]] = None,
    fallback: Optional[Fallback] = None,
) -> Optional[int]:
    """
    Resolve a literal, symbol or simple arithmetic expression.

    Args:
        text: Expression text
        symbols: Symbol table (uppercase names)
        fallback: Resolver for names missing from the symbol table

    Returns:
        Value wrapped to 16 bits, or None when any part is unresolved
    """
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None

    # Fast path, also covers character literals such as '+'
    value = parse_value(text, symbols, fallback)
    if value is not None:
        return value & 0xFFFF

    terms = _split_terms(text)
    if terms is None:
        return None

    total = 0
    for sign, term in terms:
        value = _resolve_term(term, symbols, fallback)
        if value is None:
            return None
        total += sign * value
    return total & 0xFFFF


def to_signed(value: int, bits: int = 16) -> int:
    """Interpret a wrapped value as two's complement."""
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        return value - (1 << bits)
    return value
