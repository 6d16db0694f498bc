# =============================================================================
# test_parser.py - Line Decomposition and Operand Classification Tests
# =============================================================================
# Tests for splitting Z80 source lines into labels, directives and
# operands, and for classifying operands into the shapes the encoder
# and interpreter dispatch on.
# =============================================================================

import pytest

from msx_sdk.assembler.opcodes import OperandKind
from msx_sdk.assembler.parser import (
    parse_instruction,
    parse_line,
    parse_operand,
    parse_source,
    split_operands,
    strip_comment,
)


# =============================================================================
# Comment and Operand Splitting
# =============================================================================

class TestScanning:
    """Tests for the quote-aware scanners."""

    def test_strip_comment(self):
        assert strip_comment("  LD A, 1 ; load") == "LD A, 1"

    def test_semicolon_in_string(self):
        assert strip_comment('DB "a;b" ; text') == 'DB "a;b"'

    def test_af_prime_is_not_a_quote(self):
        """The apostrophe of AF' does not open a string."""
        assert strip_comment("EX AF, AF' ; swap") == "EX AF, AF'"

    def test_split_operands(self):
        assert split_operands("A, (IX+3)") == ["A", "(IX+3)"]

    def test_split_keeps_quoted_commas(self):
        assert split_operands("'a,b', 2") == ["'a,b'", "2"]

    def test_split_empty(self):
        assert split_operands("   ") == []


# =============================================================================
# Line Decomposition
# =============================================================================

class TestParseLine:
    """Tests for parse_line()."""

    def test_blank_and_comment_lines(self):
        assert parse_line("") is None
        assert parse_line("   ; only a comment") is None

    def test_colon_label_and_instruction(self):
        line = parse_line("START:  LD   A, 10   ; comment", 3)
        assert line.line_number == 3
        assert line.labels == ("START",)
        assert line.directive == "LD"
        assert line.args == "A, 10"
        assert line.is_instruction
        assert line.is_executable

    def test_chained_labels(self):
        line = parse_line("ALIAS1: ALIAS2: NOP")
        assert line.labels == ("ALIAS1", "ALIAS2")
        assert line.directive == "NOP"

    def test_bare_label_before_directive(self):
        line = parse_line("BUFFER  DS   16")
        assert line.labels == ("BUFFER",)
        assert line.directive == "DS"
        assert line.is_directive
        assert not line.is_executable

    def test_bare_label_alone(self):
        line = parse_line("LOOP")
        assert line.labels == ("LOOP",)
        assert line.directive == ""
        assert not line.is_executable

    def test_lowercase_mnemonic(self):
        line = parse_line("    ret")
        assert line.directive == "RET"
        assert line.labels == ()

    def test_unknown_word_is_kept(self):
        """Macro calls stay visible as executable, unsupported lines."""
        line = parse_line("    PRINT_STRING MESSAGE")
        assert line.directive == "PRINT_STRING"
        assert line.args == "MESSAGE"
        assert line.is_executable
        assert not line.is_instruction
        assert not line.instruction().is_supported

    def test_label_then_macro(self):
        line = parse_line("INIT: SETUP")
        assert line.labels == ("INIT",)
        assert line.directive == "SETUP"

    def test_parse_source_numbers_lines(self):
        lines = parse_source("START:\n\n    NOP\n    RET\n")
        assert [line.line_number for line in lines] == [1, 3, 4]


# =============================================================================
# Operands
# =============================================================================

class TestParseOperand:
    """Tests for parse_operand()."""

    @pytest.mark.parametrize("text,kind,register", [
        ("A", OperandKind.REG8, "A"),
        ("i", OperandKind.REG8, "I"),
        ("HL", OperandKind.REG16, "HL"),
        ("AF'", OperandKind.REG16, "AF'"),
        ("IX", OperandKind.REG16, "IX"),
        ("(HL)", OperandKind.INDIRECT, "HL"),
        ("(C)", OperandKind.INDIRECT, "C"),
    ])
    def test_registers(self, text, kind, register):
        operand = parse_operand(text)
        assert operand.kind == kind
        assert operand.register == register

    def test_indexed_with_displacement(self):
        operand = parse_operand("(IX+5)")
        assert operand.kind == OperandKind.INDEXED
        assert operand.register == "IX"
        assert operand.expression == "+5"

    def test_indexed_negative_symbol(self):
        operand = parse_operand("(iy - OFFSET)")
        assert operand.register == "IY"
        assert operand.expression == "-OFFSET"

    def test_indexed_without_displacement(self):
        assert parse_operand("(IX)").expression == "0"

    def test_absolute(self):
        operand = parse_operand("(COUNTER)")
        assert operand.kind == OperandKind.ABSOLUTE
        assert operand.expression == "COUNTER"
        assert operand.is_memory

    def test_parenthesised_expression_is_immediate(self):
        """(1+2)*3 is not wrapped by one pair of parentheses."""
        operand = parse_operand("(1+2)*(3)")
        assert operand.kind == OperandKind.IMMEDIATE

    def test_immediate(self):
        operand = parse_operand("$10")
        assert operand.kind == OperandKind.IMMEDIATE
        assert operand.expression == "$10"
        assert not operand.is_memory


class TestParseInstruction:
    """Tests for parse_instruction()."""

    def test_condition_split_off(self):
        instruction = parse_instruction("JP", "NZ, LOOP")
        assert instruction.condition == "NZ"
        assert len(instruction.operands) == 1
        assert instruction.target.expression == "LOOP"

    def test_carry_condition_vs_register(self):
        """JP C,x has a condition; LD C,x does not."""
        assert parse_instruction("JP", "C, LOOP").condition == "C"
        assert parse_instruction("LD", "C, 1").condition is None

    def test_conditional_ret(self):
        instruction = parse_instruction("RET", "Z")
        assert instruction.condition == "Z"
        assert instruction.operands == ()

    def test_unconditional(self):
        instruction = parse_instruction("CALL", "CHPUT")
        assert instruction.condition is None
        assert instruction.target.expression == "CHPUT"

    def test_operand_accessor(self):
        instruction = parse_instruction("LD", "A, B")
        assert instruction.operand(1).register == "B"
        assert instruction.operand(2) is None
