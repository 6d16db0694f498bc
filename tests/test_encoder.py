# =============================================================================
# test_encoder.py - Z80 Instruction Encoder Tests
# =============================================================================
# Tests for machine code generation from parsed instructions.
#
# Test coverage includes:
#   - Each instruction group (loads, stack, ALU, CB, control, I/O)
#   - Index register prefixes and displacements
#   - Relative jump displacement and range checks
#   - Error reporting for bad operand shapes and unknown symbols
# =============================================================================

import pytest

from msx_sdk.assembler.encoder import encode_instruction, instruction_size
from msx_sdk.errors import (
    AddressingModeError,
    AssemblerError,
    BranchRangeError,
    ExpressionError,
    UndefinedSymbolError,
)


def enc(mnemonic, operands="", symbols=None, address=None):
    """Encode and return the bytes as a hex string."""
    return encode_instruction(mnemonic, operands, symbols or {}, address=address).hex()


# =============================================================================
# Loads
# =============================================================================

class TestLoads:
    """Tests for 8- and 16-bit loads."""

    @pytest.mark.parametrize("operands,expected", [
        ("A, B", "78"),
        ("B, A", "47"),
        ("A, $10", "3e10"),
        ("(HL), 5", "3605"),
        ("A, (HL)", "7e"),
        ("A, (IX+3)", "dd7e03"),
        ("(IY-1), A", "fd77ff"),
        ("(IX+2), $55", "dd360255"),
        ("A, (BC)", "0a"),
        ("(DE), A", "12"),
        ("A, ($C000)", "3a00c0"),
        ("($C000), A", "3200c0"),
        ("A, I", "ed57"),
        ("R, A", "ed4f"),
    ])
    def test_8bit(self, operands, expected):
        assert enc("LD", operands) == expected

    @pytest.mark.parametrize("operands,expected", [
        ("HL, $1234", "213412"),
        ("BC, 1", "010100"),
        ("SP, $F380", "3180f3"),
        ("IX, $4000", "dd210040"),
        ("HL, ($C000)", "2a00c0"),
        ("DE, ($C000)", "ed5b00c0"),
        ("($C000), HL", "2200c0"),
        ("($C000), BC", "ed4300c0"),
        ("($C000), IY", "fd2200c0"),
        ("SP, HL", "f9"),
        ("SP, IX", "ddf9"),
    ])
    def test_16bit(self, operands, expected):
        assert enc("LD", operands) == expected

    def test_symbol_operand(self):
        assert enc("LD", "HL, MESSAGE", {"MESSAGE": 0x4020}) == "212040"

    def test_expression_operand(self):
        assert enc("LD", "HL, SCREEN + 32*2", {"SCREEN": 0x1800}) == "214018"

    def test_store_through_bc_needs_a(self):
        with pytest.raises(AddressingModeError) as exc_info:
            encode_instruction("LD", "(BC), B", {})
        assert "LD (BC), B" in exc_info.value.message

    def test_memory_to_memory(self):
        with pytest.raises(AddressingModeError):
            encode_instruction("LD", "(HL), (HL)", {})

    def test_displacement_range(self):
        with pytest.raises(ExpressionError):
            encode_instruction("LD", "A, (IX+200)", {})


# =============================================================================
# Stack, ALU and Bit Operations
# =============================================================================

class TestStackAndAlu:
    """Tests for PUSH/POP, arithmetic and logic."""

    @pytest.mark.parametrize("mnemonic,operands,expected", [
        ("PUSH", "BC", "c5"),
        ("PUSH", "AF", "f5"),
        ("POP", "HL", "e1"),
        ("POP", "IX", "dde1"),
        ("ADD", "A, B", "80"),
        ("ADD", "A, 5", "c605"),
        ("ADC", "A, (HL)", "8e"),
        ("SUB", "C", "91"),
        ("SBC", "A, $10", "de10"),
        ("AND", "$0F", "e60f"),
        ("XOR", "A", "af"),
        ("OR", "(IX+1)", "ddb601"),
        ("CP", "$20", "fe20"),
        ("ADD", "HL, DE", "19"),
        ("ADC", "HL, BC", "ed4a"),
        ("SBC", "HL, DE", "ed52"),
        ("ADD", "IX, IX", "dd29"),
        ("INC", "A", "3c"),
        ("DEC", "(HL)", "35"),
        ("INC", "HL", "23"),
        ("DEC", "IY", "fd2b"),
    ])
    def test_encoding(self, mnemonic, operands, expected):
        assert enc(mnemonic, operands) == expected

    def test_alu_needs_accumulator(self):
        with pytest.raises(AddressingModeError):
            encode_instruction("ADD", "B, C", {})

    def test_push_8bit_register(self):
        with pytest.raises(AddressingModeError):
            encode_instruction("PUSH", "A", {})


class TestCbGroup:
    """Tests for rotates, shifts and bit instructions."""

    @pytest.mark.parametrize("mnemonic,operands,expected", [
        ("RLC", "B", "cb00"),
        ("SRL", "A", "cb3f"),
        ("SLA", "(HL)", "cb26"),
        ("BIT", "7, A", "cb7f"),
        ("SET", "0, (HL)", "cbc6"),
        ("RES", "1, B", "cb88"),
        ("BIT", "2, (IX+4)", "ddcb0456"),
    ])
    def test_encoding(self, mnemonic, operands, expected):
        assert enc(mnemonic, operands) == expected

    def test_bit_number_range(self):
        with pytest.raises(ExpressionError):
            encode_instruction("BIT", "8, A", {})


# =============================================================================
# Control Transfer
# =============================================================================

class TestControl:
    """Tests for jumps, calls and returns."""

    @pytest.mark.parametrize("mnemonic,operands,expected", [
        ("JP", "$4010", "c31040"),
        ("JP", "NZ, $4010", "c21040"),
        ("JP", "M, $4010", "fa1040"),
        ("JP", "(HL)", "e9"),
        ("JP", "(IX)", "dde9"),
        ("CALL", "CHPUT", "cda200"),
        ("CALL", "Z, $0000", "cc0000"),
        ("RET", "", "c9"),
        ("RET", "NC", "d0"),
        ("RST", "$38", "ff"),
        ("RETI", "", "ed4d"),
    ])
    def test_encoding(self, mnemonic, operands, expected):
        symbols = {"CHPUT": 0x00A2}
        assert enc(mnemonic, operands, symbols) == expected

    def test_jr_backward(self):
        """JR to its own address is a displacement of -2."""
        assert enc("JR", "LOOP", {"LOOP": 0x4010}, address=0x4010) == "18fe"

    def test_jr_conditional_forward(self):
        assert enc("JR", "Z, DONE", {"DONE": 0x4012}, address=0x4000) == "2810"

    def test_djnz(self):
        assert enc("DJNZ", "LOOP", {"LOOP": 0x4000}, address=0x4003) == "10fb"

    def test_relative_without_address(self):
        """The sizing pass sees a zero displacement."""
        assert enc("JR", "LOOP", {"LOOP": 0x4000}) == "1800"

    def test_jr_out_of_range(self):
        with pytest.raises(BranchRangeError) as exc_info:
            encode_instruction("JR", "FAR", {"FAR": 0x4100}, address=0x4000)
        assert exc_info.value.offset == 0xFE

    def test_jr_parity_condition_rejected(self):
        with pytest.raises(AddressingModeError):
            encode_instruction("JR", "PE, LOOP", {"LOOP": 0}, address=0)

    def test_bad_rst_vector(self):
        with pytest.raises(ExpressionError):
            encode_instruction("RST", "$39", {})


# =============================================================================
# Miscellaneous and Implied
# =============================================================================

class TestMisc:
    """Tests for exchanges, I/O and implied opcodes."""

    @pytest.mark.parametrize("mnemonic,operands,expected", [
        ("NOP", "", "00"),
        ("HALT", "", "76"),
        ("DI", "", "f3"),
        ("EXX", "", "d9"),
        ("LDIR", "", "edb0"),
        ("OTIR", "", "edb3"),
        ("NEG", "", "ed44"),
        ("EX", "DE, HL", "eb"),
        ("EX", "AF, AF'", "08"),
        ("EX", "(SP), HL", "e3"),
        ("IM", "1", "ed56"),
        ("OUT", "($98), A", "d398"),
        ("OUT", "(C), B", "ed41"),
        ("IN", "A, ($99)", "db99"),
        ("IN", "E, (C)", "ed58"),
    ])
    def test_encoding(self, mnemonic, operands, expected):
        assert enc(mnemonic, operands) == expected

    def test_implied_rejects_operands(self):
        with pytest.raises(AddressingModeError):
            encode_instruction("NOP", "A", {})


# =============================================================================
# Symbols and Sizing
# =============================================================================

class TestSymbols:
    """Tests for unresolved symbol handling and instruction_size()."""

    def test_undefined_symbol_suggests(self):
        with pytest.raises(UndefinedSymbolError) as exc_info:
            encode_instruction("CALL", "WRTVMR", {"WRTVRM": 0x004D})
        error = exc_info.value
        assert error.symbol == "WRTVMR"
        assert "WRTVRM" in error.similar_symbols
        assert "did you mean" in error.hint

    def test_allow_unresolved(self):
        data = encode_instruction("CALL", "LATER", {}, allow_unresolved=True)
        assert data == bytes([0xCD, 0x00, 0x00])

    def test_fallback_resolver(self):
        data = encode_instruction("CALL", "CHPUT", {}, fallback=lambda name: 0xA2 if name == "CHPUT" else None)
        assert data == bytes([0xCD, 0xA2, 0x00])

    def test_all_errors_share_base(self):
        with pytest.raises(AssemblerError):
            encode_instruction("LD", "(BC), B", {})

    @pytest.mark.parametrize("mnemonic,operands,size", [
        ("NOP", "", 1),
        ("LD", "A, (IX+1)", 3),
        ("LD", "HL, FORWARD", 3),
        ("JR", "FORWARD", 2),
        ("BIT", "0, (IY+0)", 4),
    ])
    def test_instruction_size(self, mnemonic, operands, size):
        assert instruction_size(mnemonic, operands, {}) == size

    def test_instruction_size_unsupported(self):
        assert instruction_size("LD", "(BC), B", {}) is None
