# =============================================================================
# test_steps.py - Step List (Pass 2) and Cycle Estimate Tests
# =============================================================================

import pytest

from msx_sdk.assembler.opcodes import estimate_cycles
from msx_sdk.assembler.parser import parse_instruction, parse_line, parse_source
from msx_sdk.assembler.steps import StepKind, classify, describe, generate_steps
from msx_sdk.emulator import bios


# =============================================================================
# Classification and Descriptions
# =============================================================================

class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize("mnemonic,kind", [
        ("CALL", StepKind.CALL),
        ("RST", StepKind.CALL),
        ("JP", StepKind.JUMP),
        ("JR", StepKind.JUMP),
        ("DJNZ", StepKind.JUMP),
        ("RET", StepKind.RETURN),
        ("RETI", StepKind.RETURN),
        ("LD", StepKind.INSTRUCTION),
        ("MYMACRO", StepKind.INSTRUCTION),
    ])
    def test_kinds(self, mnemonic, kind):
        assert classify(mnemonic) == kind

    def test_str(self):
        assert str(StepKind.RETURN) == "return"


class TestDescribe:
    """Tests for describe()."""

    def test_plain(self):
        assert describe(parse_line("    LD A, $10")) == "LD A, $10"

    def test_condition_spelled_out(self):
        text = describe(parse_line("    JP NZ, LOOP"))
        assert text == "JP if Zero Flag is Clear (NZ, LOOP)"

    def test_conditional_ret(self):
        assert describe(parse_line("    RET C")) == "RET if Carry Flag is Set (C)"

    def test_firmware_call_named(self):
        text = describe(
            parse_line("    CALL CHPUT"),
            {},
            describe_address=bios.describe_address,
            fallback=bios.resolve_name,
        )
        assert text.startswith("CALL CHPUT - CHPUT: Output character")

    def test_user_call_not_named(self):
        text = describe(
            parse_line("    CALL PRINT"),
            {"PRINT": 0x4100},
            describe_address=bios.describe_address,
        )
        assert text == "CALL PRINT"


# =============================================================================
# Step Generation
# =============================================================================

class TestGenerateSteps:
    """Tests for generate_steps()."""

    def test_directives_dropped(self):
        source = (
            "    ORG $4000\n"
            "SCREEN EQU $1800\n"
            "START:\n"
            "    LD A, $10\n"
            "    CALL CHPUT\n"
            "    RET\n"
            "MSG: DB 0\n"
        )
        steps = generate_steps(parse_source(source))
        assert [s.line_number for s in steps] == [4, 5, 6]
        assert [s.id for s in steps] == [1, 2, 3]
        assert [s.kind for s in steps] == [StepKind.INSTRUCTION, StepKind.CALL, StepKind.RETURN]
        assert steps[0].operands == "A, $10"
        assert steps[0].cycles == 7

    def test_macro_call_kept(self):
        steps = generate_steps(parse_source("    PRINT_STRING MSG\n"))
        assert len(steps) == 1
        assert steps[0].mnemonic == "PRINT_STRING"
        assert steps[0].cycles == 0


# =============================================================================
# Cycle Estimates
# =============================================================================

class TestEstimateCycles:
    """Tests for estimate_cycles()."""

    @pytest.mark.parametrize("mnemonic,operands,cycles", [
        ("LD", "A, B", 4),
        ("LD", "A, 5", 7),
        ("LD", "A, (IX+3)", 19),
        ("LD", "HL, $4000", 10),
        ("ADD", "A, B", 4),
        ("ADD", "B", 4),
        ("CP", "(HL)", 7),
        ("PUSH", "BC", 11),
        ("PUSH", "IX", 15),
        ("INC", "HL", 6),
        ("JP", "$4000", 10),
        ("OUT", "($98), A", 11),
        ("CALL", "CHPUT", 17),
        ("DJNZ", "LOOP", 13),
        ("LDIR", "", 21),
        ("NOP", "", 4),
        ("RET", "", 10),
        ("RET", "NZ", 11),
        ("BIT", "7, A", 8),
    ])
    def test_timings(self, mnemonic, operands, cycles):
        assert estimate_cycles(parse_instruction(mnemonic, operands)) == cycles

    def test_unknown_mnemonic(self):
        assert estimate_cycles(parse_instruction("FOO", "")) == 0
