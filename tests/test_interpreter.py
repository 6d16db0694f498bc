# =============================================================================
# test_interpreter.py - Z80 Line Interpreter Tests
# =============================================================================
# Tests for single-line execution against a machine state.
#
# Test coverage includes:
#   - Loads, exchanges and stack traffic
#   - 8-bit arithmetic flags against a reference model
#   - Rotates, shifts and bit operations
#   - CALL/RET stack effects and BIOS VRAM callbacks
#   - VDP port I/O and block instructions
#   - Immutability of the input state
# =============================================================================

import pytest

from msx_sdk.assembler.image import MemoryImage
from msx_sdk.emulator.interpreter import add8, logic_flags, parity, simulate_line, sub8
from msx_sdk.emulator.state import MachineState


@pytest.fixture
def state():
    return MachineState.initial()


def run(state, *lines, symbols=None, image=None):
    """Execute lines in sequence, returning the final state."""
    for line in lines:
        state = simulate_line(line, state, symbols or {}, image)
    return state


# =============================================================================
# Flag Helpers
# =============================================================================

class TestFlagHelpers:
    """add8/sub8 against a reference signed-arithmetic model."""

    def test_parity(self):
        assert parity(0x00)
        assert not parity(0x01)
        assert parity(0x03)
        assert not parity(0x07)
        assert parity(0xFF)

    def test_add_overflow_all_pairs(self):
        for a in range(256):
            for b in range(256):
                result, flags = add8(a, b)
                signed = (a - 256 if a > 127 else a) + (b - 256 if b > 127 else b)
                assert result == (a + b) & 0xFF
                assert flags.c == (a + b > 0xFF)
                assert flags.pv == (not -128 <= signed <= 127)
                assert flags.z == (result == 0)
                assert flags.s == (result >= 0x80)

    def test_sub_overflow_all_pairs(self):
        for a in range(256):
            for b in range(256):
                result, flags = sub8(a, b)
                signed = (a - 256 if a > 127 else a) - (b - 256 if b > 127 else b)
                assert result == (a - b) & 0xFF
                assert flags.c == (a < b)
                assert flags.pv == (not -128 <= signed <= 127)

    def test_carry_in(self):
        assert add8(0xFF, 0x00, carry=True) == (0x00, add8(0xFF, 0x01)[1])
        result, flags = sub8(0x00, 0x00, carry=True)
        assert result == 0xFF
        assert flags.c

    def test_logic_flags(self):
        flags = logic_flags(0x00)
        assert flags.z and flags.pv and not flags.c


# =============================================================================
# Loads and Stack
# =============================================================================

class TestLoads:
    """Data movement."""

    def test_immediate_and_register(self, state):
        state = run(state, "LD A, $10", "LD B, A", "LD HL, $1234")
        regs = state.registers
        assert (regs.a, regs.b, regs.h, regs.l) == (0x10, 0x10, 0x12, 0x34)

    def test_symbol_operand(self, state):
        state = run(state, "LD HL, SCREEN + 32", symbols={"SCREEN": 0x1800})
        assert state.registers.hl == 0x1820

    def test_store_and_load_memory(self, state):
        state = run(state, "LD A, $42", "LD ($C000), A", "LD A, 0", "LD A, ($C000)")
        assert state.registers.a == 0x42
        assert state.memory.read(0xC000) == 0x42

    def test_indexed(self, state):
        state = run(state, "LD IX, $C000", "LD (IX+3), $99", "LD A, (IX+3)")
        assert state.registers.a == 0x99
        assert state.memory.read(0xC003) == 0x99

    def test_negative_displacement(self, state):
        state = run(state, "LD IY, $C010", "LD (IY-1), 7")
        assert state.memory.read(0xC00F) == 7

    def test_word_store(self, state):
        state = run(state, "LD HL, $BEEF", "LD ($C000), HL", "LD DE, ($C000)")
        assert state.memory.read(0xC000) == 0xEF
        assert state.registers.de == 0xBEEF

    def test_read_falls_through_to_image(self, state):
        image = MemoryImage({0x4020: 0x55})
        state = run(state, "LD A, ($4020)", image=image)
        assert state.registers.a == 0x55

    def test_unresolved_source_leaves_destination(self, state):
        state = run(state, "LD A, 3", "LD A, UNKNOWN")
        assert state.registers.a == 3

    def test_push_pop(self, state):
        sp = state.registers.sp
        state = run(state, "LD BC, $1234", "PUSH BC")
        assert state.registers.sp == sp - 2
        assert state.memory.read_word(sp - 2) == 0x1234
        state = run(state, "POP DE")
        assert state.registers.de == 0x1234
        assert state.registers.sp == sp

    def test_push_pop_af(self, state):
        state = run(state, "LD A, $80", "OR A", "PUSH AF", "POP BC")
        assert state.registers.b == 0x80
        assert state.registers.c & 0x80  # sign flag

    def test_exchanges(self, state):
        state = run(state, "LD DE, 1", "LD HL, 2", "EX DE, HL")
        assert (state.registers.de, state.registers.hl) == (2, 1)
        state = run(state, "EXX")
        assert state.registers.hl == 0
        assert state.registers.get("HL'") == 1

    def test_ex_af(self, state):
        state = run(state, "LD A, 5", "EX AF, AF'", "LD A, 9", "EX AF, AF'")
        assert state.registers.a == 5
        assert state.registers.a_prime == 9

    def test_ld_a_i(self, state):
        state.registers.i = 0
        state = run(state, "LD A, I")
        assert state.flags.z


# =============================================================================
# Arithmetic
# =============================================================================

class TestArithmetic:
    """8- and 16-bit arithmetic through source lines."""

    def test_add(self, state):
        state = run(state, "LD A, $10", "ADD A, 5")
        assert state.registers.a == 0x15

    def test_add_overflow_flag(self, state):
        state = run(state, "LD A, $7F", "ADD A, 1")
        assert state.registers.a == 0x80
        assert state.flags.pv and state.flags.s and not state.flags.c

    def test_sub_to_zero(self, state):
        state = run(state, "LD A, 5", "SUB 5")
        assert state.flags.z and not state.flags.c

    def test_cp_leaves_a(self, state):
        state = run(state, "LD A, 3", "CP 4")
        assert state.registers.a == 3
        assert state.flags.c

    def test_adc_uses_carry(self, state):
        state = run(state, "LD A, $FF", "ADD A, 1", "LD A, 0", "ADC A, 0")
        assert state.registers.a == 1

    def test_logic(self, state):
        state = run(state, "LD A, $F0", "SCF", "AND $0F")
        assert state.registers.a == 0
        assert state.flags.z and not state.flags.c
        state = run(state, "OR $81")
        assert state.registers.a == 0x81
        assert state.flags.pv  # two bits set, even parity
        state = run(state, "XOR A")
        assert state.registers.a == 0 and state.flags.z

    def test_inc_overflow(self, state):
        state = run(state, "LD A, $7F", "INC A")
        assert state.registers.a == 0x80
        assert state.flags.pv

    def test_dec_overflow(self, state):
        state = run(state, "LD B, $80", "DEC B")
        assert state.registers.b == 0x7F
        assert state.flags.pv

    def test_inc_keeps_carry(self, state):
        state = run(state, "SCF", "LD A, $FF", "INC A")
        assert state.registers.a == 0
        assert state.flags.z and state.flags.c

    def test_inc_memory(self, state):
        state = run(state, "LD HL, $C000", "INC (HL)", "INC (HL)")
        assert state.memory.read(0xC000) == 2

    def test_16bit(self, state):
        state = run(state, "LD HL, $FFFF", "LD DE, 2", "ADD HL, DE")
        assert state.registers.hl == 1
        assert state.flags.c
        state = run(state, "SBC HL, DE")
        assert state.registers.hl == 0xFFFE

    def test_inc_pair_wraps(self, state):
        state = run(state, "LD BC, $FFFF", "INC BC")
        assert state.registers.bc == 0

    def test_cpl_neg(self, state):
        state = run(state, "LD A, 1", "NEG")
        assert state.registers.a == 0xFF
        state = run(state, "CPL")
        assert state.registers.a == 0

    def test_ccf(self, state):
        state = run(state, "SCF", "CCF")
        assert not state.flags.c


# =============================================================================
# Rotates, Shifts and Bits
# =============================================================================

class TestBits:
    """Rotate, shift and bit operations."""

    @pytest.mark.parametrize("seed", range(256))
    def test_rlca_eight_times_is_identity(self, state, seed):
        state = run(state, f"LD A, {seed}", *["RLCA"] * 8)
        assert state.registers.a == seed
        # the last bit rotated out is bit 0 of the seed
        assert state.flags.c == bool(seed & 1)
        state = run(state, *["RLCA"] * 8)
        assert state.registers.a == seed
        assert state.flags.c == bool(seed & 1)

    def test_rlca_carry(self, state):
        state = run(state, "LD A, $81", "RLCA")
        assert state.registers.a == 0x03
        assert state.flags.c

    def test_rra_through_carry(self, state):
        state = run(state, "SCF", "LD A, 0", "RRA")
        assert state.registers.a == 0x80
        assert not state.flags.c

    def test_srl_sla_sra(self, state):
        state = run(state, "LD B, $81", "SRL B")
        assert state.registers.b == 0x40 and state.flags.c
        state = run(state, "SLA B")
        assert state.registers.b == 0x80 and not state.flags.c
        state = run(state, "SRA B")
        assert state.registers.b == 0xC0

    def test_bit(self, state):
        state = run(state, "LD A, $80", "BIT 7, A")
        assert not state.flags.z
        state = run(state, "BIT 0, A")
        assert state.flags.z

    def test_set_res(self, state):
        state = run(state, "LD HL, $C000", "SET 3, (HL)", "SET 0, (HL)", "RES 3, (HL)")
        assert state.memory.read(0xC000) == 0x01

    def test_rld(self, state):
        state = run(state, "LD HL, $C000", "LD (HL), $34", "LD A, $12", "RLD")
        assert state.registers.a == 0x13
        assert state.memory.read(0xC000) == 0x42


# =============================================================================
# Calls and Returns
# =============================================================================

class TestCalls:
    """CALL/RET stack effects and firmware callbacks."""

    def test_call_pushes_return(self, state):
        sp = state.registers.sp
        state = simulate_line("CALL $4100", state, {}, address=0x4010)
        assert state.registers.pc == 0x4100
        assert state.registers.sp == sp - 2
        assert state.memory.read_word(sp - 2) == 0x4013

    def test_ret_pops(self, state):
        state = simulate_line("CALL $4100", state, {}, address=0x4010)
        state = simulate_line("RET", state, {})
        assert state.registers.pc == 0x4013

    def test_conditional_call_not_taken(self, state):
        sp = state.registers.sp
        state = run(state, "XOR A", "CALL NZ, $4100")
        assert state.registers.sp == sp

    def test_conditional_ret_not_taken(self, state):
        sp = state.registers.sp
        state = run(state, "LD A, 1", "OR A", "RET Z")
        assert state.registers.sp == sp

    def test_rst(self, state):
        state = simulate_line("RST $38", state, {}, address=0x4000)
        assert state.registers.pc == 0x38
        assert state.memory.read_word(state.registers.sp) == 0x4001

    def test_wrtvrm(self, state):
        state = run(state, "LD HL, 0", "LD A, $41", "CALL $004D")
        assert state.vdp.vram[0] == 0x41

    def test_wrtvrm_by_name(self, state):
        state = run(state, "LD HL, $1800", "LD A, 7", "CALL WRTVRM")
        assert state.vdp.vram[0x1800] == 7

    def test_filvrm(self, state):
        state = run(state, "LD HL, $100", "LD BC, 4", "LD A, $FF", "CALL FILVRM")
        assert state.vdp.vram[0x100:0x104] == b"\xff" * 4
        assert state.vdp.vram[0x104] == 0

    def test_ldirvm(self, state):
        image = MemoryImage({0x4100: 1, 0x4101: 2, 0x4102: 3})
        state = run(
            state, "LD HL, $4100", "LD DE, $0800", "LD BC, 3", "CALL LDIRVM",
            image=image,
        )
        assert bytes(state.vdp.vram[0x800:0x803]) == b"\x01\x02\x03"

    def test_jp_sets_pc(self, state):
        state = run(state, "JP $4321")
        assert state.registers.pc == 0x4321
        state = run(state, "LD HL, $5000", "JP (HL)")
        assert state.registers.pc == 0x5000

    def test_djnz_decrements_only(self, state):
        state = run(state, "LD B, 1", "DJNZ $4000")
        assert state.registers.b == 0


# =============================================================================
# VDP Ports and Block Instructions
# =============================================================================

class TestIo:
    """OUT/IN and block transfers."""

    def test_set_address_and_write(self, state):
        state = run(
            state,
            "LD A, $00", "OUT ($99), A",
            "LD A, $58", "OUT ($99), A",  # $1800 with the write bit
            "LD A, $41", "OUT ($98), A",
            "OUT ($98), A",
        )
        assert state.vdp.vram[0x1800] == 0x41
        assert state.vdp.vram[0x1801] == 0x41
        assert state.vdp.address_register == 0x1802

    def test_register_write_ignored(self, state):
        state = run(state, "LD A, 1", "OUT ($99), A", "LD A, $87", "OUT ($99), A")
        assert state.vdp.address_register == 0
        assert not state.vdp.write_latch

    def test_in_data(self, state):
        state.vdp.vram[0] = 0x5A
        state = run(state, "IN A, ($98)")
        assert state.registers.a == 0x5A

    def test_out_via_c(self, state):
        state = run(state, "LD C, $98", "LD A, 3", "OUT (C), A")
        assert state.vdp.vram[0] == 3

    def test_ldir(self, state):
        image = MemoryImage({0x4100: 9, 0x4101: 8})
        state = run(state, "LD HL, $4100", "LD DE, $C000", "LD BC, 2", "LDIR", image=image)
        assert state.memory.read(0xC000) == 9
        assert state.memory.read(0xC001) == 8
        assert state.registers.bc == 0
        assert state.registers.hl == 0x4102

    def test_otir(self, state):
        image = MemoryImage({0x4100: 1, 0x4101: 2})
        state = run(state, "LD HL, $4100", "LD BC, $0298", "OTIR", image=image)
        assert bytes(state.vdp.vram[0:2]) == b"\x01\x02"
        assert state.registers.b == 0

    def test_cpir_finds_byte(self, state):
        image = MemoryImage({0x4100: 1, 0x4101: 2, 0x4102: 3})
        state = run(state, "LD HL, $4100", "LD BC, 3", "LD A, 2", "CPIR", image=image)
        assert state.flags.z
        assert state.registers.hl == 0x4102
        assert state.registers.bc == 1


# =============================================================================
# State Handling
# =============================================================================

class TestStateHandling:
    """The interpreter never mutates its input."""

    def test_input_unchanged(self, state):
        before = state.copy()
        after = run(state, "LD A, 9", "LD ($C000), A", "LD A, 1", "OUT ($98), A")
        assert state == before
        assert after != before

    def test_directive_and_label_lines(self, state):
        for line in ("", "; comment", "LOOP:", "    DB 1, 2", "X EQU 5"):
            result = simulate_line(line, state, {})
            assert result == state
            assert result is not state

    def test_label_is_stripped(self, state):
        state = run(state, "START: LD A, 7 ; comment")
        assert state.registers.a == 7

    def test_macro_call_is_skipped(self, state):
        after = run(state, "PRINT_STRING MSG")
        assert after == state

    def test_unaddressable_operand_skipped(self, state):
        after = run(state, "LD A, 5", "LD A, (C)")
        assert after.registers.a == 5
