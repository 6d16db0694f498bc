# =============================================================================
# test_flow.py - Control-Flow Driver Tests
# =============================================================================
# Tests for bounded subroutine execution, exhaustive DJNZ loop replay and
# lookahead over analyzed programs.
#
# Test coverage includes:
#   - Nested calls into user code and black-boxed firmware calls
#   - RET with an empty call stack, conditional returns
#   - Jump following, including firmware tail calls
#   - Step ceilings, breakpoints and cancellation
#   - Loop replay with B counting down to zero
# =============================================================================

import pytest

from msx_sdk import analyze
from msx_sdk.config import SimulatorConfig
from msx_sdk.emulator.breakpoints import BreakpointManager
from msx_sdk.emulator.flow import (
    CancellationToken,
    ControlFlowDriver,
    ExecutionStatus,
    execute_loop,
    execute_subroutine,
    simulate_steps_ahead,
)
from msx_sdk.emulator.state import MachineState


def driver_for(source, config=None):
    return ControlFlowDriver.from_analysis(analyze(source), config)


@pytest.fixture
def state():
    return MachineState.initial()


# =============================================================================
# Subroutine Execution
# =============================================================================

class TestExecuteSubroutine:
    """Tests for execute_subroutine()."""

    def test_straight_line_with_ceiling(self, state):
        source = (
            "START:\n"
            "    LD A, $10\n"
            "    LD B, $05\n"
            "    ADD A, B\n"
            "    RET\n"
        )
        result = driver_for(source).execute_subroutine("START", state, max_steps=3)
        assert result.status == ExecutionStatus.STEP_LIMIT_EXCEEDED
        assert result.possible_infinite_loop
        assert result.steps == 3
        assert result.state.registers.a == 0x15
        assert not result.state.flags.c
        assert not result.state.flags.z
        assert result.next_line == 5

    def test_returns(self, state):
        result = driver_for("MAIN: LD A, 1\n      RET\n").execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.steps == 2
        assert result.last_line == 2
        assert result.state.registers.a == 1

    def test_input_state_unchanged(self, state):
        before = state.copy()
        driver_for("MAIN: LD A, 1\n      RET\n").execute_subroutine("MAIN", state)
        assert state == before

    def test_nested_call(self, state):
        source = (
            "    ORG $4000\n"
            "MAIN:\n"
            "    LD A, 1\n"
            "    CALL DOUBLE\n"
            "    INC A\n"
            "    RET\n"
            "DOUBLE:\n"
            "    ADD A, A\n"
            "    RET\n"
        )
        sp = state.registers.sp
        result = driver_for(source).execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.state.registers.a == 3
        assert result.last_line == 6
        # the outermost RET pops a word no CALL pushed
        assert result.state.registers.sp == (sp + 2) & 0xFFFF

    def test_firmware_call_is_black_box(self, state):
        source = (
            "MAIN:\n"
            "    LD HL, $1800\n"
            "    LD A, 'X'\n"
            "    CALL WRTVRM\n"
            "    LD B, 1\n"
            "    RET\n"
        )
        sp = state.registers.sp
        result = driver_for(source).execute_subroutine("MAIN", state, max_steps=4)
        assert result.state.vdp.vram[0x1800] == ord("X")
        assert result.state.registers.b == 1
        assert result.state.registers.sp == sp

    def test_unknown_call_target_continues(self, state):
        result = driver_for("MAIN: CALL $7000\n      LD A, 2\n      RET\n").execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.state.registers.a == 2

    def test_conditional_ret(self, state):
        source = (
            "MAIN:\n"
            "    XOR A\n"
            "    RET NZ\n"
            "    LD A, 5\n"
            "    RET Z\n"
            "    LD A, 9\n"
        )
        result = driver_for(source).execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.state.registers.a == 5

    def test_jump_forward(self, state):
        source = (
            "MAIN: JP SKIP\n"
            "      LD A, 1\n"
            "SKIP: LD B, 2\n"
            "      RET\n"
        )
        result = driver_for(source).execute_subroutine("MAIN", state)
        assert result.state.registers.a == 0
        assert result.state.registers.b == 2

    def test_counted_loop_with_djnz(self, state):
        source = (
            "MAIN:\n"
            "    LD B, 5\n"
            "    LD HL, 0\n"
            "LOOP:\n"
            "    INC HL\n"
            "    DJNZ LOOP\n"
            "    RET\n"
        )
        result = driver_for(source).execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.state.registers.hl == 5
        assert result.state.registers.b == 0

    def test_firmware_tail_call(self, state):
        result = driver_for("MAIN: LD A, 'A'\n      JP CHPUT\n").execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.steps == 2

    def test_firmware_address_shadows_user_code(self, state):
        """Without ORG, user code at $004D must not replace the BIOS routine."""
        source = (
            "MAIN:\n"
            "    LD HL, 0\n"
            "    LD A, $41\n"
            "    CALL $004D\n"
            "    RET\n"
            "    DS 64\n"
            "    NOP\n"
            "    NOP\n"
            "    NOP\n"
            "    NOP\n"
            "USER:\n"
            "    LD B, $99\n"
            "    RET\n"
        )
        driver = driver_for(source)
        assert driver.symbols["USER"] == 0x004D
        result = driver.execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.steps == 4
        assert result.state.vdp.vram[0] == 0x41
        assert result.state.registers.b == 0

    def test_jump_to_reset_is_tail_call(self, state):
        result = driver_for("MAIN: LD A, 1\n      JP $0000\n").execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.RETURNED
        assert result.steps == 2

    def test_infinite_loop_hits_ceiling(self, state):
        config = SimulatorConfig(max_subroutine_steps=100)
        result = driver_for("MAIN: INC A\n      JR MAIN\n", config).execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.STEP_LIMIT_EXCEEDED
        assert result.steps == 100

    def test_start_by_line_number(self, state):
        result = driver_for("    LD A, 1\n    LD A, 2\n    RET\n").execute_subroutine(2, state)
        assert result.state.registers.a == 2

    def test_unknown_start(self, state):
        result = driver_for("MAIN: RET\n").execute_subroutine("NOWHERE", state)
        assert result.status == ExecutionStatus.END_OF_SOURCE
        assert result.steps == 0
        assert result.state == state

    def test_runs_off_end(self, state):
        result = driver_for("MAIN: LD A, 1\n").execute_subroutine("MAIN", state)
        assert result.status == ExecutionStatus.END_OF_SOURCE
        assert result.state.registers.a == 1

    def test_skips_data_lines(self, state):
        source = "MAIN: LD A, 1\n      DB 1, 2\n      LD B, 2\n      RET\n"
        result = driver_for(source).execute_subroutine("MAIN", state)
        assert result.steps == 3

    def test_breakpoint(self, state):
        source = (
            "MAIN:\n"
            "    LD B, 3\n"
            "LOOP:\n"
            "    DEC B\n"
            "    JR NZ, LOOP\n"
            "    RET\n"
        )
        breakpoints = BreakpointManager()
        breakpoints.add(4, "B == 1")
        result = driver_for(source).execute_subroutine(
            "MAIN", state, stop_when=breakpoints.predicate({})
        )
        assert result.status == ExecutionStatus.BREAKPOINT
        assert result.next_line == 4
        assert result.state.registers.b == 1

    def test_stop_when_not_checked_on_first_line(self, state):
        result = driver_for("MAIN: LD A, 1\n      RET\n").execute_subroutine(
            "MAIN", state, stop_when=lambda line, s: line == 1
        )
        assert result.status == ExecutionStatus.RETURNED

    def test_cancellation(self, state):
        token = CancellationToken()
        token.cancel()
        result = driver_for("MAIN: RET\n").execute_subroutine("MAIN", state, cancel=token)
        assert result.status == ExecutionStatus.CANCELLED
        assert token.cancelled


# =============================================================================
# Loop Replay
# =============================================================================

LOOP_SOURCE = (
    "MAIN:\n"           # 1
    "    LD HL, 0\n"    # 2
    "LOOP:\n"           # 3
    "    INC HL\n"      # 4
    "    DJNZ LOOP\n"   # 5
    "    RET\n"         # 6
)


class TestExecuteLoop:
    """Tests for execute_loop()."""

    def test_runs_b_times(self, state):
        state.registers.b = 5
        result = driver_for(LOOP_SOURCE).execute_loop(5, "LOOP", state)
        assert result.status == ExecutionStatus.RUNNING
        assert result.next_line == 6
        assert result.state.registers.hl == 5
        assert result.state.registers.b == 0
        assert result.steps == 10

    def test_zero_count(self, state):
        state.registers.b = 0
        result = driver_for(LOOP_SOURCE).execute_loop(5, "LOOP", state)
        assert result.status == ExecutionStatus.RUNNING
        assert result.steps == 0
        assert result.state.registers.hl == 0

    def test_call_inside_body(self, state):
        source = (
            "LOOP:\n"
            "    CALL BUMP\n"
            "    DJNZ LOOP\n"
            "    RET\n"
            "BUMP:\n"
            "    INC A\n"
            "    RET\n"
        )
        state.registers.b = 4
        result = driver_for(source).execute_loop(3, "LOOP", state)
        assert result.state.registers.a == 4
        assert result.state.registers.sp == state.registers.sp

    def test_firmware_jump_skipped(self, state):
        source = "LOOP:\n    JP CHPUT\n    INC A\n    DJNZ LOOP\n"
        state.registers.b = 3
        result = driver_for(source).execute_loop(4, "LOOP", state)
        assert result.status == ExecutionStatus.RUNNING
        assert result.state.registers.a == 3

    def test_ceiling(self, state):
        state.registers.b = 200
        config = SimulatorConfig(max_loop_steps=50)
        result = driver_for(LOOP_SOURCE, config).execute_loop(5, "LOOP", state)
        assert result.status == ExecutionStatus.STEP_LIMIT_EXCEEDED

    def test_unknown_label(self, state):
        state.registers.b = 2
        result = driver_for(LOOP_SOURCE).execute_loop(5, "NOPE", state)
        assert result.status == ExecutionStatus.END_OF_SOURCE
        assert result.state == state


# =============================================================================
# Lookahead and Functional Interface
# =============================================================================

class TestLookahead:
    """Tests for simulate_steps_ahead() and the module-level functions."""

    def test_lookahead_default_ceiling(self, state):
        config = SimulatorConfig(lookahead_steps=7)
        driver = driver_for("MAIN: INC A\n      JR MAIN\n", config)
        result = driver.simulate_steps_ahead("MAIN", state)
        assert result.status == ExecutionStatus.STEP_LIMIT_EXCEEDED
        assert result.steps == 7

    def test_functions_match_driver(self, state):
        result = analyze(LOOP_SOURCE)
        args = (result.lines, result.labels, result.symbols, result.memory_image)
        state.registers.b = 3

        loop = execute_loop(5, "LOOP", state, *args, line_addresses=result.line_addresses)
        assert loop.state.registers.hl == 3

        walk = execute_subroutine("MAIN", state, *args)
        assert walk.status == ExecutionStatus.RETURNED
        assert walk.state.registers.hl == 3

        ahead = simulate_steps_ahead("MAIN", state, *args, max_steps=2)
        assert ahead.steps == 2
        assert ahead.state.registers.hl == 1

    def test_status_str(self):
        assert str(ExecutionStatus.STEP_LIMIT_EXCEEDED) == "step limit exceeded"
