"""
MSX SDK - Simulator Configuration
=================================

Iteration ceilings and machine defaults for the line interpreter and the
control-flow drivers. Configuration can come from:
- Default values (defined here)
- Environment variables

The ceilings are the only termination guarantee the drivers have when
user code never returns, so each one is a count of interpreted lines:
- 50,000 lines for a bounded subroutine walk
- 500,000 lines for a full loop replay
- 2,000 lines for a lookahead preview
"""

from dataclasses import dataclass
import logging
import os

logger = logging.getLogger(__name__)


@dataclass
class SimulatorConfig:
    """
    Configuration for simulation runs.

    Attributes:
        max_subroutine_steps: Ceiling for bounded subroutine execution
        max_loop_steps: Ceiling for exhaustive loop replay
        lookahead_steps: Ceiling for bounded lookahead
        initial_stack_pointer: SP value of a fresh machine state
        firmware_limit: Addresses below this are firmware black boxes
        max_repeat_depth: Maximum REPEAT expansion rounds
        max_repeat_count: Largest REPEAT count honoured
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # ITERATION CEILINGS (interpreted lines)
    # ═══════════════════════════════════════════════════════════════════════════

    max_subroutine_steps: int = 50_000
    max_loop_steps: int = 500_000
    lookahead_steps: int = 2_000

    # ═══════════════════════════════════════════════════════════════════════════
    # MACHINE DEFAULTS
    # ═══════════════════════════════════════════════════════════════════════════

    initial_stack_pointer: int = 0xF380  # top of the MSX BIOS work area
    firmware_limit: int = 0x4000  # page 0 holds the BIOS ROM

    # ═══════════════════════════════════════════════════════════════════════════
    # PREPROCESSOR LIMITS
    # ═══════════════════════════════════════════════════════════════════════════

    max_repeat_depth: int = 100
    max_repeat_count: int = 65_536

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "SimulatorConfig":
        """
        Create SimulatorConfig from environment variables.

        Environment variables (all optional, integers in any base Python
        accepts with a prefix, e.g. "0xF380"):
            MSX_SDK_MAX_STEPS: Subroutine walk ceiling
            MSX_SDK_MAX_LOOP_STEPS: Loop replay ceiling
            MSX_SDK_LOOKAHEAD_STEPS: Lookahead ceiling
            MSX_SDK_STACK: Initial stack pointer

        Returns:
            SimulatorConfig with values from environment variables
        """
        config = cls()

        overrides = {
            "MSX_SDK_MAX_STEPS": "max_subroutine_steps",
            "MSX_SDK_MAX_LOOP_STEPS": "max_loop_steps",
            "MSX_SDK_LOOKAHEAD_STEPS": "lookahead_steps",
            "MSX_SDK_STACK": "initial_stack_pointer",
        }
        for variable, attribute in overrides.items():
            if raw := os.environ.get(variable):
                try:
                    value = int(raw, 0)
                except ValueError:
                    logger.warning("Ignoring invalid %s=%r", variable, raw)
                    continue
                if value < 0:
                    logger.warning("Ignoring negative %s=%r", variable, raw)
                    continue
                setattr(config, attribute, value)

        config.initial_stack_pointer &= 0xFFFF
        return config
