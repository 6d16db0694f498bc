"""
MSX SDK Command-Line Interface
==============================

This package provides command-line tools for the MSX SDK:

- **msxasm**: analyze and assemble Z80 source
- **msxrun**: run a subroutine of a source file in the line simulator

Each tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["msxasm", "msxrun"]
