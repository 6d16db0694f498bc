"""
Z80 Assembler and Source Analyzer
=================================

Turns Z80 source text into a symbol table, a sparse memory image and an
executable step list.

Main Components
---------------
- **values**: literal and expression resolution ($FF, 0FFh, %1010, 'A')
- **parser**: line decomposition and operand classification
- **preprocessor**: REPEAT/ENDR expansion
- **symbols**: Pass 0, label and constant addresses
- **bugs**: adjacent labels sharing an address
- **encoder**: Z80 instruction encoding
- **image**: Pass 1, memory image and initial variables
- **steps**: Pass 2, executable steps with cycle estimates
- **analyzer**: the whole pipeline

Example Usage
-------------
>>> from msx_sdk.assembler import analyze, encode_instruction
>>> encode_instruction("LD", "A, $10")
b'>\\x10'
>>> result = analyze('''
...         ORG $4000
... START:  LD HL, MESSAGE
...         RET
... MESSAGE_DATA:
... MESSAGE: DB "HI", 0
... ''')
>>> result.bugs
["EMPTY DATA: 'MESSAGE_DATA' has 0 bytes (Line 5). It aliases 'MESSAGE'. Missing DB/DW?"]
"""

from msx_sdk.assembler.analyzer import AnalysisResult, Analyzer, analyze
from msx_sdk.assembler.bugs import BugFinding, BugKind, detect_bugs
from msx_sdk.assembler.encoder import encode_instruction, instruction_size
from msx_sdk.assembler.image import InitialVariable, MemoryImage, build_memory_image
from msx_sdk.assembler.parser import (
    Instruction,
    Operand,
    SourceLine,
    parse_instruction,
    parse_line,
    parse_source,
)
from msx_sdk.assembler.preprocessor import ExpandedSource, expand_repeats
from msx_sdk.assembler.steps import ExecutionStep, StepKind, generate_steps
from msx_sdk.assembler.symbols import Constant, SymbolPass, build_symbol_table
from msx_sdk.assembler.values import format_hex, parse_literal, parse_value, resolve_expression

__all__ = [
    "AnalysisResult",
    "Analyzer",
    "analyze",
    "BugFinding",
    "BugKind",
    "detect_bugs",
    "encode_instruction",
    "instruction_size",
    "InitialVariable",
    "MemoryImage",
    "build_memory_image",
    "Instruction",
    "Operand",
    "SourceLine",
    "parse_instruction",
    "parse_line",
    "parse_source",
    "ExpandedSource",
    "expand_repeats",
    "ExecutionStep",
    "StepKind",
    "generate_steps",
    "Constant",
    "SymbolPass",
    "build_symbol_table",
    "format_hex",
    "parse_literal",
    "parse_value",
    "resolve_expression",
]
