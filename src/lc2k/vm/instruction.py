"""LC-2K Instruction Decoding

Matches one source line against the instruction shapes, in order:
arithmetic/branch/memory-op, jump, control, directive.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from .exceptions import InvalidInstructionException


INTEGER_PATTERN = re.compile(r'[-+]?\d+')

NUM_REGISTERS = 8


class InstructionShape(Enum):
    """Instruction formats of the ISA."""
    ARITHMETIC = "arithmetic"
    BRANCH = "branch"
    MEMORY = "memory"
    JUMP = "jump"
    CONTROL = "control"
    DIRECTIVE = "directive"


# opcode -> (shape, operand count), grouped by match precedence
SHAPES: List[List[Tuple[str, InstructionShape, int]]] = [
    [
        ('add', InstructionShape.ARITHMETIC, 3),
        ('nor', InstructionShape.ARITHMETIC, 3),
        ('beq', InstructionShape.BRANCH, 3),
        ('lw', InstructionShape.MEMORY, 3),
        ('sw', InstructionShape.MEMORY, 3),
    ],
    [
        ('jalr', InstructionShape.JUMP, 2),
    ],
    [
        ('halt', InstructionShape.CONTROL, 0),
        ('noop', InstructionShape.CONTROL, 0),
    ],
    [
        ('.fill', InstructionShape.DIRECTIVE, 1),
    ],
]

OPCODES = {opcode: (shape, count) for group in SHAPES for opcode, shape, count in group}


Operand = Union[int, str]


@dataclass
class Instruction:
    """A decoded view of one source line."""
    opcode: str
    shape: InstructionShape
    operands: List[Operand]
    line: int
    label: Optional[str] = None
    comment: str = ""

    def __str__(self) -> str:
        parts = [self.opcode] + [str(op) for op in self.operands]
        return ' '.join(parts)


def parse_integer(token: str) -> Optional[int]:
    """Parse a base-10 literal, or return None for anything else."""
    if INTEGER_PATTERN.fullmatch(token):
        return int(token)
    return None


def parse_operand(token: str) -> Operand:
    """Integer literals become ints, everything else stays a symbol."""
    value = parse_integer(token)
    return token if value is None else value


def split_label(text: str) -> Tuple[Optional[str], List[str]]:
    """Split a line into its label and the remaining tokens.

    An unindented line always starts with its label field.
    """
    tokens = text.split()
    if not tokens or text[0].isspace():
        return None, tokens
    return tokens[0], tokens[1:]


def declared_label(text: str) -> Optional[str]:
    """Return the label a line declares, if any.

    Only unindented lines declare labels, and only when something
    follows the label field.
    """
    if not text or text[0].isspace():
        return None
    match = re.match(r'(\S+)\s', text)
    return match.group(1) if match else None


def decode_line(text: str, line: int) -> Instruction:
    """Decode a source line into an Instruction.

    Args:
        text: Source line
        line: Line number, recorded on the instruction

    Returns:
        Decoded instruction

    Raises:
        InvalidInstructionException: If no shape matches the line
    """
    label, tokens = split_label(text)
    if tokens:
        opcode = tokens[0]
        for group in SHAPES:
            for name, shape, count in group:
                if opcode == name and len(tokens) > count:
                    operands = [parse_operand(tok) for tok in tokens[1:count + 1]]
                    comment = ' '.join(tokens[count + 1:])
                    return Instruction(opcode, shape, operands, line, label, comment)
    raise InvalidInstructionException(text, line)
