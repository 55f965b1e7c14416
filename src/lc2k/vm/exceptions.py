"""LC-2K Virtual Machine Exceptions

Structured run-time and load-time failures raised by the loader and CPU.
"""

from enum import Enum
from typing import Optional


class ExceptionKind(Enum):
    """Kinds of failure the engine can report."""
    UNRESOLVED_LABEL = "UnresolvedLabel"
    INVALID_INSTRUCTION = "InvalidInstruction"
    INVALID_REGISTER = "InvalidRegister"
    INVALID_MEMORY = "InvalidMemory"
    OUT_OF_RANGE = "OutOfRange"


class VMError(Exception):
    """Base class for every structured engine failure.

    Attributes:
        kind: Which failure this is
        line: Source line the failure was raised on, if known
    """
    kind: ExceptionKind

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.line = line


class UnresolvedLabelException(VMError):
    """A directive or operand references an undeclared label."""
    kind = ExceptionKind.UNRESOLVED_LABEL

    def __init__(self, label: str, line: Optional[int] = None):
        super().__init__(f"Label {label} not found", line)
        self.label = label


class InvalidInstructionException(VMError):
    """A line matches no recognized instruction shape."""
    kind = ExceptionKind.INVALID_INSTRUCTION

    def __init__(self, text: str, line: Optional[int] = None):
        super().__init__(f"Invalid instruction: {text.strip()!r}", line)
        self.text = text


class InvalidRegisterException(VMError):
    """A register operand is not an index in [0, 7]."""
    kind = ExceptionKind.INVALID_REGISTER

    def __init__(self, register, line: Optional[int] = None):
        super().__init__(f"Invalid register: {register}", line)
        self.register = register


class InvalidMemoryException(VMError):
    """An address is out of range, or an undefined cell was read."""
    kind = ExceptionKind.INVALID_MEMORY

    def __init__(self, address: int, reason: str = "out of bounds",
                 line: Optional[int] = None):
        super().__init__(f"Invalid memory access at {address}: {reason}", line)
        self.address = address
        self.reason = reason


class OutOfRangeException(VMError):
    """A source line index outside the program."""
    kind = ExceptionKind.OUT_OF_RANGE

    def __init__(self, index: int, line_count: int):
        super().__init__(f"Line {index} outside program of {line_count} lines", index)
        self.index = index
