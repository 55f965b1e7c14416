"""LC-2K virtual machine: source model, loader, CPU and controller."""

from .breakpoints import DataAccess, SourceBreakpoint
from .exceptions import (
    ExceptionKind,
    InvalidInstructionException,
    InvalidMemoryException,
    InvalidRegisterException,
    OutOfRangeException,
    UnresolvedLabelException,
    VMError,
)
from .virtual_machine import StopReason, VirtualMachine, VMException, VMState, create_vm
