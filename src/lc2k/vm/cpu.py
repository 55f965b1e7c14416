"""LC-2K Virtual Machine CPU

Executes decoded instructions against the registers and memory.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import (
    InvalidInstructionException,
    InvalidMemoryException,
    InvalidRegisterException,
    VMError,
)
from .instruction import NUM_REGISTERS, Instruction, Operand
from .memory import Memory, to_int32


class CPUState(Enum):
    """CPU execution states."""
    READY = "ready"
    HALTED = "halted"
    ERROR = "error"


Location = Tuple[str, int]


@dataclass
class Access:
    """One register or memory access made by an instruction."""
    location: Location
    access: str  # 'read' or 'write'


class CPU:
    """LC-2K CPU with eight 32-bit registers."""

    def __init__(self, memory: Memory, num_registers: int = NUM_REGISTERS):
        """Initialize CPU.

        Args:
            memory: Memory the program was loaded into
            num_registers: Number of general-purpose registers
        """
        self.memory = memory
        self.registers = [0] * num_registers

        self.state = CPUState.READY
        self.halt_reason: Optional[str] = None

        # Execution statistics
        self.instruction_count = 0

        # Accesses made by the last executed instruction
        self.accesses: List[Access] = []

        # Instruction set
        self.instruction_handlers: Dict[str, Callable[[Instruction], Optional[int]]] = {
            'add': self._exec_add,
            'nor': self._exec_nor,
            'beq': self._exec_beq,
            'lw': self._exec_lw,
            'sw': self._exec_sw,
            'jalr': self._exec_jalr,
            'halt': self._exec_halt,
            'noop': self._exec_noop,
            '.fill': self._exec_noop,
        }

    def reset(self) -> None:
        """Reset CPU to initial state."""
        self.registers = [0] * len(self.registers)
        self.state = CPUState.READY
        self.halt_reason = None
        self.instruction_count = 0
        self.accesses = []

    def get_register(self, reg_id: int) -> int:
        if 0 <= reg_id < len(self.registers):
            return self.registers[reg_id]
        raise InvalidRegisterException(reg_id)

    def set_register(self, reg_id: int, value: int) -> None:
        if 0 <= reg_id < len(self.registers):
            self.registers[reg_id] = to_int32(value)
        else:
            raise InvalidRegisterException(reg_id)

    def execute(self, instruction: Instruction) -> Optional[int]:
        """Execute one instruction.

        Args:
            instruction: Decoded instruction of the current line

        Returns:
            The line to transfer control to, or None to fall through

        Raises:
            VMError: If the instruction fails; no state has changed
        """
        self.accesses = []
        handler = self.instruction_handlers.get(instruction.opcode)
        try:
            if handler is None:
                raise InvalidInstructionException(instruction.opcode, instruction.line)
            target = handler(instruction)
        except VMError as e:
            if e.line is None:
                e.line = instruction.line
            self.state = CPUState.ERROR
            self.halt_reason = str(e)
            raise

        self.instruction_count += 1
        return target

    # Operand helpers

    def _register(self, operand: Operand) -> int:
        """Validate a register operand and return its index."""
        if isinstance(operand, int) and 0 <= operand < len(self.registers):
            return operand
        raise InvalidRegisterException(operand)

    def _read(self, reg_id: int) -> int:
        self.accesses.append(Access(('reg', reg_id), 'read'))
        return self.registers[reg_id]

    def _write(self, reg_id: int, value: int) -> None:
        self.registers[reg_id] = to_int32(value)
        self.accesses.append(Access(('reg', reg_id), 'write'))

    def _resolve_operand(self, operand: Operand) -> int:
        """Numeric operands are used as-is, labels resolve to their line."""
        if isinstance(operand, int):
            return operand
        return self.memory.resolve_label(operand)

    def _check_target(self, target: int) -> int:
        # Targets past the last line end the program
        if target < 0:
            raise InvalidMemoryException(target, "control transfer before program start")
        return target

    # Instruction implementations

    def _exec_add(self, instr: Instruction) -> None:
        """add A B D - D = A + B"""
        r1, r2, dst = (self._register(op) for op in instr.operands)
        self._write(dst, self._read(r1) + self._read(r2))

    def _exec_nor(self, instr: Instruction) -> None:
        """nor A B D - D = ~(A | B)"""
        r1, r2, dst = (self._register(op) for op in instr.operands)
        self._write(dst, ~(self._read(r1) | self._read(r2)))

    def _exec_beq(self, instr: Instruction) -> Optional[int]:
        """beq A B T - go to line T if A == B"""
        r1 = self._register(instr.operands[0])
        r2 = self._register(instr.operands[1])
        target = self._resolve_operand(instr.operands[2])
        if self._read(r1) == self._read(r2):
            return self._check_target(target)
        return None

    def _exec_lw(self, instr: Instruction) -> None:
        """lw A B O - B = mem[A + O]"""
        base = self._register(instr.operands[0])
        dst = self._register(instr.operands[1])
        address = self._read(base) + self._resolve_operand(instr.operands[2])
        value = self.memory.read(address)
        self.accesses.append(Access(('mem', address), 'read'))
        self._write(dst, value)

    def _exec_sw(self, instr: Instruction) -> None:
        """sw A B O - mem[A + O] = B"""
        base = self._register(instr.operands[0])
        src = self._register(instr.operands[1])
        address = self._read(base) + self._resolve_operand(instr.operands[2])
        value = self._read(src)
        self.memory.write(address, value)
        self.accesses.append(Access(('mem', address), 'write'))

    def _exec_jalr(self, instr: Instruction) -> int:
        """jalr A B - B = line + 1, then go to line A"""
        r1 = self._register(instr.operands[0])
        r2 = self._register(instr.operands[1])
        return_address = instr.line + 1
        # The link is written before the target is read
        target = return_address if r1 == r2 else self.registers[r1]
        self._check_target(target)
        self._write(r2, return_address)
        self._read(r1)
        return target

    def _exec_halt(self, instr: Instruction) -> None:
        self.state = CPUState.HALTED
        self.halt_reason = "HALT instruction executed"

    def _exec_noop(self, instr: Instruction) -> None:
        pass

    def get_state(self) -> Dict[str, Any]:
        """Get CPU state for debugging."""
        return {
            'registers': self.registers.copy(),
            'state': self.state.value,
            'halt_reason': self.halt_reason,
            'instruction_count': self.instruction_count
        }
