"""LC-2K Virtual Machine

Owns the program counter and the breakpoint tables, drives the CPU line by
line and reports every stop through named events.
"""

import argparse
import logging
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .assembly_loader import LoadedProgram, load_assembly_file, load_assembly_string
from .breakpoints import (
    BreakpointMarkers,
    BreakpointTable,
    DataAccess,
    SourceBreakpoint,
    normalize_path,
)
from .cpu import CPU, CPUState, Location
from .events import (
    BREAKPOINT_VERIFIED,
    END,
    OUTPUT,
    STOP_ON_BREAKPOINT,
    STOP_ON_DATA_BREAKPOINT,
    STOP_ON_ENTRY,
    STOP_ON_EXCEPTION,
    STOP_ON_INSTRUCTION_BREAKPOINT,
    STOP_ON_PAUSE,
    STOP_ON_STEP,
    EventEmitter,
)
from .exceptions import UnresolvedLabelException, VMError
from .instruction import NUM_REGISTERS, decode_line
from .memory import Memory
from .source import SourceProgram


logger = logging.getLogger(__name__)

DEFAULT_MEMORY_WINDOW = 256


class VMException(Exception):
    """Base exception for virtual machine errors."""
    pass


class VMState(Enum):
    """Controller states."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATED = "terminated"


class StopReason(Enum):
    """Why a stopped VM stopped."""
    ENTRY = "entry"
    STEP = "step"
    BREAKPOINT = "breakpoint"
    INSTRUCTION_BREAKPOINT = "instruction breakpoint"
    DATA_BREAKPOINT = "data breakpoint"
    EXCEPTION = "exception"
    PAUSE = "pause"


STEP_EVENTS = {
    STOP_ON_ENTRY: StopReason.ENTRY,
    STOP_ON_STEP: StopReason.STEP,
}


@dataclass
class StackFrame:
    """The frame shown for the current line."""
    index: int
    name: str
    file: Optional[str]
    line: int
    column: Optional[int] = None
    instruction: Optional[int] = None


@dataclass
class DisassembledInstruction:
    address: int
    instruction: str
    line: Optional[int] = None


class VirtualMachine:
    """LC-2K execution and breakpoint controller."""

    def __init__(self,
                 memory_window: int = DEFAULT_MEMORY_WINDOW,
                 markers: Optional[BreakpointMarkers] = None,
                 scheduler: Optional[Callable] = None):
        """Initialize virtual machine.

        Args:
            memory_window: Number of cells returned by get_memory
            markers: Breakpoint verification markers
            scheduler: Event delivery scheduler, see EventEmitter
        """
        self.program: Optional[SourceProgram] = None
        self.labels: Dict[str, int] = {}
        self.memory = Memory()
        self.cpu = CPU(self.memory)
        self.breakpoints = BreakpointTable(markers)
        self.events = EventEmitter(scheduler)
        self.memory_window = memory_window

        # VM state
        self.state = VMState.IDLE
        self.stop_reason: Optional[StopReason] = None
        self.exception: Optional[VMError] = None
        self.debug = True

        # Program counter and sub-line instruction pointer
        self._current_line = 0
        self.instruction = 0
        self._next_line: Optional[int] = None
        self._resume_instruction: Optional[int] = None
        # A data stop leaves the PC on a line whose breakpoints are still unchecked
        self._check_resume_line = False
        self._source_text: Optional[str] = None

    @property
    def current_line(self) -> int:
        return self._current_line

    @current_line.setter
    def current_line(self, line: int) -> None:
        self._current_line = line
        self._resume_instruction = None
        if self.program and 0 <= line < self.program.line_count():
            self.instruction = self.program.instruction_starts[line]

    @property
    def source_file(self) -> Optional[str]:
        return self.program.path if self.program else None

    # Loading

    def load(self, path: str) -> None:
        """Load a program from an assembly file.

        Loading the path that is already loaded does nothing.

        Raises:
            VMException: If the file cannot be read
            UnresolvedLabelException: If a .fill references an unknown label
        """
        if self._is_loaded_path(path):
            return
        try:
            loaded = self._checked_load(load_assembly_file, path)
        except OSError as e:
            raise VMException(f"Failed to load program '{path}': {e}") from e
        finally:
            self.events.dispatch()
        self._install(loaded)

    def load_string(self, assembly_code: str, path: Optional[str] = None) -> None:
        """Load a program from assembly text.

        Raises:
            UnresolvedLabelException: If a .fill references an unknown label
        """
        try:
            loaded = self._checked_load(load_assembly_string, assembly_code, path)
        finally:
            self.events.dispatch()
        self._install(loaded)

    def _checked_load(self, loader: Callable[..., LoadedProgram], *args) -> LoadedProgram:
        try:
            return loader(*args)
        except UnresolvedLabelException as e:
            # The program is unusable until corrected
            self.program = None
            self._source_text = None
            self.state = VMState.TERMINATED
            self.events.emit(OUTPUT, str(e), 'stderr')
            raise

    def _install(self, loaded: LoadedProgram) -> None:
        self.program = loaded.source
        self.labels = loaded.labels
        self.memory = loaded.memory
        self._source_text = '\n'.join(loaded.source.lines)
        self.cpu.memory = self.memory
        self.cpu.reset()
        self.state = VMState.IDLE
        self.stop_reason = None
        self.exception = None
        self._next_line = None
        self._check_resume_line = False
        self.current_line = 0

    def reset(self) -> None:
        """Reload the current program, restoring registers and memory."""
        if self._source_text is None:
            return
        self.load_string(self._source_text, self.source_file)

    def _is_loaded_path(self, path: Optional[str]) -> bool:
        return (path is not None and self.source_file is not None
                and normalize_path(path) == normalize_path(self.source_file))

    # Execution control

    def start(self, program: str, stop_on_entry: bool = False, debug: bool = True) -> None:
        """Load a program and begin executing it.

        Args:
            program: Path to the assembly file
            stop_on_entry: Stop before the first statement
            debug: Honour breakpoints; without it the program just runs
        """
        self.load(program)
        if self.state is VMState.TERMINATED:
            self.reset()
        self.debug = debug
        if debug:
            self._verify_breakpoints(program)
            if stop_on_entry:
                self.state = VMState.RUNNING
                self._find_next_statement(STOP_ON_ENTRY)
                self.events.dispatch()
                return
        self.continue_execution()

    def continue_execution(self, max_cycles: Optional[int] = None) -> None:
        """Run until a breakpoint, an exception or the end of the program.

        Args:
            max_cycles: Stop with a pause after this many lines (None for
                unlimited)
        """
        if self._can_run():
            self._run(max_cycles)
        self.events.dispatch()

    def step(self, instruction: bool = False) -> None:
        """Execute one line, or advance one instruction unit.

        Args:
            instruction: Step by instruction unit instead of by line
        """
        if self._can_run() and not self._enter():
            if instruction:
                self.instruction += 1
                self._stop(StopReason.STEP, STOP_ON_STEP)
            elif not self._execute_line(self.current_line):
                if not self._advance():
                    self._find_next_statement(STOP_ON_STEP)
        self.events.dispatch()

    def _enter(self) -> bool:
        """Move to the first statement when starting from idle.

        After a data breakpoint the current line is checked for source
        breakpoints before it runs.

        Returns:
            True if a breakpoint on that statement (or an empty program)
            stopped execution
        """
        check = self.state is VMState.IDLE or self._check_resume_line
        self._check_resume_line = False
        self.state = VMState.RUNNING
        return check and self._find_next_statement()

    def _can_run(self) -> bool:
        if self.program is None:
            logger.warning("No program loaded")
            return False
        if self.state is VMState.TERMINATED:
            logger.warning("Program has terminated")
            return False
        return True

    def _run(self, max_cycles: Optional[int]) -> None:
        if self._enter():
            return
        cycles = 0
        while not self._execute_line(self.current_line):
            cycles += 1
            if self._advance():
                break
            if self._find_next_statement():
                break
            if max_cycles is not None and cycles >= max_cycles:
                self._stop(StopReason.PAUSE, STOP_ON_PAUSE)
                break

    def _execute_line(self, line: int) -> bool:
        """Execute the given line.

        Returns:
            True if execution stopped and an event was emitted
        """
        program = self.program

        # Consume the line's instruction units, honouring instruction breakpoints
        while self.instruction < program.instruction_ends[line]:
            address = self.instruction
            if (self.debug and address in self.breakpoints.instructions
                    and address != self._resume_instruction):
                self._resume_instruction = address
                self._stop(StopReason.INSTRUCTION_BREAKPOINT, STOP_ON_INSTRUCTION_BREAKPOINT)
                return True
            self._resume_instruction = None
            self.instruction += 1

        try:
            instruction = decode_line(program.line_at(line), line)
            logger.debug("line %d: %s", line, instruction)
            self._next_line = self.cpu.execute(instruction)
        except VMError as e:
            self.instruction = program.instruction_starts[line]
            self.exception = e
            self._stop(StopReason.EXCEPTION, STOP_ON_EXCEPTION,
                       e.kind, line if e.line is None else e.line)
            return True

        if self.cpu.state is CPUState.HALTED:
            self._halt()
            return True

        access = self._data_breakpoint_hit()
        if access is not None:
            if self._advance() or self._skip_blank_lines():
                return True
            self._check_resume_line = True
            self._stop(StopReason.DATA_BREAKPOINT, STOP_ON_DATA_BREAKPOINT, access)
            return True

        return False

    def _advance(self) -> bool:
        """Move past the executed line, to a jump target if one was taken.

        Returns:
            True if this ran past the end of the program
        """
        target, self._next_line = self._next_line, None
        next_line = self.current_line + 1 if target is None else target
        if next_line >= self.program.line_count():
            self._terminate()
            return True
        self.current_line = next_line
        return False

    def _find_next_statement(self, step_event: Optional[str] = None) -> bool:
        """Move to the next non-blank line, stopping at source breakpoints.

        Args:
            step_event: Event to emit when no breakpoint stops first

        Returns:
            True if execution stopped
        """
        program = self.program
        for line in range(self.current_line, program.line_count()):
            if self.debug:
                bps = self.breakpoints.at_line(program.path, line)
                if bps:
                    self.current_line = line
                    self._stop(StopReason.BREAKPOINT, STOP_ON_BREAKPOINT)
                    if not bps[0].verified:
                        bps[0].verified = True
                        self.events.emit(BREAKPOINT_VERIFIED, bps[0])
                    return True
            if not program.is_blank(line):
                self.current_line = line
                break
        else:
            self._terminate()
            return True

        if step_event:
            self._stop(STEP_EVENTS[step_event], step_event)
            return True
        return False

    def _skip_blank_lines(self) -> bool:
        for line in range(self.current_line, self.program.line_count()):
            if not self.program.is_blank(line):
                self.current_line = line
                return False
        self._terminate()
        return True

    def _stop(self, reason: StopReason, event: str, *args: Any) -> None:
        self.state = VMState.STOPPED
        self.stop_reason = reason
        self.events.emit(event, *args)

    def _halt(self) -> None:
        for name, value in self.get_registers():
            self.events.emit(OUTPUT, f"{name}: {value}", 'console')
        self._terminate()

    def _terminate(self) -> None:
        self.state = VMState.TERMINATED
        self.stop_reason = None
        self.events.emit(END)

    # Breakpoints

    def set_source_breakpoint(self, path: str, line: int) -> SourceBreakpoint:
        """Set a breakpoint in file with given line."""
        bp = self.breakpoints.add_source(path, line)
        if self._is_loaded_path(path):
            self._verify(bp)
        self.events.dispatch()
        return bp

    def clear_source_breakpoint(self, path: str, line: int) -> Optional[SourceBreakpoint]:
        return self.breakpoints.remove_source(path, line)

    def clear_all_source_breakpoints(self, path: str) -> None:
        self.breakpoints.clear_source(path)

    def _verify_breakpoints(self, path: str) -> None:
        for bp in self.breakpoints.source_for(path):
            self._verify(bp)

    def _verify(self, bp: SourceBreakpoint) -> None:
        if self.breakpoints.verify(bp, self.program):
            self.events.emit(BREAKPOINT_VERIFIED, bp)

    def set_instruction_breakpoint(self, address: int) -> bool:
        return self.breakpoints.add_instruction(address)

    def clear_all_instruction_breakpoints(self) -> None:
        self.breakpoints.clear_instructions()

    def set_data_breakpoint(self, name: str, mode: Union[DataAccess, str] = DataAccess.WRITE) -> bool:
        """Watch a register (reg N), a memory cell (mem N) or a labelled cell.

        Returns:
            False if the name does not denote a watchable location
        """
        if not isinstance(mode, DataAccess):
            mode = DataAccess(mode)
        if self._data_location(name) is None:
            return False
        self.breakpoints.add_data(name, mode)
        return True

    def clear_all_data_breakpoints(self) -> None:
        self.breakpoints.clear_data()

    def _data_location(self, name: str) -> Optional[Location]:
        match = re.fullmatch(r'(reg|mem)\s*(\d+)', name.strip())
        if match:
            kind, index = match.group(1), int(match.group(2))
            if kind == 'reg':
                return ('reg', index) if index < NUM_REGISTERS else None
            return ('mem', index) if self.memory.contains(index) else None
        if name in self.labels:
            return ('mem', self.labels[name])
        return None

    def _data_breakpoint_hit(self) -> Optional[str]:
        """Return the first access of the last line that a watch matches."""
        if not self.debug or not self.breakpoints.data:
            return None
        watches = {}
        for name, mode in self.breakpoints.data.items():
            location = self._data_location(name)
            if location is not None:
                watches[location] = mode
        for access in self.cpu.accesses:
            mode = watches.get(access.location)
            if mode is not None and mode.matches(access.access):
                return access.access
        return None

    # Inspection

    def get_registers(self) -> List[Tuple[str, int]]:
        return [(f"reg {i}", value) for i, value in enumerate(self.cpu.registers)]

    def get_register(self, reg_id: int) -> int:
        """Get CPU register value."""
        return self.cpu.get_register(reg_id)

    def set_register(self, reg_id: int, value: int) -> None:
        """Set CPU register value."""
        self.cpu.set_register(reg_id, value)

    def get_memory(self, start: int = 0, count: Optional[int] = None) -> List[Tuple[int, int]]:
        """Defined memory cells within a window, as (address, value) pairs."""
        return self.memory.dump(start, self.memory_window if count is None else count)

    def get_breakpoint_columns(self, path: str, line: int) -> List[int]:
        """Possible column breakpoint positions for the given line."""
        if not self._is_loaded_path(path) or not 0 <= line < self.program.line_count():
            return []
        return self.program.breakpoint_columns(line)

    def stack(self) -> List[StackFrame]:
        """The single frame of the current line."""
        if self.program is None:
            return []
        line = self.current_line
        name = 'end'
        if 0 <= line < self.program.line_count():
            name = self.program.line_at(line).strip() or 'blank'
            try:
                instruction = decode_line(self.program.line_at(line), line)
                name = instruction.label or instruction.opcode
            except VMError:
                pass
        return [StackFrame(0, name, self.source_file, line, instruction=self.instruction)]

    def disassemble(self, address: int, instruction_count: int) -> List[DisassembledInstruction]:
        """Return the words of the given address range as instructions."""
        result = []
        for a in range(address, address + instruction_count):
            word = self.program.instruction_at(a) if self.program else None
            if word is not None:
                result.append(DisassembledInstruction(a, word.name, word.line))
            else:
                result.append(DisassembledInstruction(a, 'noop'))
        return result

    def get_state(self) -> Dict[str, Any]:
        """Get complete VM state for debugging."""
        return {
            'vm': {
                'state': self.state.value,
                'stop_reason': self.stop_reason.value if self.stop_reason else None,
                'line': self.current_line,
                'instruction': self.instruction,
                'program': self.source_file,
                'exception': str(self.exception) if self.exception else None,
            },
            'cpu': self.cpu.get_state(),
            'memory': self.memory.get_memory_map()
        }


def create_vm(config: Optional[Dict[str, Any]] = None) -> VirtualMachine:
    """Create a virtual machine with optional configuration.

    Args:
        config: Optional configuration dictionary

    Returns:
        Configured VirtualMachine instance
    """
    if config is None:
        config = {}

    markers = BreakpointMarkers(
        continuation=config.get('continuation_marker', '+'),
        predecessor=config.get('predecessor_marker', '-'),
        lazy=config.get('lazy_marker', 'lazy')
    )
    return VirtualMachine(
        memory_window=config.get('memory_window', DEFAULT_MEMORY_WINDOW),
        markers=markers,
        scheduler=config.get('scheduler')
    )


def main() -> int:
    """Main entry point for VM when run as script."""
    parser = argparse.ArgumentParser(description='LC-2K Virtual Machine')
    parser.add_argument('--file', '-f', type=str, required=True, help='Assembly file to load and run')
    parser.add_argument('--max-cycles', type=int, default=None, help='Stop after this many lines')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log every executed line')

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    vm = create_vm()
    failed = []

    vm.events.on(OUTPUT, lambda text, category='console': print(text))
    vm.events.on(STOP_ON_EXCEPTION,
                 lambda kind, line: failed.append(f"{kind.value} in line {line}: {vm.exception}"))
    vm.events.on(STOP_ON_PAUSE, lambda: failed.append("Max cycles reached"))

    try:
        vm.load(args.file)
        vm.debug = False
        vm.continue_execution(args.max_cycles)
    except (VMException, VMError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for message in failed:
        print(f"Error: {message}", file=sys.stderr)
    return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
