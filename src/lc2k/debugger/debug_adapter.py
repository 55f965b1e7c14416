"""LC-2K Debug Adapter

Implements the Debug Adapter Protocol for VSCode integration. Requests are
translated into VirtualMachine calls and engine notifications into DAP
events.
"""

import json
import logging
import re
import sys
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional

from ..vm import events
from ..vm.breakpoints import DataAccess, SourceBreakpoint
from ..vm.exceptions import ExceptionKind, VMError
from ..vm.virtual_machine import VirtualMachine, VMException, create_vm


logger = logging.getLogger(__name__)

THREAD_ID = 1

REGISTERS_REFERENCE = 1
MEMORY_REFERENCE = 2

EXCEPTION_DESCRIPTIONS = {
    ExceptionKind.INVALID_INSTRUCTION: (
        "Invalid instruction",
        "There are only 8 valid instructions, are you using one of them?"),
    ExceptionKind.INVALID_MEMORY: (
        "Invalid memory access",
        "The address is outside the program, or the cell was never written."),
    ExceptionKind.INVALID_REGISTER: (
        "Invalid register access",
        "There are only 8 registers, so you can only access reg 0 to reg 7."),
    ExceptionKind.UNRESOLVED_LABEL: (
        "Invalid label",
        "Have you declared it?"),
    ExceptionKind.OUT_OF_RANGE: (
        "Line out of range",
        "Execution left the program."),
}


class DebugAdapterError(Exception):
    """Exception for debug adapter errors."""
    pass


class LC2KDebugAdapter:
    """Debug Adapter for LC-2K assembly."""

    def __init__(self, input_stream=None, output_stream=None,
                 vm_factory: Callable[..., VirtualMachine] = create_vm):
        """Initialize debug adapter.

        Args:
            input_stream: Input stream (default: stdin)
            output_stream: Output stream (default: stdout)
            vm_factory: Builds the VM for a launch from a config dict
        """
        self.input_stream = input_stream or sys.stdin
        self.output_stream = output_stream or sys.stdout
        self.vm_factory = vm_factory

        # State
        self.vm: Optional[VirtualMachine] = None
        self.sequence = 0
        self.running = False
        self.values_in_hex = False

        # Engine notifications wait here until the request's response is out
        self._deferred: Deque[Callable[[], None]] = deque()

        # Last exception reported by the engine
        self._exception_kind: Optional[ExceptionKind] = None
        self._exception_line: Optional[int] = None

        # Request handlers
        self.request_handlers = {
            'initialize': self._handle_initialize,
            'launch': self._handle_launch,
            'attach': self._handle_attach,
            'configurationDone': self._handle_configuration_done,
            'setBreakpoints': self._handle_set_breakpoints,
            'breakpointLocations': self._handle_breakpoint_locations,
            'setInstructionBreakpoints': self._handle_set_instruction_breakpoints,
            'dataBreakpointInfo': self._handle_data_breakpoint_info,
            'setDataBreakpoints': self._handle_set_data_breakpoints,
            'setExceptionBreakpoints': self._handle_set_exception_breakpoints,
            'threads': self._handle_threads,
            'continue': self._handle_continue,
            'next': self._handle_next,
            'stepIn': self._handle_step_in,
            'stepOut': self._handle_step_out,
            'stackTrace': self._handle_stack_trace,
            'scopes': self._handle_scopes,
            'variables': self._handle_variables,
            'setVariable': self._handle_set_variable,
            'evaluate': self._handle_evaluate,
            'exceptionInfo': self._handle_exception_info,
            'disassemble': self._handle_disassemble,
            'disconnect': self._handle_disconnect,
        }

    def run(self) -> None:
        """Start the debug adapter."""
        self.running = True

        while self.running:
            message = self._read_message()
            if message is None:
                break
            self._handle_message(message)

    def _read_message(self) -> Optional[Dict[str, Any]]:
        """Read a message from the input stream."""
        try:
            # Read Content-Length header
            while True:
                line = self.input_stream.readline()
                if not line:
                    return None

                line = line.strip()
                if line.startswith('Content-Length:'):
                    length = int(line.split(':')[1].strip())
                    break

            # Read empty line
            self.input_stream.readline()

            # Read message body
            content = self.input_stream.read(length)
            return json.loads(content)

        except (json.JSONDecodeError, ValueError) as e:
            logger.error("Malformed message: %s", e)
            return None

    def _send_message(self, message: Dict[str, Any]) -> None:
        """Send a message to the output stream."""
        content = json.dumps(message)
        header = f"Content-Length: {len(content.encode('utf-8'))}\r\n\r\n"

        self.output_stream.write(header)
        self.output_stream.write(content)
        self.output_stream.flush()

    def _send_response(self, request_seq: int, command: str, success: bool = True,
                       message: str = None, body: Dict[str, Any] = None) -> None:
        """Send a response message."""
        self.sequence += 1

        response = {
            'type': 'response',
            'seq': self.sequence,
            'request_seq': request_seq,
            'success': success,
            'command': command
        }

        if message:
            response['message'] = message

        if body is not None:
            response['body'] = body

        self._send_message(response)

    def _send_event(self, event: str, body: Dict[str, Any] = None) -> None:
        """Send an event message."""
        self.sequence += 1

        event_msg = {
            'type': 'event',
            'seq': self.sequence,
            'event': event
        }

        if body:
            event_msg['body'] = body

        self._send_message(event_msg)

    def _send_error_response(self, request_seq: int, command: str, error_message: str) -> None:
        """Send an error response."""
        self._send_response(request_seq, command, False, error_message)

    def _handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming message."""
        if message.get('type') == 'request':
            self._handle_request(message)

    def _handle_request(self, message: Dict[str, Any]) -> None:
        """Handle a request message, then deliver engine notifications."""
        command = message.get('command')
        seq = message.get('seq', 0)
        arguments = message.get('arguments') or {}

        handler = self.request_handlers.get(command)
        if handler:
            try:
                handler(seq, arguments)
            except (DebugAdapterError, VMException, VMError, KeyError, ValueError) as e:
                self._send_error_response(seq, command, str(e))
        else:
            self._send_error_response(seq, command, f"Unknown command: {command}")

        while self._deferred:
            self._deferred.popleft()()

    def _ensure_vm(self) -> VirtualMachine:
        """Create the session VM on first use."""
        if self.vm is None:
            self.vm = self.vm_factory({'scheduler': self._deferred.append})
            self._connect(self.vm)
        return self.vm

    def _require_vm(self) -> VirtualMachine:
        if not self.vm:
            raise DebugAdapterError("No program loaded")
        return self.vm

    # Engine notifications

    def _connect(self, vm: VirtualMachine) -> None:
        def stopped(reason: str) -> Callable[..., None]:
            return lambda *args: self._send_event('stopped', {
                'reason': reason,
                'threadId': THREAD_ID
            })

        vm.events.on(events.STOP_ON_ENTRY, stopped('entry'))
        vm.events.on(events.STOP_ON_STEP, stopped('step'))
        vm.events.on(events.STOP_ON_BREAKPOINT, stopped('breakpoint'))
        vm.events.on(events.STOP_ON_INSTRUCTION_BREAKPOINT, stopped('instruction breakpoint'))
        vm.events.on(events.STOP_ON_DATA_BREAKPOINT, stopped('data breakpoint'))
        vm.events.on(events.STOP_ON_PAUSE, stopped('pause'))
        vm.events.on(events.STOP_ON_EXCEPTION, self._on_exception)
        vm.events.on(events.BREAKPOINT_VERIFIED, self._on_breakpoint_verified)
        vm.events.on(events.OUTPUT, self._on_output)
        vm.events.on(events.END, lambda: self._send_event('terminated'))

    def _on_exception(self, kind: ExceptionKind, line: int) -> None:
        self._exception_kind = kind
        self._exception_line = line
        self._send_event('stopped', {
            'reason': 'exception',
            'threadId': THREAD_ID,
            'text': kind.value
        })

    def _on_breakpoint_verified(self, bp: SourceBreakpoint) -> None:
        self._send_event('breakpoint', {
            'reason': 'changed',
            'breakpoint': self._breakpoint_body(bp)
        })

    def _on_output(self, text: str, category: str = 'console') -> None:
        body = {'category': category, 'output': f"{text}\n"}
        if self.vm and self.vm.source_file:
            body['source'] = self._source(self.vm.source_file)
        self._send_event('output', body)

    # Request handlers

    def _handle_initialize(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle initialize request."""
        capabilities = {
            'supportsConfigurationDoneRequest': True,
            'supportsFunctionBreakpoints': False,
            'supportsConditionalBreakpoints': False,
            'supportsHitConditionalBreakpoints': False,
            'supportsEvaluateForHovers': True,
            'exceptionBreakpointFilters': [],
            'supportsStepBack': False,
            'supportsSetVariable': True,
            'supportsRestartFrame': False,
            'supportsGotoTargetsRequest': False,
            'supportsStepInTargetsRequest': False,
            'supportsCompletionsRequest': False,
            'supportsBreakpointLocationsRequest': True,
            'supportsDataBreakpoints': True,
            'supportsInstructionBreakpoints': True,
            'supportsDisassembleRequest': True,
            'supportsExceptionInfoRequest': True
        }

        self._send_response(seq, 'initialize', True, body=capabilities)
        self._send_event('initialized')

    def _handle_launch(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle launch request."""
        program = args.get('program')
        if not program:
            raise DebugAdapterError("No program specified")

        vm = self._ensure_vm()
        vm.start(program,
                 stop_on_entry=bool(args.get('stopOnEntry')),
                 debug=not args.get('noDebug'))
        self._send_response(seq, 'launch', True)

    def _handle_attach(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle attach request."""
        self._send_error_response(seq, 'attach', "Attach not supported")

    def _handle_configuration_done(self, seq: int, args: Dict[str, Any]) -> None:
        self._send_response(seq, 'configurationDone', True)

    def _handle_set_breakpoints(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle setBreakpoints request."""
        vm = self._ensure_vm()

        path = args.get('source', {}).get('path')
        if not path:
            raise DebugAdapterError("No source path")

        # Clear existing breakpoints of this file
        vm.clear_all_source_breakpoints(path)

        # Client lines are 1-based, engine lines 0-based
        breakpoints = []
        for bp in args.get('breakpoints', []):
            runtime_bp = vm.set_source_breakpoint(path, bp.get('line', 1) - 1)
            breakpoints.append(self._breakpoint_body(runtime_bp))

        self._send_response(seq, 'setBreakpoints', True, body={
            'breakpoints': breakpoints
        })

    def _handle_breakpoint_locations(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle breakpointLocations request."""
        path = args.get('source', {}).get('path')
        line = args.get('line', 1)
        locations = []
        if path and self.vm:
            for column in self.vm.get_breakpoint_columns(path, line - 1):
                locations.append({'line': line, 'column': column + 1})

        self._send_response(seq, 'breakpointLocations', True, body={
            'breakpoints': locations
        })

    def _handle_set_instruction_breakpoints(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle setInstructionBreakpoints request."""
        vm = self._require_vm()
        vm.clear_all_instruction_breakpoints()

        breakpoints = []
        for ibp in args.get('breakpoints', []):
            address = int(ibp['instructionReference'], 0) + ibp.get('offset', 0)
            breakpoints.append({'verified': vm.set_instruction_breakpoint(address)})

        self._send_response(seq, 'setInstructionBreakpoints', True, body={
            'breakpoints': breakpoints
        })

    def _handle_data_breakpoint_info(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle dataBreakpointInfo request."""
        body = {
            'dataId': None,
            'description': "cannot break on data access",
            'accessTypes': None,
            'canPersist': False
        }

        name = args.get('name')
        if args.get('variablesReference') in (REGISTERS_REFERENCE, MEMORY_REFERENCE) and name:
            body = {
                'dataId': name,
                'description': name,
                'accessTypes': [mode.value for mode in DataAccess],
                'canPersist': True
            }

        self._send_response(seq, 'dataBreakpointInfo', True, body=body)

    def _handle_set_data_breakpoints(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle setDataBreakpoints request."""
        vm = self._require_vm()
        vm.clear_all_data_breakpoints()

        breakpoints = []
        for dbp in args.get('breakpoints', []):
            ok = vm.set_data_breakpoint(dbp['dataId'], dbp.get('accessType', 'write'))
            breakpoints.append({'verified': ok})

        self._send_response(seq, 'setDataBreakpoints', True, body={
            'breakpoints': breakpoints
        })

    def _handle_set_exception_breakpoints(self, seq: int, args: Dict[str, Any]) -> None:
        # Engine exceptions always stop
        self._send_response(seq, 'setExceptionBreakpoints', True)

    def _handle_threads(self, seq: int, args: Dict[str, Any]) -> None:
        self._send_response(seq, 'threads', True, body={
            'threads': [{'id': THREAD_ID, 'name': 'thread 1'}]
        })

    def _handle_continue(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle continue request."""
        vm = self._require_vm()
        vm.continue_execution()

        self._send_response(seq, 'continue', True, body={
            'allThreadsContinued': True
        })

    def _handle_next(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle next (step over) request."""
        vm = self._require_vm()
        vm.step(instruction=args.get('granularity') == 'instruction')

        self._send_response(seq, 'next', True)

    def _handle_step_in(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle stepIn request."""
        vm = self._require_vm()
        vm.step(instruction=args.get('granularity') == 'instruction')

        self._send_response(seq, 'stepIn', True)

    def _handle_step_out(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle stepOut request."""
        # There are no frames to step out of, so this steps one line
        vm = self._require_vm()
        vm.step()

        self._send_response(seq, 'stepOut', True)

    def _handle_stack_trace(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle stackTrace request."""
        vm = self._require_vm()

        frames = []
        for frame in vm.stack():
            sf = {
                'id': frame.index,
                'name': frame.name,
                'line': frame.line + 1,
                'column': 1,
                'source': self._source(frame.file)
            }
            if frame.instruction is not None:
                sf['instructionPointerReference'] = self._format_address(frame.instruction)
            frames.append(sf)

        self._send_response(seq, 'stackTrace', True, body={
            'stackFrames': frames,
            'totalFrames': len(frames)
        })

    def _handle_scopes(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle scopes request."""
        scopes = [
            {
                'name': 'Registers',
                'variablesReference': REGISTERS_REFERENCE,
                'expensive': False
            },
            {
                'name': 'Memory',
                'variablesReference': MEMORY_REFERENCE,
                'expensive': False
            }
        ]

        self._send_response(seq, 'scopes', True, body={
            'scopes': scopes
        })

    def _handle_variables(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle variables request."""
        vm = self._require_vm()

        variables_ref = args.get('variablesReference', 0)
        variables = []

        if variables_ref == REGISTERS_REFERENCE:
            for name, value in vm.get_registers():
                variables.append(self._variable(name, value))

        elif variables_ref == MEMORY_REFERENCE:
            for address, value in vm.get_memory():
                variables.append(self._variable(f"mem {address}", value))

        self._send_response(seq, 'variables', True, body={
            'variables': variables
        })

    def _handle_set_variable(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle setVariable request for registers."""
        vm = self._require_vm()

        match = re.fullmatch(r'reg (\d+)', args.get('name', ''))
        if args.get('variablesReference') != REGISTERS_REFERENCE or not match:
            raise DebugAdapterError(f"'{args.get('name')}' is not an assignable register")

        reg_id = int(match.group(1))
        vm.set_register(reg_id, self._parse_value(args.get('value', '')))

        body = self._variable(f"reg {reg_id}", vm.get_register(reg_id))
        self._send_response(seq, 'setVariable', True, body=body)

    def _handle_evaluate(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle evaluate request."""
        vm = self._require_vm()

        expression = args.get('expression', '').strip()

        reg_match = re.fullmatch(r'reg (\d+)', expression)
        mem_match = re.fullmatch(r'mem (\d+)', expression)
        if reg_match:
            result = self._format_value(vm.get_register(int(reg_match.group(1))))
        elif mem_match:
            value = vm.memory.peek(int(mem_match.group(1)))
            result = 'undefined' if value is None else self._format_value(value)
        elif expression in vm.labels:
            result = str(vm.labels[expression])
        else:
            result = "Expression not supported"

        self._send_response(seq, 'evaluate', True, body={
            'result': result,
            'variablesReference': 0
        })

    def _handle_exception_info(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle exceptionInfo request."""
        description, detail = EXCEPTION_DESCRIPTIONS.get(
            self._exception_kind, ("Exception", None))

        text = description
        if self._exception_line is not None and self.vm and self.vm.program:
            text += f" in line {self._exception_line + 1}\n {self.vm.program.line_at(self._exception_line).strip()}"
        if detail:
            text += f"\n{detail}"

        self._send_response(seq, 'exceptionInfo', True, body={
            'exceptionId': self._exception_kind.value if self._exception_kind else 'unknown',
            'description': text,
            'breakMode': 'always',
            'details': {
                'message': str(self.vm.exception) if self.vm and self.vm.exception else text
            }
        })

    def _handle_disassemble(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle disassemble request."""
        vm = self._require_vm()

        base = int(args['memoryReference'], 0) + args.get('instructionOffset', 0)
        instructions = []
        for instruction in vm.disassemble(base, args.get('instructionCount', 0)):
            entry = {
                'address': self._format_address(instruction.address),
                'instruction': instruction.instruction
            }
            if instruction.line is not None:
                entry['line'] = instruction.line + 1
                entry['location'] = self._source(vm.source_file)
            instructions.append(entry)

        self._send_response(seq, 'disassemble', True, body={
            'instructions': instructions
        })

    def _handle_disconnect(self, seq: int, args: Dict[str, Any]) -> None:
        """Handle disconnect request."""
        self._send_response(seq, 'disconnect', True)
        self.running = False

    # Helpers

    def _breakpoint_body(self, bp: SourceBreakpoint) -> Dict[str, Any]:
        return {'id': bp.id, 'verified': bp.verified, 'line': bp.line + 1}

    def _source(self, path: Optional[str]) -> Dict[str, Any]:
        return {
            'name': Path(path).name if path else 'program',
            'path': path
        }

    def _variable(self, name: str, value: int) -> Dict[str, Any]:
        return {
            'name': name,
            'value': self._format_value(value),
            'type': 'integer',
            'variablesReference': 0,
            'evaluateName': name
        }

    def _format_value(self, value: int) -> str:
        if self.values_in_hex:
            return f"0x{value & 0xFFFFFFFF:08X}"
        return str(value)

    def _format_address(self, address: int) -> str:
        return f"0x{address:08x}"

    def _parse_value(self, value_str: str) -> int:
        """Parse value string (hex or decimal)."""
        value_str = value_str.strip()
        try:
            return int(value_str, 0)
        except ValueError:
            raise DebugAdapterError(f"Invalid value: {value_str}")


def start_debug_adapter() -> None:
    """Start the debug adapter."""
    adapter = LC2KDebugAdapter()
    adapter.run()


if __name__ == '__main__':
    start_debug_adapter()
