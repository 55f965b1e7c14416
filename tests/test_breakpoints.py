"""
Tests for the execution controller: breakpoints, stepping and notifications.
"""

import os
import tempfile
import unittest

from lc2k.vm import events
from lc2k.vm.breakpoints import BreakpointMarkers, BreakpointTable, DataAccess
from lc2k.vm.exceptions import ExceptionKind, UnresolvedLabelException
from lc2k.vm.source import SourceProgram
from lc2k.vm.virtual_machine import StopReason, VMException, VMState, create_vm


PROGRAM = "\n".join([
    "\tlw 0 1 five",    # 0
    "\tadd 1 1 2",      # 1
    "",                 # 2
    "\tadd 2 2 3",      # 3
    "\thalt",           # 4
    "five .fill 5",     # 5
])

ALL_EVENTS = [
    events.STOP_ON_ENTRY,
    events.STOP_ON_STEP,
    events.STOP_ON_BREAKPOINT,
    events.STOP_ON_INSTRUCTION_BREAKPOINT,
    events.STOP_ON_DATA_BREAKPOINT,
    events.STOP_ON_EXCEPTION,
    events.STOP_ON_PAUSE,
    events.BREAKPOINT_VERIFIED,
    events.OUTPUT,
    events.END,
]


class ControllerTestCase(unittest.TestCase):
    """Loads PROGRAM from a temporary file and records every event."""

    source = PROGRAM

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "prog.as")
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write(self.source)

        self.vm = create_vm()
        self.received = []
        for name in ALL_EVENTS:
            self.vm.events.on(name, lambda *args, name=name: self.received.append((name, args)))

    def tearDown(self):
        self._tmp.cleanup()

    def stops(self):
        """Names of the stop and end events received so far."""
        return [name for name, _ in self.received
                if name not in (events.OUTPUT, events.BREAKPOINT_VERIFIED)]


class TestSourceBreakpoints(ControllerTestCase):

    def test_continue_stops_at_breakpoint(self):
        self.vm.load(self.path)
        bp = self.vm.set_source_breakpoint(self.path, 1)
        self.assertTrue(bp.verified)

        self.vm.continue_execution()

        self.assertEqual(self.vm.state, VMState.STOPPED)
        self.assertEqual(self.vm.stop_reason, StopReason.BREAKPOINT)
        self.assertEqual(self.vm.current_line, 1)
        self.assertEqual(self.vm.get_register(1), 5)
        self.assertEqual(self.vm.get_register(2), 0)

        # Resuming executes the breakpoint line instead of stopping again
        self.vm.continue_execution()

        self.assertEqual(self.vm.state, VMState.TERMINATED)
        self.assertEqual(self.vm.get_register(3), 20)
        self.assertEqual(self.stops(), [events.STOP_ON_BREAKPOINT, events.END])

    def test_start_verifies_breakpoints_of_program(self):
        bp = self.vm.set_source_breakpoint(self.path, 3)
        self.assertFalse(bp.verified)
        self.assertEqual(self.received, [])

        self.vm.start(self.path)

        self.assertTrue(bp.verified)
        self.assertEqual(self.received[0], (events.BREAKPOINT_VERIFIED, (bp,)))
        self.assertEqual(self.received[1], (events.STOP_ON_BREAKPOINT, ()))
        self.assertEqual(self.vm.current_line, 3)

    def test_breakpoint_on_blank_line_moves_down(self):
        self.vm.load(self.path)
        bp = self.vm.set_source_breakpoint(self.path, 2)

        self.assertTrue(bp.verified)
        self.assertEqual(bp.line, 3)

    def test_breakpoint_on_first_statement_stops_before_it(self):
        self.vm.load(self.path)
        self.vm.set_source_breakpoint(self.path, 0)

        self.vm.continue_execution()

        self.assertEqual(self.vm.current_line, 0)
        self.assertEqual(self.vm.get_register(1), 0)
        self.assertEqual(self.stops(), [events.STOP_ON_BREAKPOINT])

    def test_breakpoint_for_other_file_stays_unverified(self):
        self.vm.load(self.path)
        bp = self.vm.set_source_breakpoint(os.path.join(self._tmp.name, "other.as"), 1)

        self.vm.continue_execution()

        self.assertFalse(bp.verified)
        self.assertEqual(self.vm.state, VMState.TERMINATED)

    def test_paths_are_normalized(self):
        self.vm.load(self.path)
        alias = os.path.join(self._tmp.name, ".", "prog.as")
        bp = self.vm.set_source_breakpoint(alias, 1)

        self.assertTrue(bp.verified)

    def test_clear_breakpoints(self):
        self.vm.load(self.path)
        self.vm.set_source_breakpoint(self.path, 1)
        self.vm.set_source_breakpoint(self.path, 3)

        removed = self.vm.clear_source_breakpoint(self.path, 1)
        self.assertEqual(removed.line, 1)
        self.assertIsNone(self.vm.clear_source_breakpoint(self.path, 1))

        self.vm.continue_execution()
        self.assertEqual(self.vm.current_line, 3)

        self.vm.clear_all_source_breakpoints(self.path)
        self.vm.reset()
        self.vm.continue_execution()
        self.assertEqual(self.vm.state, VMState.TERMINATED)

    def test_debug_false_ignores_breakpoints(self):
        self.vm.set_source_breakpoint(self.path, 1)

        self.vm.start(self.path, debug=False)

        self.assertEqual(self.vm.state, VMState.TERMINATED)
        self.assertEqual(self.vm.get_register(3), 20)


class TestBreakpointVerification(unittest.TestCase):
    """Test the marker rules directly on the breakpoint table."""

    def setUp(self):
        self.table = BreakpointTable()
        self.program = SourceProgram("\n".join([
            "\tnoop",        # 0
            "+ continued",   # 1
            "- previous",    # 2
            "\tnoop lazy",   # 3
            "",              # 4
            "\thalt",        # 5
        ]))

    def verify_at(self, line):
        bp = self.table.add_source("prog.as", line)
        return bp, self.table.verify(bp, self.program)

    def test_plain_line(self):
        bp, verified = self.verify_at(0)
        self.assertTrue(verified)
        self.assertEqual(bp.line, 0)

    def test_continuation_moves_down(self):
        bp, verified = self.verify_at(1)
        self.assertTrue(verified)
        self.assertEqual(bp.line, 2)

    def test_predecessor_moves_up(self):
        bp, verified = self.verify_at(2)
        self.assertTrue(verified)
        self.assertEqual(bp.line, 1)

    def test_predecessor_clamps_at_zero(self):
        bp = self.table.add_source("prog.as", 0)
        self.assertTrue(self.table.verify(bp, SourceProgram("- first")))
        self.assertEqual(bp.line, 0)

    def test_empty_line_moves_down(self):
        bp, verified = self.verify_at(4)
        self.assertTrue(verified)
        self.assertEqual(bp.line, 5)

    def test_lazy_line_stays_unverified(self):
        bp, verified = self.verify_at(3)
        self.assertFalse(verified)
        self.assertFalse(bp.verified)

    def test_adjustment_happens_once(self):
        bp, _ = self.verify_at(1)
        bp.verified = False
        self.table.verify(bp, self.program)
        self.assertEqual(bp.line, 2)

    def test_out_of_range_line(self):
        _, verified = self.verify_at(40)
        self.assertFalse(verified)

    def test_custom_markers(self):
        table = BreakpointTable(BreakpointMarkers(continuation='&', predecessor='^', lazy='later'))
        bp = table.add_source("prog.as", 1)
        self.assertTrue(table.verify(bp, SourceProgram("\tnoop\n& more\n\thalt")))
        self.assertEqual(bp.line, 2)


class TestLazyBreakpoints(ControllerTestCase):

    source = "\tnoop\n\tnoop lazy\n\thalt"

    def test_lazy_breakpoint_verifies_when_hit(self):
        self.vm.load(self.path)
        bp = self.vm.set_source_breakpoint(self.path, 1)
        self.assertFalse(bp.verified)

        self.vm.continue_execution()

        self.assertTrue(bp.verified)
        self.assertEqual(self.received, [
            (events.STOP_ON_BREAKPOINT, ()),
            (events.BREAKPOINT_VERIFIED, (bp,)),
        ])


class TestStepping(ControllerTestCase):

    source = "\n" + PROGRAM

    def test_stop_on_entry_skips_leading_blank_lines(self):
        self.vm.start(self.path, stop_on_entry=True)

        self.assertEqual(self.stops(), [events.STOP_ON_ENTRY])
        self.assertEqual(self.vm.stop_reason, StopReason.ENTRY)
        self.assertEqual(self.vm.current_line, 1)

    def test_step_moves_to_next_statement(self):
        self.vm.start(self.path, stop_on_entry=True)

        self.vm.step()
        self.assertEqual(self.vm.current_line, 2)
        self.assertEqual(self.vm.get_register(1), 5)

        self.vm.step()
        self.assertEqual(self.vm.current_line, 4)

        self.assertEqual(self.stops(), [events.STOP_ON_ENTRY, events.STOP_ON_STEP, events.STOP_ON_STEP])

    def test_step_to_halt_terminates(self):
        self.vm.start(self.path, stop_on_entry=True)
        for _ in range(4):
            self.vm.step()

        self.assertEqual(self.vm.state, VMState.TERMINATED)
        self.assertEqual(self.stops()[-1], events.END)

    def test_step_stops_at_breakpoint_instead(self):
        self.vm.start(self.path, stop_on_entry=True)
        self.vm.set_source_breakpoint(self.path, 2)

        self.vm.step()

        self.assertEqual(self.stops()[-1], events.STOP_ON_BREAKPOINT)

    def test_instruction_step_advances_one_unit(self):
        self.vm.start(self.path, stop_on_entry=True)
        start = self.vm.instruction

        self.vm.step(instruction=True)

        self.assertEqual(self.vm.instruction, start + 1)
        self.assertEqual(self.vm.current_line, 1)
        self.assertEqual(self.stops()[-1], events.STOP_ON_STEP)

    def test_reset_restores_initial_state(self):
        self.vm.start(self.path)
        self.assertEqual(self.vm.state, VMState.TERMINATED)

        self.vm.reset()

        self.assertEqual(self.vm.state, VMState.IDLE)
        self.assertEqual(self.vm.get_register(3), 0)
        self.assertEqual(self.vm.current_line, 0)

    def test_start_after_termination_runs_again(self):
        self.vm.start(self.path)
        self.vm.start(self.path)

        self.assertEqual(self.stops(), [events.END, events.END])


class TestInstructionBreakpoints(ControllerTestCase):

    def test_stop_before_unit_and_resume_past_it(self):
        self.vm.load(self.path)
        # Units: lw five | add | add | halt | five fill
        self.assertTrue(self.vm.set_instruction_breakpoint(2))

        self.vm.continue_execution()

        self.assertEqual(self.vm.stop_reason, StopReason.INSTRUCTION_BREAKPOINT)
        self.assertEqual(self.vm.current_line, 1)
        self.assertEqual(self.vm.get_register(2), 0)

        self.vm.continue_execution()

        self.assertEqual(self.vm.state, VMState.TERMINATED)
        self.assertEqual(self.vm.get_register(2), 10)

    def test_clear_instruction_breakpoints(self):
        self.vm.load(self.path)
        self.vm.set_instruction_breakpoint(2)
        self.vm.clear_all_instruction_breakpoints()

        self.vm.continue_execution()

        self.assertEqual(self.stops(), [events.END])

    def test_disassemble(self):
        self.vm.load(self.path)

        listing = self.vm.disassemble(0, 3)
        self.assertEqual([(d.address, d.instruction, d.line) for d in listing],
                         [(0, 'lw', 0), (1, 'five', 0), (2, 'add', 1)])

        beyond = self.vm.disassemble(6, 2)
        self.assertEqual([d.instruction for d in beyond], ['fill', 'noop'])


class TestDataBreakpoints(ControllerTestCase):

    def test_register_write(self):
        self.vm.load(self.path)
        self.assertTrue(self.vm.set_data_breakpoint('reg 2'))

        self.vm.continue_execution()

        self.assertEqual(self.received[-1], (events.STOP_ON_DATA_BREAKPOINT, ('write',)))
        self.assertEqual(self.vm.stop_reason, StopReason.DATA_BREAKPOINT)
        # The watched line has completed and the PC moved on
        self.assertEqual(self.vm.get_register(2), 10)
        self.assertEqual(self.vm.current_line, 3)

        self.vm.continue_execution()
        self.assertEqual(self.vm.state, VMState.TERMINATED)

    def test_source_breakpoint_after_data_stop(self):
        self.vm.load_string("\tadd 0 0 1\n\tadd 1 1 2\n\tadd 2 2 3\n\thalt", "p.as")
        self.vm.set_data_breakpoint('reg 1', 'write')
        self.vm.set_source_breakpoint("p.as", 1)

        self.vm.continue_execution()
        self.assertEqual(self.vm.current_line, 1)
        self.vm.continue_execution()

        self.assertEqual(self.stops(), [events.STOP_ON_DATA_BREAKPOINT, events.STOP_ON_BREAKPOINT])
        self.assertEqual(self.vm.current_line, 1)

        self.vm.continue_execution()
        self.assertEqual(self.stops()[-1], events.END)

    def test_label_read(self):
        self.vm.load(self.path)
        self.assertTrue(self.vm.set_data_breakpoint('five', DataAccess.READ))

        self.vm.continue_execution()

        self.assertEqual(self.received[-1], (events.STOP_ON_DATA_BREAKPOINT, ('read',)))
        self.assertEqual(self.vm.current_line, 1)

    def test_read_watch_ignores_writes(self):
        self.vm.load(self.path)
        self.vm.set_data_breakpoint('reg 3', 'read')

        self.vm.continue_execution()

        self.assertEqual(self.stops(), [events.END])

    def test_modes_combine(self):
        self.vm.load(self.path)
        self.vm.set_data_breakpoint('reg 1', 'read')
        self.vm.set_data_breakpoint('reg 1', 'write')

        self.assertEqual(self.vm.breakpoints.data['reg 1'], DataAccess.READ_WRITE)

    def test_unknown_locations(self):
        self.vm.load(self.path)
        for name in ('reg 8', 'mem 6', 'nosuch'):
            with self.subTest(name):
                self.assertFalse(self.vm.set_data_breakpoint(name))
        self.assertTrue(self.vm.set_data_breakpoint('mem 5'))

    def test_clear_data_breakpoints(self):
        self.vm.load(self.path)
        self.vm.set_data_breakpoint('reg 2')
        self.vm.clear_all_data_breakpoints()

        self.vm.continue_execution()

        self.assertEqual(self.stops(), [events.END])


class TestExceptions(ControllerTestCase):

    source = "\tlw 0 1 0\n\thalt"

    def test_exception_stops_on_line(self):
        self.vm.load(self.path)
        self.vm.continue_execution()

        self.assertEqual(self.received, [(events.STOP_ON_EXCEPTION, (ExceptionKind.INVALID_MEMORY, 0))])
        self.assertEqual(self.vm.state, VMState.STOPPED)
        self.assertEqual(self.vm.stop_reason, StopReason.EXCEPTION)
        self.assertEqual(self.vm.current_line, 0)

        # Continuing repeats the failing line
        self.vm.continue_execution()
        self.assertEqual(self.stops(), [events.STOP_ON_EXCEPTION, events.STOP_ON_EXCEPTION])


class TestLoading(ControllerTestCase):

    source = "\thalt\nbad .fill missing"

    def test_unresolved_label_aborts_load(self):
        with self.assertRaises(UnresolvedLabelException):
            self.vm.load(self.path)

        self.assertEqual(self.received, [(events.OUTPUT, ("Label missing not found", 'stderr'))])
        self.assertEqual(self.vm.state, VMState.TERMINATED)
        self.assertIsNone(self.vm.program)

        with self.assertLogs('lc2k.vm.virtual_machine', level='WARNING'):
            self.vm.continue_execution()

    def test_missing_file(self):
        with self.assertRaises(VMException):
            self.vm.load(os.path.join(self._tmp.name, "absent.as"))


class TestInspection(ControllerTestCase):

    def test_registers_and_memory(self):
        self.vm.load(self.path)
        self.vm.set_register(7, 2 ** 32 + 3)

        self.assertEqual(self.vm.get_registers()[7], ("reg 7", 3))
        self.assertEqual(len(self.vm.get_registers()), 8)
        self.assertEqual(self.vm.get_memory(), [(5, 5)])
        self.assertEqual(self.vm.get_memory(0, 5), [])

    def test_memory_window(self):
        vm = create_vm({'memory_window': 3})
        vm.load_string("a .fill 1\nb .fill 2\nc .fill 3\nd .fill 4")

        self.assertEqual(vm.get_memory(), [(0, 1), (1, 2), (2, 3)])

    def test_stack_frame_names_line(self):
        self.vm.start(self.path, stop_on_entry=True)
        frame = self.vm.stack()[0]
        self.assertEqual((frame.name, frame.line, frame.file), ('lw', 0, self.path))

        self.vm.set_source_breakpoint(self.path, 3)
        self.vm.continue_execution()
        self.assertEqual(self.vm.stack()[0].line, 3)
        self.assertEqual(self.vm.stack()[0].name, 'add')

    def test_stack_frame_prefers_label(self):
        vm = create_vm()
        vm.load_string("here halt")

        self.assertEqual(vm.stack()[0].name, 'here')

    def test_breakpoint_columns(self):
        self.vm.load_string("\tnoop verylongcomment", self.path)

        self.assertEqual(self.vm.get_breakpoint_columns(self.path, 0), [6])
        self.assertEqual(self.vm.get_breakpoint_columns("other.as", 0), [])
        self.assertEqual(self.vm.get_breakpoint_columns(self.path, 9), [])


class TestNotificationDelivery(ControllerTestCase):

    def test_listeners_see_completed_state(self):
        seen = []
        self.vm.events.on(events.STOP_ON_BREAKPOINT,
                          lambda: seen.append((self.vm.state, self.vm.current_line)))
        self.vm.load(self.path)
        self.vm.set_source_breakpoint(self.path, 3)

        self.vm.continue_execution()

        self.assertEqual(seen, [(VMState.STOPPED, 3)])

    def test_scheduler_defers_delivery(self):
        scheduled = []
        vm = create_vm({'scheduler': scheduled.append})
        received = []
        vm.events.on(events.END, lambda: received.append('end'))

        vm.load_string("\thalt")
        vm.continue_execution()

        self.assertEqual(received, [])
        for callback in scheduled:
            callback()
        self.assertEqual(received, ['end'])

    def test_failing_listener_does_not_block_others(self):
        def broken():
            raise RuntimeError("listener bug")

        received = []
        self.vm.events.on(events.END, broken)
        self.vm.events.on(events.END, lambda: received.append('end'))
        self.vm.load(self.path)

        with self.assertLogs('lc2k.vm.events', level='ERROR'):
            self.vm.continue_execution()

        self.assertEqual(received, ['end'])


if __name__ == '__main__':
    unittest.main()
