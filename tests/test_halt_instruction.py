"""
Tests for halt, noop, and falling off the end of a program.

halt stops the program and reports every register as output.
"""

import unittest
from test_assembly_framework import AssemblyTestCase, BaseAssemblyTestCase, program, run_assembly_test
from lc2k.vm import events
from lc2k.vm.cpu import CPUState
from lc2k.vm.virtual_machine import VMState, create_vm


class TestHaltInstruction(BaseAssemblyTestCase):
    """Test halt."""

    def test_halt_basic(self):
        """Test basic halt functionality."""
        test_cases = [
            AssemblyTestCase(
                "halt_immediately",
                "\thalt",
                {}
            ),
            AssemblyTestCase(
                "halt_skips_remaining",
                program(
                    "\tlw 0 1 ten",
                    "\thalt",
                    "\tadd 1 1 1",
                    "ten .fill 10",
                ),
                {1: 10}
            ),
            AssemblyTestCase(
                "labelled_halt",
                program(
                    "\tnoop",
                    "done halt",
                ),
                {}
            ),
        ]

        self.run_test_cases(test_cases)

    def test_halt_state_checking(self):
        """Test that halt terminates and reports the registers."""
        test_case = AssemblyTestCase(
            "halt_state_check",
            program(
                "\tlw 0 5 val",
                "\thalt",
                "val .fill 123",
            ),
            {5: 123}
        )

        results = run_assembly_test(test_case)

        self.assertTrue(results['success'], results['errors'])
        self.assertEqual(results['cpu_state'], CPUState.HALTED)
        self.assertEqual(results['vm_state'], VMState.TERMINATED)
        self.assertEqual(results['halt_reason'], "HALT instruction executed")

        outputs = [args[0] for name, args in results['events'] if name == events.OUTPUT]
        self.assertEqual(outputs, [f"reg {i}: {123 if i == 5 else 0}" for i in range(8)])
        self.assertEqual(results['events'][-1], (events.END, ()))

    def test_halt_reports_negative_registers(self):
        """Test that halt reports signed values in register order."""
        test_case = AssemblyTestCase(
            "halt_negative_registers",
            program(
                "\tlw 0 1 neg1",
                "\tlw 0 6 min",
                "\thalt",
                "neg1 .fill -1",
                "min .fill -2147483648",
            ),
            {1: -1, 6: -2147483648}
        )

        results = run_assembly_test(test_case)

        self.assertTrue(results['success'], results['errors'])
        outputs = [args[0] for name, args in results['events'] if name == events.OUTPUT]
        self.assertEqual(outputs, [
            "reg 0: 0",
            "reg 1: -1",
            "reg 2: 0",
            "reg 3: 0",
            "reg 4: 0",
            "reg 5: 0",
            "reg 6: -2147483648",
            "reg 7: 0",
        ])

    def test_end_of_program_without_halt(self):
        """Test that running past the last line ends without output."""
        test_case = AssemblyTestCase(
            "fall_off_end",
            program(
                "\tlw 0 1 val",
                "",
                "val .fill 3",
                "",
            ),
            {1: 3}
        )

        results = run_assembly_test(test_case)

        self.assertTrue(results['success'], results['errors'])
        self.assertEqual(results['cpu_state'], CPUState.READY)
        self.assertEqual(results['events'], [(events.END, ())])

    def test_noop_and_fill_do_nothing(self):
        """Test that noop and data lines execute without effect."""
        test_cases = [
            AssemblyTestCase(
                "noop_sequence",
                program(
                    "\tnoop",
                    "\tnoop comment words",
                    "\thalt",
                ),
                {i: 0 for i in range(8)}
            ),
            AssemblyTestCase(
                "fill_falls_through",
                program(
                    "\tlw 0 1 val",
                    "val .fill 3",
                    "\tadd 1 1 2",
                    "\thalt",
                ),
                {1: 3, 2: 6}
            ),
        ]

        self.run_test_cases(test_cases)

    def test_max_cycles_pauses(self):
        """Test that a cycle limit stops an endless loop with a pause."""
        vm = create_vm()
        paused = []
        vm.events.on(events.STOP_ON_PAUSE, lambda: paused.append(vm.current_line))

        vm.load_string("loop beq 0 0 loop")
        vm.continue_execution(max_cycles=10)

        self.assertEqual(paused, [0])
        self.assertEqual(vm.state, VMState.STOPPED)
        self.assertEqual(vm.cpu.instruction_count, 10)

    def test_calls_after_termination_are_ignored(self):
        """Test that continuing a finished program only logs a warning."""
        vm = create_vm()
        received = []
        vm.events.on(events.END, lambda: received.append('end'))

        vm.load_string("\thalt")
        vm.continue_execution()

        with self.assertLogs('lc2k.vm.virtual_machine', level='WARNING'):
            vm.continue_execution()
            vm.step()

        self.assertEqual(received, ['end'])


if __name__ == '__main__':
    unittest.main()
