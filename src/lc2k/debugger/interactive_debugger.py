"""LC-2K Interactive Debugger

Provides a command-line interface for debugging LC-2K programs.
Lines and addresses are 0-based, matching memory addresses.
"""

import cmd
from typing import Callable, Optional, Tuple

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..vm import events
from ..vm.breakpoints import DataAccess, SourceBreakpoint
from ..vm.exceptions import ExceptionKind, VMError
from ..vm.virtual_machine import VirtualMachine, VMException, VMState, create_vm


class LC2KDebugger(cmd.Cmd):
    """Interactive debugger for LC-2K programs."""

    intro = """LC-2K Interactive Debugger v0.1.0
Type 'help' or '?' for commands.
"""
    prompt = "(lc2k-debug) "

    def __init__(self, console: Optional[Console] = None,
                 vm_factory: Callable[..., VirtualMachine] = create_vm):
        super().__init__()
        self.console = console or Console()
        self.vm = vm_factory()
        self.last_dump_address = 0
        self.last_dump_count = 16

        self.vm.events.on(events.STOP_ON_ENTRY, lambda: self._on_stop("entry"))
        self.vm.events.on(events.STOP_ON_STEP, lambda: self._on_stop("step"))
        self.vm.events.on(events.STOP_ON_BREAKPOINT, lambda: self._on_stop("breakpoint"))
        self.vm.events.on(events.STOP_ON_INSTRUCTION_BREAKPOINT,
                          lambda: self._on_stop("instruction breakpoint"))
        self.vm.events.on(events.STOP_ON_DATA_BREAKPOINT,
                          lambda access: self._on_stop(f"data breakpoint ({access})"))
        self.vm.events.on(events.STOP_ON_PAUSE, lambda: self._on_stop("pause"))
        self.vm.events.on(events.STOP_ON_EXCEPTION, self._on_exception)
        self.vm.events.on(events.BREAKPOINT_VERIFIED, self._on_breakpoint_verified)
        self.vm.events.on(events.OUTPUT, self._on_output)
        self.vm.events.on(events.END, self._on_end)

    def preloop(self):
        """Setup before command loop."""
        self.console.print("[bold blue]LC-2K Interactive Debugger[/bold blue]")
        self.console.print("Load a program with 'load <filename>' to start debugging.\n")

    # Engine notifications

    def _on_stop(self, reason: str) -> None:
        line = self.vm.current_line
        text = self.vm.program.line_at(line) if self.vm.program else ''
        self.console.print(f"[yellow]Stopped ({reason}) at line {line}:[/yellow] {escape(text.strip())}")

    def _on_exception(self, kind: ExceptionKind, line: int) -> None:
        self.console.print(f"[red]{kind.value} at line {line}: {escape(str(self.vm.exception))}[/red]")

    def _on_breakpoint_verified(self, bp: SourceBreakpoint) -> None:
        self.console.print(f"[green]Breakpoint {bp.id} verified at line {bp.line}[/green]")

    def _on_output(self, text: str, category: str = 'console') -> None:
        style = "red" if category == 'stderr' else "white"
        self.console.print(f"[{style}]{escape(text)}[/{style}]")

    def _on_end(self) -> None:
        self.console.print("[blue]Program terminated[/blue]")

    def _loaded(self) -> bool:
        if self.vm.program is None:
            self.console.print("[red]No program loaded[/red]")
            return False
        return True

    # File operations

    def do_load(self, arg: str) -> None:
        """Load an assembly file: load <filename>"""
        if not arg:
            self.console.print("[red]Error: Please specify a filename[/red]")
            return

        try:
            self.vm.load(arg)
            self.vm.reset()
            self.console.print(f"[green]Program loaded: {escape(arg)}[/green]")
            self._show_status()
        except (VMException, VMError) as e:
            self.console.print(f"[red]Error loading program: {escape(str(e))}[/red]")

    # Execution control

    def do_run(self, arg: str) -> None:
        """Run the program from the start: run [max_lines]"""
        if not self._loaded():
            return

        max_cycles = self._parse_count(arg, None)
        if arg and max_cycles is None:
            return

        if self.vm.state is not VMState.IDLE:
            self.vm.reset()
        self.console.print("[green]Starting execution...[/green]")
        self.vm.continue_execution(max_cycles)

    def do_continue(self, arg: str) -> None:
        """Continue execution: continue [max_lines]"""
        if not self._loaded():
            return

        max_cycles = self._parse_count(arg, None)
        if arg and max_cycles is None:
            return
        self.vm.continue_execution(max_cycles)

    def do_step(self, arg: str) -> None:
        """Execute one line: step [count]"""
        self._step(arg, instruction=False)

    def do_stepi(self, arg: str) -> None:
        """Advance one instruction unit: stepi [count]"""
        self._step(arg, instruction=True)

    def _step(self, arg: str, instruction: bool) -> None:
        if not self._loaded():
            return

        count = self._parse_count(arg, 1)
        if count is None:
            return

        for _ in range(count):
            if self.vm.state is VMState.TERMINATED:
                break
            self.vm.step(instruction=instruction)

    def do_reset(self, arg: str) -> None:
        """Reload the program and reset registers and memory: reset"""
        if not self._loaded():
            return

        self.vm.reset()
        self.console.print("[green]Virtual machine reset[/green]")
        self._show_status()

    # Breakpoints

    def do_break(self, arg: str) -> None:
        """Set or list source breakpoints: break [line]"""
        if not self._loaded():
            return

        if not arg:
            self._list_breakpoints()
            return

        try:
            line = int(arg)
        except ValueError:
            self.console.print("[red]Invalid line[/red]")
            return

        bp = self.vm.set_source_breakpoint(self.vm.source_file, line)
        state = "verified" if bp.verified else "unverified"
        self.console.print(f"[green]Breakpoint {bp.id} set at line {bp.line} ({state})[/green]")

    def do_delete(self, arg: str) -> None:
        """Delete a source breakpoint: delete <line>"""
        if not self._loaded():
            return

        try:
            line = int(arg)
        except ValueError:
            self.console.print("[red]Please specify breakpoint line[/red]")
            return

        if self.vm.clear_source_breakpoint(self.vm.source_file, line):
            self.console.print(f"[yellow]Breakpoint cleared at line {line}[/yellow]")
        else:
            self.console.print(f"[red]No breakpoint at line {line}[/red]")

    def do_clear(self, arg: str) -> None:
        """Clear all source, instruction and data breakpoints: clear"""
        if not self._loaded():
            return

        self.vm.clear_all_source_breakpoints(self.vm.source_file)
        self.vm.clear_all_instruction_breakpoints()
        self.vm.clear_all_data_breakpoints()
        self.console.print("[yellow]All breakpoints cleared[/yellow]")

    def do_ibreak(self, arg: str) -> None:
        """Break before an instruction unit: ibreak <address>"""
        if not self._loaded():
            return

        try:
            address = self._parse_value(arg)
        except ValueError:
            self.console.print("[red]Invalid address[/red]")
            return

        self.vm.set_instruction_breakpoint(address)
        self.console.print(f"[green]Instruction breakpoint set at {address}[/green]")

    def do_watch(self, arg: str) -> None:
        """Break on data access: watch <reg N|mem N|label> [read|write|readWrite]"""
        if not self._loaded():
            return

        name, mode = self._parse_watch(arg)
        if name is None:
            self.console.print("[red]Usage: watch <reg N|mem N|label> [read|write|readWrite][/red]")
            return

        if self.vm.set_data_breakpoint(name, mode):
            self.console.print(f"[green]Watching {escape(name)} ({self.vm.breakpoints.data[name].value})[/green]")
        else:
            self.console.print(f"[red]Cannot watch {escape(name)}[/red]")

    # Information display

    def do_status(self, arg: str) -> None:
        """Show VM status: status"""
        if not self._loaded():
            return

        self._show_status()

    def do_registers(self, arg: str) -> None:
        """Show registers: registers"""
        if not self._loaded():
            return

        self._show_registers()

    def do_memory(self, arg: str) -> None:
        """Show defined memory cells: memory [address] [count]"""
        if not self._loaded():
            return

        address = self.last_dump_address
        count = self.last_dump_count

        parts = arg.split()
        try:
            if len(parts) >= 1:
                address = self._parse_value(parts[0])
            if len(parts) >= 2:
                count = int(parts[1])
        except ValueError:
            self.console.print("[red]Invalid address or count[/red]")
            return

        self.last_dump_address = address
        self.last_dump_count = count

        self._show_memory(address, count)

    def do_program(self, arg: str) -> None:
        """Show program lines: program [start] [count]"""
        if not self._loaded():
            return

        start = max(0, self.vm.current_line - 5)
        count = 10

        parts = arg.split()
        try:
            if len(parts) >= 1:
                start = int(parts[0])
            if len(parts) >= 2:
                count = int(parts[1])
        except ValueError:
            self.console.print("[red]Invalid start line or count[/red]")
            return

        self._show_program(start, count)

    # Register modification

    def do_set(self, arg: str) -> None:
        """Set register: set reg <reg> <value>"""
        if not self._loaded():
            return

        parts = arg.split()
        if len(parts) != 3 or parts[0] != 'reg':
            self.console.print("[red]Usage: set reg <reg> <value>[/red]")
            return

        try:
            reg_id = int(parts[1])
            self.vm.set_register(reg_id, self._parse_value(parts[2]))
            self.console.print(f"[green]reg {reg_id} = {self.vm.get_register(reg_id)}[/green]")
        except ValueError:
            self.console.print("[red]Invalid register or value[/red]")
        except VMError as e:
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")

    # Utility commands

    def do_quit(self, arg: str) -> bool:
        """Quit the debugger: quit"""
        self.console.print("[blue]Goodbye![/blue]")
        return True

    def do_exit(self, arg: str) -> bool:
        """Exit the debugger: exit"""
        return self.do_quit(arg)

    def do_help(self, arg: str) -> None:
        """Show help: help [command]"""
        if arg:
            super().do_help(arg)
        else:
            self.console.print(Panel(
                "[bold]LC-2K Debugger Commands[/bold]\n\n"
                "[green]File Operations:[/green]\n"
                "  load <file>        - Load assembly file\n\n"
                "[green]Execution Control:[/green]\n"
                "  run [lines]        - Run program from the start\n"
                "  continue [lines]   - Continue execution\n"
                "  step [count]       - Execute line(s)\n"
                "  stepi [count]      - Advance instruction unit(s)\n"
                "  reset              - Reload program\n\n"
                "[green]Breakpoints:[/green]\n"
                "  break [line]       - Set/list breakpoints\n"
                "  delete <line>      - Delete breakpoint\n"
                "  clear              - Clear all breakpoints\n"
                "  ibreak <addr>      - Instruction breakpoint\n"
                "  watch <name> [rw]  - Data breakpoint\n\n"
                "[green]Information:[/green]\n"
                "  status             - Show VM status\n"
                "  registers          - Show registers\n"
                "  memory [addr] [n]  - Show memory\n"
                "  program [line] [n] - Show program\n\n"
                "[green]Modification:[/green]\n"
                "  set reg <r> <v>    - Set register\n\n"
                "[green]Other:[/green]\n"
                "  help [cmd]         - Show help\n"
                "  quit/exit          - Exit debugger",
                title="Help",
                border_style="blue"
            ))

    # Helper methods

    def _show_status(self) -> None:
        """Display VM status."""
        state = self.vm.get_state()
        cpu_state = state['cpu']
        vm_state = state['vm']

        status_text = f"""[bold]Program:[/bold] {escape(str(vm_state['program']))}
[bold]State:[/bold] {vm_state['state']}
[bold]Line:[/bold] {vm_state['line']}
[bold]Instruction:[/bold] {vm_state['instruction']}
[bold]Lines executed:[/bold] {cpu_state['instruction_count']}"""

        if vm_state['stop_reason']:
            status_text += f"\n[bold]Stop reason:[/bold] {vm_state['stop_reason']}"
        if vm_state['exception']:
            status_text += f"\n[bold]Exception:[/bold] {escape(vm_state['exception'])}"

        self.console.print(Panel(status_text, title="VM Status", border_style="green"))

    def _show_registers(self) -> None:
        """Display registers."""
        table = Table(title="Registers")
        table.add_column("Reg", style="cyan")
        table.add_column("Dec", style="yellow")
        table.add_column("Hex", style="green")

        for name, value in self.vm.get_registers():
            table.add_row(name, f"{value}", f"0x{value & 0xFFFFFFFF:08X}")

        self.console.print(table)

    def _show_memory(self, address: int, count: int) -> None:
        """Display defined memory cells."""
        table = Table(title=f"Memory ({address}..{address + count - 1})")
        table.add_column("Address", style="cyan")
        table.add_column("Dec", style="yellow")
        table.add_column("Hex", style="green")

        for addr, value in self.vm.get_memory(address, count):
            table.add_row(f"{addr}", f"{value}", f"0x{value & 0xFFFFFFFF:08X}")

        self.console.print(table)

    def _show_program(self, start: int, count: int) -> None:
        """Display program lines."""
        program = self.vm.program
        bp_lines = {bp.line for bp in self.vm.breakpoints.source_for(self.vm.source_file)}

        table = Table(title="Program")
        table.add_column("Line", style="cyan")
        table.add_column("Source", style="green")
        table.add_column("PC", style="red")

        for line in range(max(0, start), min(start + count, program.line_count())):
            pc_marker = ">>>" if line == self.vm.current_line else ""
            breakpoint_marker = "*" if line in bp_lines else ""
            table.add_row(
                f"{line:4d}",
                escape(program.line_at(line).expandtabs(8)),
                f"{pc_marker} {breakpoint_marker}"
            )

        self.console.print(table)

    def _list_breakpoints(self) -> None:
        """List all breakpoints."""
        bps = self.vm.breakpoints.source_for(self.vm.source_file)
        if not bps and not self.vm.breakpoints.instructions and not self.vm.breakpoints.data:
            self.console.print("[yellow]No breakpoints set[/yellow]")
            return

        table = Table(title="Breakpoints")
        table.add_column("Kind", style="cyan")
        table.add_column("Where", style="green")
        table.add_column("Detail", style="yellow")

        for bp in sorted(bps, key=lambda b: b.line):
            table.add_row(f"source #{bp.id}", f"line {bp.line}",
                          "verified" if bp.verified else "unverified")
        for address in sorted(self.vm.breakpoints.instructions):
            table.add_row("instruction", f"{address}", "")
        for name, mode in self.vm.breakpoints.data.items():
            table.add_row("data", escape(name), mode.value)

        self.console.print(table)

    def _parse_count(self, arg: str, default: Optional[int]) -> Optional[int]:
        if not arg:
            return default
        try:
            return int(arg)
        except ValueError:
            self.console.print("[red]Invalid count[/red]")
            return None

    def _parse_watch(self, arg: str) -> Tuple[Optional[str], DataAccess]:
        """Split 'reg 3 read' into the location name and the access mode."""
        parts = arg.split()
        mode = DataAccess.WRITE
        if parts and parts[-1] in {m.value for m in DataAccess}:
            mode = DataAccess(parts.pop())
        if not parts:
            return None, mode
        return ' '.join(parts), mode

    def _parse_value(self, value_str: str) -> int:
        """Parse value string (hex or decimal)."""
        return int(value_str.strip(), 0)


def start_interactive_debugger(program_file: Optional[str] = None,
                               stop_on_entry: bool = False) -> None:
    """Start the interactive debugger.

    Args:
        program_file: Optional program file to load automatically
        stop_on_entry: Position on the first statement after loading
    """
    debugger = LC2KDebugger()

    if program_file:
        debugger.onecmd(f"load {program_file}")
        if stop_on_entry and debugger.vm.program is not None:
            debugger.vm.start(program_file, stop_on_entry=True)

    try:
        debugger.cmdloop()
    except KeyboardInterrupt:
        print("\nGoodbye!")
