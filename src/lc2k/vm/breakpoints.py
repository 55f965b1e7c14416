"""LC-2K Breakpoint Tables

Source, instruction and data breakpoints, and the rules that verify and
adjust source breakpoints against the program text.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .source import SourceProgram


class DataAccess(Enum):
    """Access modes a data breakpoint can watch for."""
    READ = "read"
    WRITE = "write"
    READ_WRITE = "readWrite"

    def matches(self, access: str) -> bool:
        return self is DataAccess.READ_WRITE or self.value == access


@dataclass
class SourceBreakpoint:
    """A breakpoint bound to a source line."""
    id: int
    line: int
    verified: bool = False
    adjusted: bool = field(default=False, repr=False)


@dataclass
class BreakpointMarkers:
    """Line prefixes and words that steer breakpoint verification."""
    continuation: str = '+'
    predecessor: str = '-'
    lazy: str = 'lazy'


def normalize_path(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


class BreakpointTable:
    """All breakpoints of a debugging session."""

    def __init__(self, markers: Optional[BreakpointMarkers] = None):
        self.markers = markers or BreakpointMarkers()
        self.source: Dict[str, List[SourceBreakpoint]] = {}
        self.instructions: Set[int] = set()
        self.data: Dict[str, DataAccess] = {}
        self._next_id = 1

    # Source breakpoints

    def add_source(self, path: str, line: int) -> SourceBreakpoint:
        bp = SourceBreakpoint(self._next_id, line)
        self._next_id += 1
        self.source.setdefault(normalize_path(path), []).append(bp)
        return bp

    def remove_source(self, path: str, line: int) -> Optional[SourceBreakpoint]:
        bps = self.source.get(normalize_path(path))
        if bps:
            for index, bp in enumerate(bps):
                if bp.line == line:
                    return bps.pop(index)
        return None

    def clear_source(self, path: str) -> None:
        self.source.pop(normalize_path(path), None)

    def source_for(self, path: Optional[str]) -> List[SourceBreakpoint]:
        if path is None:
            return []
        return self.source.get(normalize_path(path), [])

    def at_line(self, path: Optional[str], line: int) -> List[SourceBreakpoint]:
        return [bp for bp in self.source_for(path) if bp.line == line]

    def verify(self, bp: SourceBreakpoint, program: SourceProgram) -> bool:
        """Adjust and verify a breakpoint against the program text.

        Empty lines and continuation lines move the breakpoint down one
        line, predecessor lines move it up. The move happens once per
        breakpoint. Lines containing the lazy marker are left unverified
        until execution reaches them.

        Returns:
            True if the breakpoint became verified
        """
        if bp.verified or not 0 <= bp.line < program.line_count():
            return False

        text = program.line_at(bp.line)
        if not bp.adjusted:
            bp.adjusted = True
            if not text or text.startswith(self.markers.continuation):
                bp.line += 1
            if text.startswith(self.markers.predecessor):
                bp.line = max(0, bp.line - 1)

        if self.markers.lazy not in text:
            bp.verified = True
            return True
        return False

    # Instruction breakpoints

    def add_instruction(self, address: int) -> bool:
        self.instructions.add(address)
        return True

    def clear_instructions(self) -> None:
        self.instructions.clear()

    # Data breakpoints

    def add_data(self, name: str, mode: DataAccess) -> None:
        current = self.data.get(name)
        if current is not None and current is not mode:
            mode = DataAccess.READ_WRITE
        self.data[name] = mode

    def clear_data(self) -> None:
        self.data.clear()
