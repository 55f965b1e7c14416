"""LC-2K Assembly Loader

Loads program text, collects labels and resolves .fill directives into the
initial memory image.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .exceptions import InvalidInstructionException, UnresolvedLabelException
from .instruction import InstructionShape, decode_line, declared_label
from .memory import Memory
from .source import SourceProgram


logger = logging.getLogger(__name__)


@dataclass
class LoadedProgram:
    """Result of a successful load."""
    source: SourceProgram
    labels: Dict[str, int]
    memory: Memory


class AssemblyLoader:
    """Loads assembly text into a source model and memory image."""

    def __init__(self):
        self.labels: Dict[str, int] = {}

    def load_from_file(self, filename: str) -> LoadedProgram:
        """Load assembly from file.

        Args:
            filename: Path to assembly file

        Returns:
            The loaded program
        """
        with open(filename, 'r', encoding='utf-8') as f:
            content = f.read()

        return self.load_from_string(content, filename)

    def load_from_string(self, assembly_code: str, path: Optional[str] = None) -> LoadedProgram:
        """Load assembly from string.

        Args:
            assembly_code: Assembly code as string
            path: Path the code was read from, if any

        Returns:
            The loaded program

        Raises:
            UnresolvedLabelException: If a .fill references an unknown label
        """
        self.labels.clear()
        source = SourceProgram(assembly_code, path)

        # First pass: collect labels, first declaration wins
        for line_num, line in enumerate(source.lines):
            label = declared_label(line)
            if label is not None and label not in self.labels:
                self.labels[label] = line_num

        memory = Memory(source.line_count(), self.labels)

        # Second pass: resolve .fill directives
        for line_num, line in enumerate(source.lines):
            try:
                instruction = decode_line(line, line_num)
            except InvalidInstructionException:
                # Reported when (and if) the line executes
                continue
            if instruction.shape is not InstructionShape.DIRECTIVE:
                continue

            value = instruction.operands[0]
            if isinstance(value, str):
                if value not in self.labels:
                    raise UnresolvedLabelException(value, line_num)
                value = self.labels[value]
            memory.write(line_num, value)

        logger.info("Loaded %d lines, %d labels from %s",
                    source.line_count(), len(self.labels), path or '<string>')
        return LoadedProgram(source, dict(self.labels), memory)


def load_assembly_file(filename: str) -> LoadedProgram:
    """Convenience function to load assembly from file."""
    loader = AssemblyLoader()
    return loader.load_from_file(filename)


def load_assembly_string(assembly_code: str, path: Optional[str] = None) -> LoadedProgram:
    """Convenience function to load assembly from string."""
    loader = AssemblyLoader()
    return loader.load_from_string(assembly_code, path)
