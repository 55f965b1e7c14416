"""LC-2K Source Model

Holds the program text as ordered lines and splits lines into words.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import OutOfRangeException


WORD_PATTERN = re.compile(r'[a-z]+', re.IGNORECASE)

# Words longer than this are offered as breakpoint columns
BREAKPOINT_WORD_LENGTH = 8


@dataclass
class Word:
    """An alphabetic word found on a source line."""
    name: str
    line: int
    column: int


def words_of(text: str, line: int = -1) -> List[Word]:
    """Split a line into runs of ASCII letters.

    Args:
        text: Line text
        line: Line number to tag the words with

    Returns:
        Words in order of appearance
    """
    return [Word(match.group(0), line, match.start())
            for match in WORD_PATTERN.finditer(text)]


class SourceProgram:
    """The lines of one loaded program."""

    def __init__(self, text: str, path: Optional[str] = None):
        self.path = path
        self.lines: List[str] = re.split(r'\r?\n', text)

        # Every word is one instruction unit; a line owns the units
        # in [instruction_starts[i], instruction_ends[i]).
        self.words: List[Word] = []
        self.instruction_starts: List[int] = []
        self.instruction_ends: List[int] = []
        for index, line in enumerate(self.lines):
            self.instruction_starts.append(len(self.words))
            self.words.extend(words_of(line, index))
            self.instruction_ends.append(len(self.words))

    def line_count(self) -> int:
        return len(self.lines)

    def line_at(self, index: int) -> str:
        if not 0 <= index < len(self.lines):
            raise OutOfRangeException(index, len(self.lines))
        return self.lines[index]

    def is_blank(self, index: int) -> bool:
        return not self.line_at(index).strip()

    def words_on(self, index: int) -> List[Word]:
        return words_of(self.line_at(index), index)

    def breakpoint_columns(self, index: int) -> List[int]:
        """Columns of words long enough to carry a column breakpoint."""
        return [word.column for word in self.words_on(index)
                if len(word.name) > BREAKPOINT_WORD_LENGTH]

    def instruction_count(self) -> int:
        return len(self.words)

    def instruction_at(self, address: int) -> Optional[Word]:
        if 0 <= address < len(self.words):
            return self.words[address]
        return None
