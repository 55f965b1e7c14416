"""LC-2K Virtual Machine Memory

One word-sized cell per source line; addresses are line numbers.
"""

from typing import Dict, List, Optional, Tuple

from .exceptions import InvalidMemoryException, UnresolvedLabelException


WORD_MASK = 0xFFFFFFFF
SIGN_BIT = 0x80000000


def to_int32(value: int) -> int:
    """Truncate to 32 bits and reinterpret as a signed integer."""
    value &= WORD_MASK
    if value & SIGN_BIT:
        value -= 1 << 32
    return value


class Memory:
    """Flat line-addressed memory plus the program's label table."""

    def __init__(self, size: int = 0, labels: Optional[Dict[str, int]] = None):
        """Initialize memory.

        Args:
            size: Number of cells, equal to the program's line count
            labels: Label name to declaring line mapping
        """
        self.cells: List[Optional[int]] = [None] * size
        self.labels: Dict[str, int] = dict(labels or {})

        # Memory access statistics
        self.read_count = 0
        self.write_count = 0

    @property
    def size(self) -> int:
        return len(self.cells)

    def contains(self, address: int) -> bool:
        return 0 <= address < len(self.cells)

    def read(self, address: int) -> int:
        """Read a defined cell.

        Raises:
            InvalidMemoryException: If the address is out of range or the
                cell was never written
        """
        if not self.contains(address):
            raise InvalidMemoryException(address)
        value = self.cells[address]
        if value is None:
            raise InvalidMemoryException(address, "undefined cell")
        self.read_count += 1
        return value

    def write(self, address: int, value: int) -> None:
        if not self.contains(address):
            raise InvalidMemoryException(address)
        self.cells[address] = to_int32(value)
        self.write_count += 1

    def peek(self, address: int) -> Optional[int]:
        """Cell contents without access checks or statistics."""
        if self.contains(address):
            return self.cells[address]
        return None

    def resolve_label(self, label: str) -> int:
        """Resolve a label to the line it is declared on.

        Raises:
            UnresolvedLabelException: If label is not found
        """
        if label in self.labels:
            return self.labels[label]
        raise UnresolvedLabelException(label)

    def dump(self, start: int = 0, count: int = 256) -> List[Tuple[int, int]]:
        """Defined cells in [start, start + count) as (address, value) pairs."""
        result = []
        for address in range(max(0, start), min(start + count, len(self.cells))):
            value = self.cells[address]
            if value is not None:
                result.append((address, value))
        return result

    def get_memory_map(self) -> Dict[str, object]:
        """Get memory information for debugging."""
        return {
            'size': len(self.cells),
            'defined': sum(1 for cell in self.cells if cell is not None),
            'labels': dict(self.labels),
            'statistics': {
                'reads': self.read_count,
                'writes': self.write_count
            }
        }
