from typing import Dict, Iterable, Optional, Tuple

BLANK = '⊔'

_DELTAS = {'L': -1, 'R': 1, 'S': 0}


class Tape:
    """
    Immutable Turing machine tape, unbounded in both directions.

    Only written cells are stored, keyed by their integer index, so the head can
    wander arbitrarily far left or right of the input. Every mutating operation
    returns a new Tape.
    """

    __slots__ = ('_cells', 'head', 'blank', '_hash')

    def __init__(self, cells: Optional[Dict[int, str]] = None, head: int = 0, blank: str = BLANK):
        self._cells = dict(cells or {})
        self.head = head
        self.blank = blank
        self._hash = None

    @classmethod
    def from_input(cls, symbols: Iterable[str], blank: str = BLANK) -> 'Tape':
        cells = {i: symbol for i, symbol in enumerate(symbols) if symbol != blank}
        return cls(cells, 0, blank)

    def read(self) -> str:
        return self._cells.get(self.head, self.blank)

    def write(self, symbol: str) -> 'Tape':
        cells = dict(self._cells)
        if symbol == self.blank:
            cells.pop(self.head, None)
        else:
            cells[self.head] = symbol
        return Tape(cells, self.head, self.blank)

    def move(self, direction: str) -> 'Tape':
        return Tape(self._cells, self.head + _DELTAS[direction], self.blank)

    def cells(self) -> Dict[int, str]:
        return dict(self._cells)

    def contents(self) -> str:
        """Symbols between the leftmost and rightmost written cells."""
        if not self._cells:
            return ''
        low, high = min(self._cells), max(self._cells)
        return ''.join(self._cells.get(i, self.blank) for i in range(low, high + 1))

    def window(self, padding: int = 3) -> Tuple[str, int, int]:
        """
        Render the written region plus `padding` cells around the head.

        Returns:
            (text, head_index_in_text, index_of_first_cell)
        """
        low = self.head - padding
        high = self.head + padding
        if self._cells:
            low = min(low, min(self._cells))
            high = max(high, max(self._cells))
        text = ''.join(self._cells.get(i, self.blank) for i in range(low, high + 1))
        return text, self.head - low, low

    def _key(self):
        return frozenset(self._cells.items()), self.head, self.blank

    def __eq__(self, other):
        if not isinstance(other, Tape):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        if self._hash is None:
            self._hash = hash(self._key())
        return self._hash

    def __repr__(self):
        return f"Tape({self.contents()!r}, head={self.head})"

    def to_dict(self) -> Dict:
        text, head_index, start = self.window()
        return {
            'cells': {str(index): symbol for index, symbol in sorted(self._cells.items())},
            'head': self.head,
            'blank': self.blank,
            'window': text,
            'window_head': head_index,
            'window_start': start,
        }
