import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from .errors import ValidationError

EPSILON = 'ε'
EPSILON_SYMBOLS = frozenset({'', 'ε', 'ϵ', 'λ'})
WILDCARD = '*'
MOVES = ('L', 'R', 'S')


class Mode(str, Enum):
    DFA = 'dfa'
    NFA = 'nfa'
    PDA = 'pda'
    TM = 'tm'
    MEALY = 'mealy'
    MOORE = 'moore'

    @classmethod
    def parse(cls, value: Union[str, 'Mode']) -> 'Mode':
        """Accepts a Mode or its name in any case, e.g. 'NFA' or 'nfa'."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown automaton mode '{value}'") from None


DETERMINISTIC_MODES = frozenset({Mode.DFA, Mode.MEALY, Mode.MOORE})


@dataclass(frozen=True)
class State:
    id: str
    label: str = ''
    x: float = 0.0
    y: float = 0.0
    is_initial: bool = False
    is_accepting: bool = False
    output: Optional[str] = None

    def moore_output(self) -> str:
        """Output emitted when a Moore machine visits this state."""
        if self.output is not None:
            return self.output
        return parse_moore_label(self.label)[1]


@dataclass(frozen=True)
class FASymbol:
    """Read symbol of a DFA/NFA/Moore edge; an empty read is an ε-move."""
    read: str

    @property
    def is_epsilon(self) -> bool:
        return self.read == ''


@dataclass(frozen=True)
class PDASymbol:
    """
    Read/pop/push triple of a PDA edge.

    `read` and `pop` are a single symbol or '' for "nothing". `push` is listed in push
    order, so its last element ends up on top of the stack.
    """
    read: str
    pop: str
    push: Tuple[str, ...] = ()

    @property
    def is_epsilon(self) -> bool:
        return self.read == ''


@dataclass(frozen=True)
class TMSymbol:
    read: str
    write: str
    move: str

    is_epsilon = False


@dataclass(frozen=True)
class MultiTapeSymbol:
    """
    Lock-step action of a k-tape Turing machine: one read, write and head move per
    tape. The input is written on the first tape.
    """
    reads: Tuple[str, ...]
    writes: Tuple[str, ...]
    moves: Tuple[str, ...]

    is_epsilon = False

    def __post_init__(self):
        object.__setattr__(self, 'reads', tuple(self.reads))
        object.__setattr__(self, 'writes', tuple(self.writes))
        object.__setattr__(self, 'moves', tuple(self.moves))

    @property
    def read(self) -> str:
        return self.reads[0] if self.reads else ''


@dataclass(frozen=True)
class MealySymbol:
    read: str
    output: str

    is_epsilon = False


SymbolSpec = Union[FASymbol, PDASymbol, TMSymbol, MultiTapeSymbol, MealySymbol]

SYMBOL_SHAPES = {
    Mode.DFA: FASymbol,
    Mode.NFA: FASymbol,
    Mode.MOORE: FASymbol,
    Mode.PDA: PDASymbol,
    Mode.TM: TMSymbol,
    Mode.MEALY: MealySymbol,
}


class Edge(NamedTuple):
    """One symbol specification of a transition, expanded into its own edge."""
    transition_id: str
    source: str
    target: str
    spec: SymbolSpec


@dataclass(frozen=True)
class Transition:
    id: str
    source: str
    target: str
    symbols: Tuple[SymbolSpec, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'symbols', tuple(self.symbols))

    def expand(self) -> List[Edge]:
        return [Edge(self.id, self.source, self.target, spec) for spec in self.symbols]


@dataclass(frozen=True)
class Automaton:
    """
    An automaton as drawn by the editor: a mode tag plus states and transitions.

    Instances are immutable; every engine operation takes one and returns new data.
    `alphabet` is only set when the payload declared one explicitly, and `extras`
    keeps unknown top-level fields of an imported payload so they survive re-export.
    `tapes` is the number of tapes of a Turing machine and 1 for every other mode.
    """
    mode: Mode = Mode.DFA
    states: Tuple[State, ...] = ()
    transitions: Tuple[Transition, ...] = ()
    alphabet: Optional[Tuple[str, ...]] = None
    extras: Tuple[Tuple[str, Any], ...] = ()
    tapes: int = 1

    def __post_init__(self):
        object.__setattr__(self, 'mode', Mode.parse(self.mode))
        if isinstance(self.tapes, bool) or not isinstance(self.tapes, int) or self.tapes < 1:
            raise ValueError(f"tapes must be a positive integer, got {self.tapes!r}")
        object.__setattr__(self, 'states', tuple(self.states))
        object.__setattr__(self, 'transitions', tuple(self.transitions))
        if self.alphabet is not None:
            object.__setattr__(self, 'alphabet', tuple(self.alphabet))
        object.__setattr__(self, 'extras', tuple(self.extras))

    def state_map(self) -> Dict[str, State]:
        return {state.id: state for state in self.states}

    def initial_states(self) -> List[State]:
        return [state for state in self.states if state.is_initial]

    def initial_state(self) -> Optional[State]:
        initial = self.initial_states()
        return initial[0] if initial else None

    def accepting_ids(self) -> frozenset:
        return frozenset(state.id for state in self.states if state.is_accepting)

    def edges(self) -> List[Edge]:
        edges = []
        for transition in self.transitions:
            edges.extend(transition.expand())
        return edges

    def outgoing(self) -> Dict[str, List[Edge]]:
        """Expanded edges grouped by source state, in model order."""
        outgoing = {state.id: [] for state in self.states}
        for edge in self.edges():
            outgoing.setdefault(edge.source, []).append(edge)
        return outgoing

    def input_alphabet(self) -> Tuple[str, ...]:
        """The declared alphabet, or every non-ε read symbol used on an edge, sorted."""
        if self.alphabet is not None:
            return self.alphabet
        symbols = set()
        for edge in self.edges():
            if edge.spec.read and edge.spec.read != WILDCARD:
                symbols.add(edge.spec.read)
        return tuple(sorted(symbols))


# Label codecs: the text form each symbol shape takes in the editor and in
# native JSON payloads.

_PDA_LABEL = re.compile(r'^\s*(.+?)\s*,\s*(.+?)\s*(?:→|->)\s*(.+?)\s*$')
_TM_LABEL = re.compile(r'^\s*(.+?)\s*(?:→|->|/)\s*(.+?)\s*,\s*([LRS])\s*$', re.IGNORECASE)
_MEALY_LABEL = re.compile(r'^\s*(.+?)\s*/\s*(.+?)\s*$')
_MOORE_LABEL = re.compile(r'^(.+?)/(.+)$')


def _empty_or(symbol: str) -> str:
    return '' if symbol in EPSILON_SYMBOLS else symbol


def parse_moore_label(label: str) -> Tuple[str, str]:
    """Split a Moore state label such as 'q0/1' into ('q0', '1')."""
    match = _MOORE_LABEL.match(label)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return label, ''


def _parse_multi_tape_label(text: str, tapes: int) -> MultiTapeSymbol:
    parts = text.split(';')
    if len(parts) != 3:
        raise ValueError(f"'{text}' is not a multi-tape label of the form 'a,b; c,d; R,L'")
    reads, writes, moves = ([item.strip() for item in part.split(',')] for part in parts)
    for name, items in (('reads', reads), ('writes', writes), ('moves', moves)):
        if len(items) != tapes:
            raise ValueError(f"'{text}' lists {len(items)} {name}, expected one per tape ({tapes})")
    return MultiTapeSymbol(tuple(reads), tuple(writes), tuple(move.upper() for move in moves))


def parse_symbol(mode: Union[str, Mode], text: str, tapes: int = 1) -> SymbolSpec:
    """
    Parse the label text of one symbol into the specification the mode expects.

    A Turing machine with more than one tape uses labels of the form
    'r1,r2; w1,w2; M1,M2', one comma separated entry per tape.

    Raises:
        ValueError: If the text does not have the shape required by the mode
    """
    mode = Mode.parse(mode)
    if not isinstance(text, str):
        raise ValueError(f"Symbol must be a string, got {type(text).__name__}")

    if mode == Mode.TM and tapes > 1:
        return _parse_multi_tape_label(text, tapes)

    if mode in (Mode.DFA, Mode.NFA, Mode.MOORE):
        return FASymbol(_empty_or(text))

    if mode == Mode.PDA:
        match = _PDA_LABEL.match(text)
        if not match:
            raise ValueError(f"'{text}' is not a PDA label of the form 'a, Z → AZ'")
        push = _empty_or(match.group(3))
        # Labels list the pushed string top-first
        return PDASymbol(_empty_or(match.group(1)), _empty_or(match.group(2)), tuple(reversed(push)))

    if mode == Mode.TM:
        match = _TM_LABEL.match(text)
        if not match:
            raise ValueError(f"'{text}' is not a TM label of the form 'a → b, R'")
        return TMSymbol(match.group(1), match.group(2), match.group(3).upper())

    match = _MEALY_LABEL.match(text)
    if not match:
        raise ValueError(f"'{text}' is not a Mealy label of the form 'a/1'")
    return MealySymbol(match.group(1), _empty_or(match.group(2)))


def format_symbol(spec: SymbolSpec) -> str:
    """Inverse of parse_symbol."""
    if isinstance(spec, FASymbol):
        return spec.read or EPSILON
    if isinstance(spec, PDASymbol):
        push = ''.join(reversed(spec.push)) or EPSILON
        return f"{spec.read or EPSILON}, {spec.pop or EPSILON} → {push}"
    if isinstance(spec, TMSymbol):
        return f"{spec.read} → {spec.write}, {spec.move}"
    if isinstance(spec, MultiTapeSymbol):
        return '; '.join(','.join(items) for items in (spec.reads, spec.writes, spec.moves))
    if isinstance(spec, MealySymbol):
        return f"{spec.read}/{spec.output or EPSILON}"
    raise TypeError(f"Unknown symbol specification {spec!r}")


# Validation

def _check_symbol(transition: Transition, role: str, symbol: str, in_label: bool = True) -> None:
    """Every read, pop, push or tape symbol is one character that is not an ε alias."""
    # Labels are trimmed when parsed, so whitespace cannot stand for itself there
    if len(symbol) != 1 or symbol in EPSILON_SYMBOLS or (in_label and symbol.isspace()):
        raise ValidationError(
            'transition-shape',
            f"Transition '{transition.id}' has {role} '{symbol}', expected one character other than ε"
        )


def _check_tape_action(transition: Transition, spec: Union[TMSymbol, MultiTapeSymbol], tapes: int) -> None:
    if isinstance(spec, TMSymbol):
        reads, writes, moves = (spec.read,), (spec.write,), (spec.move,)
    else:
        reads, writes, moves = spec.reads, spec.writes, spec.moves
    if not len(reads) == len(writes) == len(moves) == tapes:
        raise ValidationError(
            'transition-shape', f"Transition '{transition.id}' must read, write and move once on each of {tapes} tapes"
        )
    for symbol in reads + writes:
        if not symbol:
            raise ValidationError(
                'transition-shape', f"Transition '{transition.id}' must read and write a tape symbol"
            )
        _check_symbol(transition, 'tape symbol', symbol)
        if tapes > 1 and symbol in (',', ';'):
            raise ValidationError(
                'transition-shape', f"Transition '{transition.id}' uses the label separator '{symbol}' as a tape symbol"
            )
    for move in moves:
        if move not in MOVES:
            raise ValidationError(
                'transition-shape', f"Transition '{transition.id}' has unknown head move '{move}'"
            )


def _check_transition_shapes(model: Automaton) -> None:
    expected = SYMBOL_SHAPES[model.mode]
    if model.mode == Mode.TM and model.tapes > 1:
        expected = MultiTapeSymbol
    elif model.tapes != 1:
        raise ValidationError(
            'transition-shape', f"Only a Turing machine can have more than one tape, not a {model.mode.value}"
        )

    for transition in model.transitions:
        if not transition.symbols:
            raise ValidationError('transition-shape', f"Transition '{transition.id}' carries no symbols")

        for spec in transition.symbols:
            if type(spec) is not expected:
                raise ValidationError(
                    'transition-shape',
                    f"Transition '{transition.id}' carries a {type(spec).__name__} "
                    f"but {model.mode.value} transitions need a {expected.__name__}"
                )
            if isinstance(spec, FASymbol):
                if spec.is_epsilon and model.mode != Mode.NFA:
                    raise ValidationError(
                        'transition-shape',
                        f"Transition '{transition.id}' is an ε-move, only allowed in NFA mode"
                    )
                if not spec.is_epsilon:
                    _check_symbol(transition, 'read symbol', spec.read, in_label=False)
            elif isinstance(spec, PDASymbol):
                for role, symbol in (('read symbol', spec.read), ('pop symbol', spec.pop)):
                    if symbol:
                        _check_symbol(transition, role, symbol)
                for symbol in spec.push:
                    _check_symbol(transition, 'push symbol', symbol)
            elif isinstance(spec, (TMSymbol, MultiTapeSymbol)):
                _check_tape_action(transition, spec, model.tapes)
            elif isinstance(spec, MealySymbol):
                if not spec.read:
                    raise ValidationError(
                        'transition-shape', f"Transition '{transition.id}' must read an input symbol"
                    )
                _check_symbol(transition, 'read symbol', spec.read)
                if spec.output and (spec.output in EPSILON_SYMBOLS or spec.output != spec.output.strip()):
                    raise ValidationError(
                        'transition-shape',
                        f"Transition '{transition.id}' has output '{spec.output}', which its label cannot carry"
                    )

    if model.mode in DETERMINISTIC_MODES:
        seen = Counter((edge.source, edge.spec.read) for edge in model.edges())
        for (source, read), count in seen.items():
            if count > 1:
                raise ValidationError(
                    'transition-shape',
                    f"State '{source}' has {count} transitions on '{read}' in a deterministic {model.mode.value}"
                )


def _check_endpoints(model: Automaton) -> None:
    state_ids = {state.id for state in model.states}
    for transition in model.transitions:
        for endpoint in (transition.source, transition.target):
            if endpoint not in state_ids:
                raise ValidationError(
                    'transition-endpoints',
                    f"Transition '{transition.id}' references unknown state '{endpoint}'"
                )


def _check_initial_state(model: Automaton) -> None:
    count = len(model.initial_states())
    if count == 0:
        raise ValidationError('initial-state', 'Automaton has no initial state')
    if count > 1:
        raise ValidationError('initial-state', f"Automaton has {count} initial states, expected exactly one")


def _check_unique_ids(model: Automaton) -> None:
    for kind, ids in (('state', [s.id for s in model.states]), ('transition', [t.id for t in model.transitions])):
        duplicates = [item for item, count in Counter(ids).items() if count > 1]
        if duplicates:
            raise ValidationError('unique-ids', f"Duplicate {kind} id '{duplicates[0]}'")


def validate_automaton(model: Automaton) -> None:
    """
    Checks the structural invariants of an automaton and raises on the first violation.

    The checks run in a fixed order: transition shape, transition endpoints,
    initial-state cardinality, then id uniqueness.

    Raises:
        ValidationError: Naming the violated invariant
    """
    _check_transition_shapes(model)
    _check_endpoints(model)
    _check_initial_state(model)
    _check_unique_ids(model)


def check_automaton(model: Automaton) -> Dict:
    """
    Non-raising form of validate_automaton.

    Returns:
        Dict: {'valid': True} or {'valid': False, 'error': str, 'invariant': str}
    """
    try:
        validate_automaton(model)
    except ValidationError as e:
        return {'valid': False, 'error': e.message, 'invariant': e.invariant}
    return {'valid': True}
