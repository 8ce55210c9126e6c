import logging
import math
import re
from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .automaton import (
    EPSILON_SYMBOLS, Automaton, FASymbol, MealySymbol, Mode, State, Transition, parse_moore_label,
    validate_automaton,
)
from .errors import UnsupportedConversionError
from .properties import reachable_states

logger = logging.getLogger(__name__)

PRODUCT_OPERATIONS = ('union', 'intersection', 'difference')


@dataclass(frozen=True)
class SubsetStep:
    """One δ(subset, symbol) = result computation of the subset construction."""
    subset: Tuple[str, ...]
    subset_label: str
    symbol: str
    result: Tuple[str, ...]
    result_label: str
    is_new: bool

    def to_dict(self) -> Dict:
        return {
            'subset': list(self.subset),
            'subset_label': self.subset_label,
            'symbol': self.symbol,
            'result': list(self.result),
            'result_label': self.result_label,
            'is_new': self.is_new,
        }


@dataclass(frozen=True)
class RefinementRound:
    """The partition of states after one round of refinement. Round 0 is {F, Q - F}."""
    index: int
    blocks: Tuple[Tuple[str, ...], ...]

    def to_dict(self) -> Dict:
        return {'index': self.index, 'blocks': [list(block) for block in self.blocks]}


@dataclass(frozen=True)
class ConversionResult:
    model: Automaton
    steps: Tuple = ()

    def to_dict(self) -> Dict:
        return {'steps': [step.to_dict() for step in self.steps]}


def _require_mode(model: Automaton, modes: Iterable[Mode], target: str) -> None:
    validate_automaton(model)
    modes = tuple(modes)
    if model.mode not in modes:
        allowed = ' or '.join(mode.value for mode in modes)
        raise UnsupportedConversionError(model.mode.value, target, f"requires a {allowed}")


def _label_key(label: str):
    """Sort q2 before q10, falling back to plain text for labels without digits."""
    digits = re.sub(r'\D', '', label)
    if digits:
        return 0, int(digits), label
    return 1, 0, label


def _set_label(ids: Iterable[str], states: Dict[str, State]) -> str:
    labels = sorted((states[i].label or i for i in ids), key=_label_key)
    return '{' + ','.join(labels) + '}'


def _circle_layout(count: int) -> List[Tuple[float, float]]:
    """Positions on a circle around the canvas centre, first state at the top."""
    cx, cy = 400, 300
    radius = max(140, count * 50)
    positions = []
    for i in range(count):
        angle = 2 * math.pi * i / count - math.pi / 2
        positions.append((cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return positions


def _merge_edges(edges: Iterable[Tuple[str, str, object]], prefix: str = 't') -> List[Transition]:
    """
    Group (source, target, spec) triples into one transition per endpoint pair.

    Transitions are numbered in order of first appearance.
    """
    grouped: Dict[Tuple[str, str], List] = {}
    for source, target, spec in edges:
        specs = grouped.setdefault((source, target), [])
        if spec not in specs:
            specs.append(spec)
    return [
        Transition(f"{prefix}{i}", source, target, tuple(specs))
        for i, ((source, target), specs) in enumerate(grouped.items())
    ]


def _fresh_id(base: str, taken: Iterable[str]) -> str:
    taken = set(taken)
    candidate = base
    counter = 1
    while candidate in taken:
        candidate = f"{base}_{counter}"
        counter += 1
    return candidate


def remove_unreachable_states(model: Automaton) -> Automaton:
    """Remove states that are unreachable from the initial state, with their transitions."""
    reachable = set(reachable_states(model))
    return replace(
        model,
        states=tuple(state for state in model.states if state.id in reachable),
        transitions=tuple(
            t for t in model.transitions if t.source in reachable and t.target in reachable
        ),
    )


def subset_construction(model: Automaton) -> ConversionResult:
    """
    Converts an NFA (with or without ε-moves) into an equivalent DFA.

    Subsets are explored breadth first from the ε-closure of the initial state, trying
    the alphabet in sorted order. A symbol that leads nowhere gets no transition, so
    the result may be partial; complete_dfa adds the trap state if one is wanted.

    Args:
        model: A valid DFA or NFA

    Returns:
        ConversionResult whose model is the DFA (states d0, d1, ... in discovery order,
        labelled with their subset) and whose steps list every δ(subset, symbol)

    Raises:
        ValidationError: If the model is invalid
        UnsupportedConversionError: If the model is not a finite automaton
    """
    _require_mode(model, (Mode.NFA, Mode.DFA), Mode.DFA.value)

    states = model.state_map()
    order = {state.id: i for i, state in enumerate(model.states)}
    outgoing = model.outgoing()
    accepting = model.accepting_ids()
    alphabet = sorted(model.input_alphabet())

    closure_cache: Dict[FrozenSet[str], FrozenSet[str]] = {}

    def epsilon_closure(ids: FrozenSet[str]) -> FrozenSet[str]:
        if ids in closure_cache:
            return closure_cache[ids]
        closure = set(ids)
        stack = list(ids)
        while stack:
            current = stack.pop()
            for edge in outgoing.get(current, ()):
                if edge.spec.is_epsilon and edge.target not in closure:
                    closure.add(edge.target)
                    stack.append(edge.target)
        closure_cache[ids] = frozenset(closure)
        return closure_cache[ids]

    def move(ids: FrozenSet[str], symbol: str) -> FrozenSet[str]:
        return frozenset(
            edge.target for state in ids for edge in outgoing.get(state, ())
            if not edge.spec.is_epsilon and edge.spec.read == symbol
        )

    def ordered(ids: FrozenSet[str]) -> Tuple[str, ...]:
        return tuple(sorted(ids, key=order.__getitem__))

    start = epsilon_closure(frozenset({model.initial_state().id}))
    discovered: Dict[FrozenSet[str], str] = {start: 'd0'}
    labels = {start: _set_label(start, states)}
    queue = deque([start])
    edges = []
    steps = []

    while queue:
        current = queue.popleft()
        for symbol in alphabet:
            moved = move(current, symbol)
            if not moved:
                continue
            result = epsilon_closure(moved)

            is_new = result not in discovered
            if is_new:
                discovered[result] = f"d{len(discovered)}"
                labels[result] = _set_label(result, states)
                queue.append(result)

            edges.append((discovered[current], discovered[result], FASymbol(symbol)))
            steps.append(SubsetStep(
                ordered(current), labels[current], symbol, ordered(result), labels[result], is_new
            ))

    positions = _circle_layout(len(discovered))
    dfa_states = tuple(
        State(
            id=state_id,
            label=labels[subset],
            x=positions[i][0],
            y=positions[i][1],
            is_initial=subset == start,
            is_accepting=bool(subset & accepting),
        )
        for i, (subset, state_id) in enumerate(discovered.items())
    )

    dfa = Automaton(Mode.DFA, dfa_states, _merge_edges(edges), alphabet=model.alphabet)
    logger.debug(f"Subset construction: {len(model.states)} NFA states -> {len(dfa_states)} DFA states")
    return ConversionResult(dfa, tuple(steps))


def nfa_to_dfa(model: Automaton) -> Automaton:
    """Converts an NFA to a DFA using the subset construction algorithm."""
    return subset_construction(model).model


def dfa_to_nfa(model: Automaton) -> Automaton:
    """Every DFA already is an NFA; only the mode tag changes."""
    _require_mode(model, (Mode.DFA,), Mode.NFA.value)
    return replace(model, mode=Mode.NFA)


def partition_refinement(model: Automaton) -> ConversionResult:
    """
    Minimises a DFA by partition refinement.

    Unreachable states are pruned first. Starting from {accepting, non-accepting}, a
    block is split whenever its members disagree on which block some symbol leads to;
    a missing transition counts as its own target. Each block of the final partition
    becomes one state, represented by the initial state if the block holds it and by
    its first member in model order otherwise.

    The result is minimal among DFAs with the same missing transitions. A partial DFA
    that also has an explicit non-accepting dead state keeps that state apart from
    the implicit one; run complete_dfa first to merge them.

    Args:
        model: A valid DFA

    Returns:
        ConversionResult with the minimal DFA and one RefinementRound per round

    Raises:
        ValidationError: If the model is invalid
        UnsupportedConversionError: If the model is not a DFA
    """
    _require_mode(model, (Mode.DFA,), 'minimal dfa')

    pruned = remove_unreachable_states(model)
    alphabet = sorted(pruned.input_alphabet())
    delta = {(edge.source, edge.spec.read): edge.target for edge in pruned.edges()}

    accepting = [state.id for state in pruned.states if state.is_accepting]
    rejecting = [state.id for state in pruned.states if not state.is_accepting]
    partition = [block for block in (accepting, rejecting) if block]
    rounds = [RefinementRound(0, tuple(tuple(block) for block in partition))]

    while True:
        block_of = {state: i for i, block in enumerate(partition) for state in block}
        refined = []
        for block in partition:
            groups: Dict[Tuple, List[str]] = {}
            for state in block:
                signature = tuple(block_of.get(delta.get((state, symbol))) for symbol in alphabet)
                groups.setdefault(signature, []).append(state)
            refined.extend(groups.values())

        if len(refined) == len(partition):
            break
        partition = refined
        rounds.append(RefinementRound(len(rounds), tuple(tuple(block) for block in partition)))

    states = pruned.state_map()
    order = {state.id: i for i, state in enumerate(pruned.states)}
    initial = pruned.initial_state().id

    representative = {}
    for block in partition:
        chosen = initial if initial in block else block[0]
        for state in block:
            representative[state] = chosen
    partition.sort(key=lambda block: order[representative[block[0]]])

    minimal_states = []
    for block in partition:
        rep = states[representative[block[0]]]
        label = rep.label if len(block) == 1 else _set_label(block, states)
        minimal_states.append(replace(rep, label=label))

    edges = []
    for block in partition:
        rep = representative[block[0]]
        for symbol in alphabet:
            target = delta.get((rep, symbol))
            if target is not None:
                edges.append((rep, representative[target], FASymbol(symbol)))

    minimal = Automaton(Mode.DFA, minimal_states, _merge_edges(edges), alphabet=model.alphabet, extras=model.extras)
    logger.debug(f"Minimisation: {len(model.states)} states -> {len(minimal_states)} in {len(rounds)} rounds")
    return ConversionResult(minimal, tuple(rounds))


def minimise_dfa(model: Automaton) -> Automaton:
    """Minimises a DFA. See partition_refinement for the algorithm."""
    return partition_refinement(model).model


def mealy_to_moore(model: Automaton) -> Automaton:
    """
    Converts a Mealy machine into a Moore machine with the same output sequences.

    Each Moore state pairs a Mealy state with the output produced on the way in. The
    start state pairs the initial state with the empty output, so for every input w
    the Moore output equals the Mealy output of w.
    """
    _require_mode(model, (Mode.MEALY,), Mode.MOORE.value)

    states = model.state_map()
    outgoing = model.outgoing()
    start = (model.initial_state().id, '')
    discovered: Dict[Tuple[str, str], str] = {start: 'm0'}
    queue = deque([start])
    edges = []

    while queue:
        current = queue.popleft()
        for edge in sorted(outgoing.get(current[0], ()), key=lambda e: e.spec.read):
            pair = (edge.target, edge.spec.output)
            if pair not in discovered:
                discovered[pair] = f"m{len(discovered)}"
                queue.append(pair)
            edges.append((discovered[current], discovered[pair], FASymbol(edge.spec.read)))

    positions = _circle_layout(len(discovered))
    moore_states = []
    for i, ((state_id, output), moore_id) in enumerate(discovered.items()):
        name = states[state_id].label or state_id
        moore_states.append(State(
            id=moore_id,
            label=f"{name}/{output}" if output else name,
            x=positions[i][0],
            y=positions[i][1],
            is_initial=(state_id, output) == start,
            is_accepting=states[state_id].is_accepting,
            output=output,
        ))

    logger.debug(f"Mealy -> Moore: {len(model.states)} states -> {len(moore_states)}")
    return Automaton(Mode.MOORE, moore_states, _merge_edges(edges), alphabet=model.alphabet)


def moore_to_mealy(model: Automaton) -> Automaton:
    """
    Converts a Moore machine into a Mealy machine.

    Every edge emits the output of the state it enters. The initial state's own
    output has no Mealy counterpart and is dropped.
    """
    _require_mode(model, (Mode.MOORE,), Mode.MEALY.value)

    outputs = {state.id: state.moore_output() for state in model.states}
    states = tuple(
        replace(state, label=parse_moore_label(state.label)[0] if state.output is None else state.label, output=None)
        for state in model.states
    )
    transitions = tuple(
        replace(t, symbols=tuple(MealySymbol(spec.read, outputs[t.target]) for spec in t.symbols))
        for t in model.transitions
    )
    return Automaton(Mode.MEALY, states, transitions, alphabet=model.alphabet, extras=model.extras)


_CONVERSIONS = {
    (Mode.NFA, Mode.DFA): nfa_to_dfa,
    (Mode.DFA, Mode.NFA): dfa_to_nfa,
    (Mode.MEALY, Mode.MOORE): mealy_to_moore,
    (Mode.MOORE, Mode.MEALY): moore_to_mealy,
}


def convert(model: Automaton, target) -> Automaton:
    """
    Converts a model to another mode.

    Supported pairs: nfa -> dfa, dfa -> nfa, mealy -> moore and moore -> mealy.

    Raises:
        ValidationError: If the model is invalid
        UnsupportedConversionError: For any other pair of modes
    """
    validate_automaton(model)
    try:
        target = Mode.parse(target)
    except ValueError:
        raise UnsupportedConversionError(model.mode.value, str(target)) from None

    conversion = _CONVERSIONS.get((model.mode, target))
    if conversion is None:
        raise UnsupportedConversionError(model.mode.value, target.value)
    return conversion(model)


def complete_dfa(model: Automaton) -> Automaton:
    """
    Completes a DFA by adding a trap state and the missing transitions if necessary.

    The trap state is placed to the right of the rightmost state, loops on every
    symbol and is never accepting. A model that is already complete is returned as is.

    Raises:
        UnsupportedConversionError: If the model is not a DFA
    """
    _require_mode(model, (Mode.DFA,), 'complete dfa')

    alphabet = list(model.input_alphabet())
    if not alphabet:
        return model

    covered: Dict[str, set] = {state.id: set() for state in model.states}
    for edge in model.edges():
        covered[edge.source].add(edge.spec.read)

    missing = []
    for state in model.states:
        symbols = [symbol for symbol in alphabet if symbol not in covered[state.id]]
        if symbols:
            missing.append((state.id, symbols))
    if not missing:
        return model

    trap_id = _fresh_id('trap', (state.id for state in model.states))
    trap = State(
        id=trap_id,
        label='trap',
        x=max([state.x for state in model.states] + [0]) + 150,
        y=sum(state.y for state in model.states) / len(model.states) if model.states else 300,
    )

    taken = [t.id for t in model.transitions]
    added = []
    for source, symbols in missing + [(trap_id, alphabet)]:
        transition_id = _fresh_id(f"{trap_id}_{source}", taken)
        taken.append(transition_id)
        added.append(Transition(transition_id, source, trap_id, tuple(FASymbol(s) for s in symbols)))

    logger.debug(f"Added trap state '{trap_id}' for {len(missing)} incomplete states")
    return replace(model, states=model.states + (trap,), transitions=model.transitions + tuple(added))


def complement_dfa(model: Automaton) -> Automaton:
    """
    Returns the complement of a DFA. The complement accepts exactly the strings
    over its alphabet that the original DFA rejects.

    Raises:
        UnsupportedConversionError: If the model is not a DFA
    """
    complete = complete_dfa(model)
    return replace(
        complete,
        states=tuple(replace(state, is_accepting=not state.is_accepting) for state in complete.states),
    )


def product_dfa(first: Automaton, second: Automaton, operation: str) -> Automaton:
    """
    Combines two finite automata with the product construction.

    NFAs are determinised first and both machines are completed over the union of
    their alphabets, so the product is complete as well.

    Args:
        first: A DFA or NFA
        second: A DFA or NFA
        operation: 'union', 'intersection' or 'difference' (first minus second)

    Raises:
        ValueError: If the operation is unknown
        UnsupportedConversionError: If either model is not a finite automaton
    """
    if operation not in PRODUCT_OPERATIONS:
        raise ValueError(f"Unknown operation '{operation}', expected one of {', '.join(PRODUCT_OPERATIONS)}")

    def prepare(model: Automaton) -> Automaton:
        _require_mode(model, (Mode.DFA, Mode.NFA), operation)
        dfa = nfa_to_dfa(model) if model.mode == Mode.NFA else model
        return complete_dfa(replace(dfa, alphabet=alphabet))

    alphabet = tuple(sorted(set(first.input_alphabet()) | set(second.input_alphabet())))
    left, right = prepare(first), prepare(second)
    left_delta = {(e.source, e.spec.read): e.target for e in left.edges()}
    right_delta = {(e.source, e.spec.read): e.target for e in right.edges()}
    left_states, right_states = left.state_map(), right.state_map()

    def is_accepting(pair: Tuple[str, str]) -> bool:
        a = left_states[pair[0]].is_accepting
        b = right_states[pair[1]].is_accepting
        if operation == 'union':
            return a or b
        if operation == 'intersection':
            return a and b
        return a and not b

    start = (left.initial_state().id, right.initial_state().id)
    discovered: Dict[Tuple[str, str], str] = {start: 'p0'}
    queue = deque([start])
    edges = []

    while queue:
        current = queue.popleft()
        for symbol in alphabet:
            pair = (left_delta[(current[0], symbol)], right_delta[(current[1], symbol)])
            if pair not in discovered:
                discovered[pair] = f"p{len(discovered)}"
                queue.append(pair)
            edges.append((discovered[current], discovered[pair], FASymbol(symbol)))

    positions = _circle_layout(len(discovered))
    states = tuple(
        State(
            id=state_id,
            label=f"({left_states[pair[0]].label or pair[0]},{right_states[pair[1]].label or pair[1]})",
            x=positions[i][0],
            y=positions[i][1],
            is_initial=pair == start,
            is_accepting=is_accepting(pair),
        )
        for i, (pair, state_id) in enumerate(discovered.items())
    )

    logger.debug(f"Product ({operation}): {len(states)} states")
    return Automaton(Mode.DFA, states, _merge_edges(edges), alphabet=alphabet)


class NFABuilder:
    """Helper class to build NFAs."""

    def __init__(self):
        self.state_counter = 0
        self.states: List[str] = []
        self.edges: List[Tuple[str, str, FASymbol]] = []

    def new_state(self) -> str:
        """Generate a new unique state."""
        state = f"q{self.state_counter}"
        self.state_counter += 1
        self.states.append(state)
        return state

    def add_transition(self, from_state: str, symbol: str, to_state: str):
        self.edges.append((from_state, to_state, FASymbol(symbol)))

    def build(self, start_state: str, accept_state: str, alphabet: Optional[Tuple[str, ...]] = None) -> Automaton:
        positions = _circle_layout(len(self.states))
        states = tuple(
            State(
                id=state,
                label=state,
                x=positions[i][0],
                y=positions[i][1],
                is_initial=state == start_state,
                is_accepting=state == accept_state,
            )
            for i, state in enumerate(self.states)
        )
        return Automaton(Mode.NFA, states, _merge_edges(self.edges), alphabet=alphabet)


class RegexParser:
    """
    Recursive descent regex parser that builds an NFA with Thompson's construction.

    Grammar, lowest precedence first: union '|', implicit concatenation, postfix
    '*', '+' and '?', then atoms (a symbol, ε in any spelling or a parenthesised expression).
    """

    POSTFIX = ('*', '+', '?')

    def __init__(self, regex: str, nfa: NFABuilder):
        self.regex = regex
        self.pos = 0
        self.nfa = nfa

    def peek(self) -> Optional[str]:
        return self.regex[self.pos] if self.pos < len(self.regex) else None

    def consume(self) -> Optional[str]:
        if self.pos < len(self.regex):
            char = self.regex[self.pos]
            self.pos += 1
            return char
        return None

    def _fragment(self, symbol: str = '') -> Tuple[str, str]:
        start = self.nfa.new_state()
        accept = self.nfa.new_state()
        self.nfa.add_transition(start, symbol, accept)
        return start, accept

    def parse(self) -> Tuple[str, str]:
        """Parse regex and return (start_state, accept_state)."""
        if not self.regex:
            return self._fragment()

        if self.regex[0] in self.POSTFIX:
            raise ValueError(
                f"Regex cannot start with '{self.regex[0]}' - postfix operators require a preceding element")

        result = self.parse_union()
        if self.pos < len(self.regex):
            raise ValueError(f"Unexpected character '{self.regex[self.pos]}' at position {self.pos}")
        return result

    def parse_union(self) -> Tuple[str, str]:
        left_start, left_accept = self.parse_concat()

        if self.peek() == '|':
            self.consume()
            if self.peek() in self.POSTFIX:
                raise ValueError(f"Unexpected '{self.peek()}' after '|' at position {self.pos}")

            right_start, right_accept = self.parse_union()

            new_start = self.nfa.new_state()
            new_accept = self.nfa.new_state()
            self.nfa.add_transition(new_start, '', left_start)
            self.nfa.add_transition(new_start, '', right_start)
            self.nfa.add_transition(left_accept, '', new_accept)
            self.nfa.add_transition(right_accept, '', new_accept)
            return new_start, new_accept

        return left_start, left_accept

    def parse_concat(self) -> Tuple[str, str]:
        """Concatenation is implicit and binds tighter than union."""
        first_start, first_accept = self.parse_postfix()

        while self.peek() is not None and self.peek() not in ('|', ')'):
            second_start, second_accept = self.parse_postfix()
            self.nfa.add_transition(first_accept, '', second_start)
            first_accept = second_accept

        return first_start, first_accept

    def parse_postfix(self) -> Tuple[str, str]:
        inner_start, inner_accept = self.parse_atom()

        while self.peek() in self.POSTFIX:
            operator = self.consume()
            new_start = self.nfa.new_state()
            new_accept = self.nfa.new_state()

            self.nfa.add_transition(new_start, '', inner_start)
            self.nfa.add_transition(inner_accept, '', new_accept)
            if operator in ('*', '?'):
                self.nfa.add_transition(new_start, '', new_accept)  # bypass
            if operator in ('*', '+'):
                self.nfa.add_transition(inner_accept, '', inner_start)  # loop

            inner_start, inner_accept = new_start, new_accept

        return inner_start, inner_accept

    def parse_atom(self) -> Tuple[str, str]:
        char = self.peek()

        if char == '(':
            self.consume()
            if self.peek() == ')':
                self.consume()
                return self._fragment()
            inner_start, inner_accept = self.parse_union()
            if self.peek() != ')':
                raise ValueError(f"Expected ')' at position {self.pos}")
            self.consume()
            return inner_start, inner_accept

        if char in EPSILON_SYMBOLS:
            self.consume()
            return self._fragment()

        if char in self.POSTFIX:
            raise ValueError(
                f"Unexpected '{char}' at position {self.pos} - postfix operators require a preceding element")

        if char is not None and char not in ('|', ')'):
            self.consume()
            return self._fragment(char)

        # Empty alternative, as in 'a|'
        return self._fragment()


def regex_to_nfa(regex: str) -> Automaton:
    """
    Convert a regular expression to an ε-NFA using Thompson's construction.

    Args:
        regex (str): The regular expression to convert. Supports single characters,
            ε, union '|', implicit concatenation, the postfix operators '*', '+' and
            '?' (also stacked, as in 'a*?') and parentheses for grouping.

    Returns:
        Automaton: An NFA with states q0, q1, ... and a single accepting state

    Raises:
        ValueError: If the regex is malformed

    Examples:
        regex_to_nfa("a?")     # Zero or one 'a'
        regex_to_nfa("(ab)*")  # Any number of "ab" sequences
    """
    builder = NFABuilder()
    parser = RegexParser(regex, builder)

    try:
        start_state, accept_state = parser.parse()
    except ValueError as e:
        raise ValueError(f"Invalid regex '{regex}': {str(e)}") from None

    nfa = builder.build(start_state, accept_state)
    logger.debug(f"Regex '{regex}' -> NFA with {len(nfa.states)} states")
    return nfa
