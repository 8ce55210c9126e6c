import itertools
import random

from stateforge.automaton import (
    DETERMINISTIC_MODES, MOVES, WILDCARD, Automaton, FASymbol, MealySymbol, Mode, MultiTapeSymbol, PDASymbol, State,
    TMSymbol, Transition, parse_symbol,
)
from stateforge.simulation import simulate
from stateforge.tape import BLANK


def make_automaton(mode, transitions, initial='q0', accepting=(), states=(), alphabet=None, labels=None, tapes=1):
    """
    Build an automaton from (source, target, [label, ...]) triples.

    States are created in order of first mention: the initial state, then the
    transition endpoints, then any extra `states`.
    """
    mode = Mode.parse(mode)
    labels = labels or {}
    order = [initial]
    for source, target, _ in transitions:
        order.extend([source, target])
    order.extend(states)
    order = list(dict.fromkeys(order))

    return Automaton(
        mode=mode,
        states=tuple(
            State(
                id=state,
                label=labels.get(state, state),
                x=100.0 * i,
                y=100.0,
                is_initial=state == initial,
                is_accepting=state in accepting,
            )
            for i, state in enumerate(order)
        ),
        transitions=tuple(
            Transition(f"t{i}", source, target, tuple(parse_symbol(mode, label, tapes) for label in symbols))
            for i, (source, target, symbols) in enumerate(transitions)
        ),
        alphabet=alphabet,
        tapes=tapes,
    )


def all_strings(alphabet, max_length):
    for length in range(max_length + 1):
        for letters in itertools.product(alphabet, repeat=length):
            yield ''.join(letters)


def accepted(model, word, options=None):
    return simulate(model, word, options).accepted


def random_nfa(rng: random.Random, alphabet=('a', 'b'), max_states=4, epsilon=True):
    count = rng.randint(1, max_states)
    states = [f"q{i}" for i in range(count)]
    symbols = list(alphabet) + ([''] if epsilon else [])

    grouped = {}
    for _ in range(rng.randint(0, count * 3)):
        source, target = rng.choice(states), rng.choice(states)
        label = rng.choice(symbols) or 'ε'
        grouped.setdefault((source, target), [])
        if label not in grouped[(source, target)]:
            grouped[(source, target)].append(label)

    accepting = [state for state in states if rng.random() < 0.4]
    return make_automaton(
        Mode.NFA,
        [(source, target, labels) for (source, target), labels in grouped.items()],
        accepting=accepting,
        states=states,
        alphabet=tuple(alphabet),
    )


def random_dfa(rng: random.Random, alphabet=('a', 'b'), max_states=5, partial=True):
    count = rng.randint(1, max_states)
    states = [f"q{i}" for i in range(count)]

    grouped = {}
    for state in states:
        for symbol in alphabet:
            if partial and rng.random() < 0.2:
                continue
            grouped.setdefault((state, rng.choice(states)), []).append(symbol)

    accepting = [state for state in states if rng.random() < 0.5]
    return make_automaton(
        Mode.DFA,
        [(source, target, labels) for (source, target), labels in grouped.items()],
        accepting=accepting,
        states=states,
        alphabet=tuple(alphabet),
    )


INPUT_SYMBOLS = ('a', 'b', '0', '1')
STACK_SYMBOLS = ('Z', 'A', 'B')
TAPE_SYMBOLS = INPUT_SYMBOLS + (BLANK, WILDCARD)


def _random_spec(rng: random.Random, mode: Mode, tapes: int):
    if mode == Mode.NFA:
        return FASymbol(rng.choice(INPUT_SYMBOLS + ('',)))
    if mode in (Mode.DFA, Mode.MOORE):
        return FASymbol(rng.choice(INPUT_SYMBOLS))
    if mode == Mode.PDA:
        push = tuple(rng.choice(STACK_SYMBOLS) for _ in range(rng.randint(0, 3)))
        return PDASymbol(rng.choice(INPUT_SYMBOLS + ('',)), rng.choice(STACK_SYMBOLS + ('',)), push)
    if mode == Mode.MEALY:
        return MealySymbol(rng.choice(INPUT_SYMBOLS), rng.choice(('', '0', '1', '10')))
    if tapes == 1:
        return TMSymbol(rng.choice(TAPE_SYMBOLS), rng.choice(TAPE_SYMBOLS), rng.choice(MOVES))
    return MultiTapeSymbol(
        tuple(rng.choice(TAPE_SYMBOLS) for _ in range(tapes)),
        tuple(rng.choice(TAPE_SYMBOLS) for _ in range(tapes)),
        tuple(rng.choice(MOVES) for _ in range(tapes)),
    )


def random_model(rng: random.Random, mode, max_states=4):
    """A valid model of any mode, with random layout, labels and symbols."""
    mode = Mode.parse(mode)
    tapes = rng.choice((1, 2, 3)) if mode == Mode.TM else 1
    ids = [f"q{i}" for i in range(rng.randint(1, max_states))]

    states = tuple(
        State(
            id=state,
            label=rng.choice((state, f"{state}'", '')),
            x=float(rng.randint(0, 800)),
            y=round(rng.uniform(0, 600), 2),
            is_initial=i == 0,
            is_accepting=rng.random() < 0.4,
            output=rng.choice((None, '0', '1', '01')) if mode == Mode.MOORE else None,
        )
        for i, state in enumerate(ids)
    )

    used = {state: set() for state in ids}
    transitions = []
    for _ in range(rng.randint(0, len(ids) * 2)):
        source, target = rng.choice(ids), rng.choice(ids)
        specs = []
        for _ in range(rng.randint(1, 3)):
            spec = _random_spec(rng, mode, tapes)
            if mode in DETERMINISTIC_MODES:
                if spec.read in used[source]:
                    continue
                used[source].add(spec.read)
            if spec not in specs:
                specs.append(spec)
        if specs:
            transitions.append(Transition(f"t{len(transitions)}", source, target, tuple(specs)))

    alphabet = None
    if rng.random() < 0.3:
        alphabet = tuple(sorted(rng.sample(INPUT_SYMBOLS, rng.randint(1, len(INPUT_SYMBOLS)))))
    extras = (('editorTheme', {'dark': True}),) if rng.random() < 0.2 else ()

    return Automaton(mode, states, tuple(transitions), alphabet=alphabet, extras=extras, tapes=tapes)
