from collections import deque
from typing import Dict, List, Set

from .automaton import Automaton, MultiTapeSymbol, PDASymbol, TMSymbol


def _choice_key(edge):
    """What an edge is selected on: the read symbol(s), plus the popped symbol for a PDA."""
    if isinstance(edge.spec, PDASymbol):
        return edge.source, edge.spec.read, edge.spec.pop
    if isinstance(edge.spec, MultiTapeSymbol):
        return edge.source, edge.spec.reads
    return edge.source, edge.spec.read


def reachable_states(model: Automaton) -> List[str]:
    """
    Ids of the states reachable from the initial state over any edge, in BFS order.
    """
    initial = model.initial_state()
    if initial is None:
        return []

    outgoing = model.outgoing()
    reachable = {initial.id: None}
    queue = deque([initial.id])

    while queue:
        current = queue.popleft()
        for edge in outgoing.get(current, ()):
            if edge.target not in reachable:
                reachable[edge.target] = None
                queue.append(edge.target)

    return list(reachable)


def is_deterministic(model: Automaton) -> bool:
    """
    Checks if the automaton is deterministic.

    An automaton is deterministic if:
    1. It has no ε-moves
    2. No state has two edges selected by the same input (and, for a PDA, the same
       stack top). TM edges are keyed by the tape symbol they read.
    """
    seen = set()
    for edge in model.edges():
        if edge.spec.is_epsilon:
            return False
        key = _choice_key(edge)
        if key in seen:
            return False
        seen.add(key)
    return True


def is_complete(model: Automaton) -> bool:
    """
    Checks if every state has an outgoing edge for every alphabet symbol.

    ε-moves are ignored. Trivially true without states or without an alphabet.
    """
    alphabet = model.input_alphabet()
    if not model.states or not alphabet:
        return True

    covered = {}
    for edge in model.edges():
        if not edge.spec.is_epsilon:
            covered.setdefault(edge.source, set()).add(edge.spec.read)

    for state in model.states:
        if not set(alphabet) <= covered.get(state.id, set()):
            return False
    return True


def is_connected(model: Automaton) -> bool:
    """Checks if every state is reachable from the initial state."""
    if len(model.states) <= 1:
        return True
    return len(reachable_states(model)) == len(model.states)


def _strongly_connected_components(graph: Dict[str, List[str]]) -> List[List[str]]:
    """Tarjan's algorithm, driven by an explicit stack so deep graphs cannot overflow."""
    index = {}
    lowlink = {}
    on_stack = set()
    stack = []
    components = []
    counter = 0

    for root in graph:
        if root in index:
            continue
        work = [(root, iter(graph[root]))]
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, successors = work[-1]
            advanced = False
            for successor in successors:
                if successor not in index:
                    index[successor] = lowlink[successor] = counter
                    counter += 1
                    stack.append(successor)
                    on_stack.add(successor)
                    work.append((successor, iter(graph.get(successor, []))))
                    advanced = True
                    break
                if successor in on_stack:
                    lowlink[node] = min(lowlink[node], index[successor])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


def _cycle_through(start: str, members: Set[str], graph: Dict[str, List[str]]) -> List[str]:
    """Shortest ε-cycle from `start` back to itself inside one component."""
    parents = {start: None}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for successor in graph.get(current, []):
            if successor not in members:
                continue
            if successor == start:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            if successor not in parents:
                parents[successor] = current
                queue.append(successor)
    return [start]


def detect_epsilon_loops(model: Automaton) -> Dict:
    """
    Detects cycles made only of ε-moves.

    Returns:
        Dictionary with:
        {
            'has_epsilon_loops': bool,
            'loop_details': [
                {
                    'cycle': [state1, state2, ..., state1],
                    'transitions': [(state1, 'ε', state2), ...],
                    'reachable_from_start': bool
                }
            ]
        }
    """
    graph = {state.id: [] for state in model.states}
    for edge in model.edges():
        if edge.spec.is_epsilon and edge.target not in graph[edge.source]:
            graph[edge.source].append(edge.target)

    reachable = set(reachable_states(model))
    loop_details = []

    for component in _strongly_connected_components(graph):
        if len(component) == 1 and component[0] not in graph[component[0]]:
            continue
        ordered = [state.id for state in model.states if state.id in component]
        cycle = _cycle_through(ordered[0], set(component), graph)
        loop_details.append({
            'cycle': cycle + [cycle[0]],
            'transitions': [(cycle[i], 'ε', cycle[(i + 1) % len(cycle)]) for i in range(len(cycle))],
            'reachable_from_start': any(state in reachable for state in component),
        })

    return {
        'has_epsilon_loops': bool(loop_details),
        'loop_details': loop_details,
    }


def formal_definition(model: Automaton) -> Dict:
    """
    The tuple definition shown in the properties panel: Q, Σ, q0 and F by label.
    """
    initial = model.initial_state()
    stack_alphabet = set()
    tape_alphabet = set()
    for edge in model.edges():
        if isinstance(edge.spec, PDASymbol):
            stack_alphabet.update(s for s in (edge.spec.pop,) + edge.spec.push if s)
        elif isinstance(edge.spec, TMSymbol):
            tape_alphabet.update({edge.spec.read, edge.spec.write})
        elif isinstance(edge.spec, MultiTapeSymbol):
            tape_alphabet.update(edge.spec.reads + edge.spec.writes)

    definition = {
        'mode': model.mode.value,
        'states': [state.label or state.id for state in model.states],
        'alphabet': list(model.input_alphabet()),
        'initial': (initial.label or initial.id) if initial else None,
        'accepting': [state.label or state.id for state in model.states if state.is_accepting],
        'summary': f"{len(model.states)} states · {len(model.transitions)} transitions",
    }
    if stack_alphabet:
        definition['stack_alphabet'] = sorted(stack_alphabet)
    if tape_alphabet:
        definition['tape_alphabet'] = sorted(tape_alphabet)
    if model.tapes > 1:
        definition['tapes'] = model.tapes
    return definition


def check_all_properties(model: Automaton) -> Dict:
    """
    Check all properties at once.

    Returns:
        Dict: {'deterministic': bool, 'complete': bool, 'connected': bool,
               'has_epsilon_loops': bool}
    """
    return {
        'deterministic': is_deterministic(model),
        'complete': is_complete(model),
        'connected': is_connected(model),
        'has_epsilon_loops': detect_epsilon_loops(model)['has_epsilon_loops'],
    }
