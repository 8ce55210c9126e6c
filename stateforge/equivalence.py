import logging
from collections import deque
from dataclasses import replace
from typing import Dict, Optional, Tuple

from .automaton import Automaton, Mode
from .conversions import complete_dfa, minimise_dfa, nfa_to_dfa, remove_unreachable_states

logger = logging.getLogger(__name__)


def normalise_automaton(model: Automaton, alphabet: Tuple[str, ...]) -> Automaton:
    """
    Convert a finite automaton to its canonical form: the complete minimal DFA over
    the given alphabet.

    Args:
        model: A DFA or NFA
        alphabet: Alphabet to complete over, usually the union of both sides' alphabets

    Returns:
        A complete minimal DFA equivalent to the input
    """
    dfa = nfa_to_dfa(model) if model.mode == Mode.NFA else remove_unreachable_states(model)
    complete = complete_dfa(replace(dfa, alphabet=alphabet))
    return minimise_dfa(complete)


def find_state_mapping(dfa1: Automaton, dfa2: Automaton) -> Optional[Dict[str, str]]:
    """
    Find a bijective mapping between states of two DFAs if they are isomorphic.

    Args:
        dfa1: First DFA
        dfa2: Second DFA

    Returns:
        A dictionary mapping state ids of dfa1 to dfa2, or None if no mapping exists
    """
    if len(dfa1.states) != len(dfa2.states):
        return None
    if len(dfa1.accepting_ids()) != len(dfa2.accepting_ids()):
        return None
    if set(dfa1.input_alphabet()) != set(dfa2.input_alphabet()):
        return None
    if not dfa1.states:
        return {}

    delta1 = {(e.source, e.spec.read): e.target for e in dfa1.edges()}
    delta2 = {(e.source, e.spec.read): e.target for e in dfa2.edges()}
    accepting1, accepting2 = dfa1.accepting_ids(), dfa2.accepting_ids()

    mapping = {}
    queue = deque([(dfa1.initial_state().id, dfa2.initial_state().id)])

    while queue:
        state1, state2 = queue.popleft()

        if state1 in mapping:
            if mapping[state1] != state2:
                return None
            continue
        mapping[state1] = state2

        if (state1 in accepting1) != (state2 in accepting2):
            return None

        for symbol in dfa1.input_alphabet():
            target1 = delta1.get((state1, symbol))
            target2 = delta2.get((state2, symbol))
            if (target1 is None) != (target2 is None):
                return None
            if target1 is not None:
                if target1 in mapping and mapping[target1] != target2:
                    return None
                queue.append((target1, target2))

    if len(mapping) != len(dfa1.states) or len(set(mapping.values())) != len(mapping):
        return None
    return mapping


def are_dfas_isomorphic(dfa1: Automaton, dfa2: Automaton) -> bool:
    """Check if two DFAs are structurally identical up to state renaming."""
    return find_state_mapping(dfa1, dfa2) is not None


def are_automata_equivalent(first: Automaton, second: Automaton) -> Tuple[bool, Dict]:
    """
    Check if two automata (NFAs or DFAs) are language-equivalent.

    This uses the DFA minimisation method: two automata are equivalent if and only if
    their complete minimal DFAs over the same alphabet are isomorphic.

    Returns:
        A tuple of (is_equivalent, details) where details holds the state counts at
        each stage, the reason and, when equivalent, the state mapping

    Raises:
        ValidationError: If either model is invalid
        UnsupportedConversionError: If either model is not a finite automaton
    """
    details = {
        'automaton1_type': first.mode.value.upper(),
        'automaton2_type': second.mode.value.upper(),
        'automaton1_states': len(first.states),
        'automaton2_states': len(second.states),
    }

    alphabet = tuple(sorted(set(first.input_alphabet()) | set(second.input_alphabet())))
    minimal1 = normalise_automaton(first, alphabet)
    minimal2 = normalise_automaton(second, alphabet)
    details['minimal_dfa1_states'] = len(minimal1.states)
    details['minimal_dfa2_states'] = len(minimal2.states)

    if len(minimal1.states) != len(minimal2.states):
        details['reason'] = 'Complete minimal DFAs have different number of states'
        return False, details

    mapping = find_state_mapping(minimal1, minimal2)
    if mapping is None:
        details['reason'] = 'Complete minimal DFAs are not isomorphic'
        return False, details

    details['reason'] = 'Complete minimal DFAs are isomorphic'
    details['state_mapping'] = mapping
    logger.debug(f"Automata equivalent: {details['minimal_dfa1_states']} minimal states")
    return True, details
