from django.test import TestCase

from stateforge.properties import (
    check_all_properties, detect_epsilon_loops, formal_definition, is_complete, is_connected, is_deterministic,
    reachable_states,
)
from stateforge.tests.helpers import make_automaton


class TestAutomatonProperties(TestCase):

    def setUp(self):
        self.complete_dfa = make_automaton('dfa', [
            ('S0', 'S1', ['a']),
            ('S0', 'S0', ['b']),
            ('S1', 'S0', ['a']),
            ('S1', 'S1', ['b']),
        ], initial='S0', accepting=['S1'])

        self.partial_nfa = make_automaton('nfa', [
            ('S0', 'S0', ['a', 'b']),
            ('S0', 'S1', ['a']),
            ('S1', 'S2', ['b']),
        ], initial='S0', accepting=['S2'], states=['S3'])

    def test_is_deterministic(self):
        self.assertTrue(is_deterministic(self.complete_dfa))
        self.assertFalse(is_deterministic(self.partial_nfa))
        self.assertFalse(is_deterministic(make_automaton('nfa', [('q0', 'q1', ['ε'])])))

    def test_pda_determinism_considers_stack_top(self):
        pda = make_automaton('pda', [('q0', 'q0', ['a, A → AA', 'a, Z → AZ'])])
        self.assertTrue(is_deterministic(pda))
        pda = make_automaton('pda', [('q0', 'q0', ['a, A → AA']), ('q0', 'q1', ['a, A → ε'])])
        self.assertFalse(is_deterministic(pda))

    def test_is_complete(self):
        self.assertTrue(is_complete(self.complete_dfa))
        self.assertFalse(is_complete(self.partial_nfa))

    def test_declared_alphabet_counts_for_completeness(self):
        dfa = make_automaton('dfa', [('q0', 'q0', ['a'])], alphabet=('a', 'b'))
        self.assertFalse(is_complete(dfa))

    def test_is_connected(self):
        self.assertTrue(is_connected(self.complete_dfa))
        self.assertFalse(is_connected(self.partial_nfa))
        self.assertEqual(reachable_states(self.partial_nfa), ['S0', 'S1', 'S2'])

    def test_check_all_properties(self):
        self.assertEqual(check_all_properties(self.complete_dfa), {
            'deterministic': True,
            'complete': True,
            'connected': True,
            'has_epsilon_loops': False,
        })


class TestEpsilonLoops(TestCase):

    def test_two_state_cycle(self):
        nfa = make_automaton('nfa', [
            ('q0', 'q1', ['ε']),
            ('q1', 'q0', ['ε']),
            ('q1', 'q2', ['a']),
        ], accepting=['q2'])
        result = detect_epsilon_loops(nfa)
        self.assertTrue(result['has_epsilon_loops'])
        self.assertEqual(len(result['loop_details']), 1)
        loop = result['loop_details'][0]
        self.assertEqual(loop['cycle'], ['q0', 'q1', 'q0'])
        self.assertEqual(loop['transitions'], [('q0', 'ε', 'q1'), ('q1', 'ε', 'q0')])
        self.assertTrue(loop['reachable_from_start'])

    def test_self_loop_in_unreachable_part(self):
        nfa = make_automaton('nfa', [
            ('q0', 'q1', ['a']),
            ('q2', 'q2', ['ε']),
        ], states=['q2'])
        loop = detect_epsilon_loops(nfa)['loop_details'][0]
        self.assertEqual(loop['cycle'], ['q2', 'q2'])
        self.assertFalse(loop['reachable_from_start'])

    def test_epsilon_chain_is_not_a_loop(self):
        nfa = make_automaton('nfa', [
            ('q0', 'q1', ['ε']),
            ('q1', 'q2', ['ε']),
            ('q2', 'q0', ['a']),
        ])
        self.assertEqual(detect_epsilon_loops(nfa), {'has_epsilon_loops': False, 'loop_details': []})

    def test_long_epsilon_cycle(self):
        count = 3000
        transitions = [(f"q{i}", f"q{(i + 1) % count}", ['ε']) for i in range(count)]
        result = detect_epsilon_loops(make_automaton('nfa', transitions))
        self.assertEqual(len(result['loop_details']), 1)
        self.assertEqual(len(result['loop_details'][0]['cycle']), count + 1)

    def test_pda_epsilon_moves(self):
        pda = make_automaton('pda', [
            ('q0', 'q1', ['ε, ε → A']),
            ('q1', 'q0', ['ε, A → ε']),
        ])
        self.assertTrue(detect_epsilon_loops(pda)['has_epsilon_loops'])


class TestFormalDefinition(TestCase):

    def test_finite_automaton(self):
        dfa = make_automaton('dfa', [('q0', 'q1', ['a', 'b'])], accepting=['q1'], labels={'q1': 'end'})
        definition = formal_definition(dfa)
        self.assertEqual(definition['states'], ['q0', 'end'])
        self.assertEqual(definition['alphabet'], ['a', 'b'])
        self.assertEqual(definition['initial'], 'q0')
        self.assertEqual(definition['accepting'], ['end'])
        self.assertEqual(definition['summary'], '2 states · 1 transitions')

    def test_stack_and_tape_alphabets(self):
        pda = make_automaton('pda', [('q0', 'q0', ['a, Z → AZ'])])
        self.assertEqual(formal_definition(pda)['stack_alphabet'], ['A', 'Z'])
        tm = make_automaton('tm', [('q0', 'q0', ['1 → 0, R'])])
        self.assertEqual(formal_definition(tm)['tape_alphabet'], ['0', '1'])

    def test_multi_tape_machine(self):
        tm = make_automaton('tm', [('q0', 'q0', ['a,*; b,*; R,S'])], tapes=2)
        definition = formal_definition(tm)
        self.assertEqual(definition['tapes'], 2)
        self.assertEqual(definition['tape_alphabet'], ['*', 'a', 'b'])
        self.assertNotIn('tapes', formal_definition(make_automaton('tm', [('q0', 'q0', ['1 → 0, R'])])))
