import json
import random
from dataclasses import replace

from django.test import TestCase

from stateforge.automaton import (
    Automaton, FASymbol, MealySymbol, Mode, MultiTapeSymbol, PDASymbol, State, TMSymbol, Transition, check_automaton,
    validate_automaton,
)
from stateforge.errors import InterchangeError
from stateforge.interchange import (
    FORMAT, decode, decode_jflap, encode, export_filename, from_dict, import_automaton, to_dict,
)
from stateforge.tape import BLANK
from stateforge.tests.helpers import make_automaton, random_model


def jflap(kind, states, transitions, extra=''):
    """A minimal .jff document in the layout JFLAP writes."""
    return f"""<?xml version="1.0" encoding="UTF-8" standalone="no"?>
<structure>
    <type>{kind}</type>
    {extra}
    <automaton>
        {states}
        {transitions}
    </automaton>
</structure>"""


TWO_STATES = """
        <state id="0" name="start"><x>60.0</x><y>80.5</y><initial/></state>
        <state id="1"><x>200.0</x><y>80.5</y><final/></state>
"""


class TestNativeFormat(TestCase):

    def setUp(self):
        self.models = [
            make_automaton('dfa', [('q0', 'q1', ['a', 'b'])], accepting=['q1'], alphabet=('a', 'b')),
            make_automaton('nfa', [('q0', 'q1', ['ε', 'a'])], accepting=['q1']),
            make_automaton('pda', [('q0', 'q0', ['a, Z → AZ', 'b, A → ε', 'ε, ε → A'])]),
            make_automaton('tm', [('q0', 'q1', [f"{BLANK} → x, L", '* → *, R'])], accepting=['q1']),
            make_automaton('mealy', [('q0', 'q1', ['a/0', 'b/ε'])]),
            replace(
                make_automaton('moore', [('q0', 'q1', ['a'])]),
                states=(State('q0', 'q0', is_initial=True, output='0'), State('q1', 'q1', 100.0, 50.0, output='1')),
            ),
        ]

    def test_round_trip_random_models(self):
        rng = random.Random(1729)
        for mode in Mode:
            for _ in range(40):
                model = random_model(rng, mode)
                with self.subTest(mode=mode.value, model=model):
                    validate_automaton(model)
                    text = encode(model)
                    self.assertEqual(decode(text), model)
                    self.assertEqual(encode(decode(text)), text)

    def test_symbols_that_would_not_survive_a_round_trip_are_invalid(self):
        states = (State('q0', is_initial=True),)
        for mode, spec in ((Mode.PDA, PDASymbol('a', 'Z0', ('Z0', 'A'))), (Mode.DFA, FASymbol('λ'))):
            model = Automaton(mode, states, (Transition('t0', 'q0', 'q0', (spec,)),))
            with self.subTest(spec=spec):
                self.assertEqual(check_automaton(model)['invariant'], 'transition-shape')

    def test_multi_tape_machine(self):
        model = make_automaton('tm', [('q0', 'q1', ['a,*; a,a; R,S'])], accepting=['q1'], tapes=2)
        data = to_dict(model)
        self.assertEqual(list(data)[:3], ['_format', 'mode', 'tapes'])
        self.assertEqual(data['tapes'], 2)
        self.assertEqual(data['transitions'][0]['symbols'], ['a,*; a,a; R,S'])
        self.assertEqual(decode(encode(model)), model)
        self.assertNotIn('tapes', to_dict(self.models[3]))

    def test_key_order(self):
        data = to_dict(self.models[0])
        self.assertEqual(list(data), ['_format', 'mode', 'alphabet', 'states', 'transitions'])
        self.assertEqual(data['_format'], FORMAT)
        self.assertEqual(
            list(data['states'][0]), ['id', 'label', 'x', 'y', 'isInitial', 'isAccepting']
        )
        self.assertEqual(data['transitions'][0], {'id': 't0', 'from': 'q0', 'to': 'q1', 'symbols': ['a', 'b']})

    def test_unknown_top_level_fields_survive(self):
        data = to_dict(self.models[1])
        data['editorTheme'] = {'dark': True}
        model = from_dict(data)
        self.assertEqual(model.extras, (('editorTheme', {'dark': True}),))
        self.assertEqual(json.loads(encode(model))['editorTheme'], {'dark': True})

    def test_labels_are_parsed_per_mode(self):
        pda, tm, mealy = self.models[2], self.models[3], self.models[4]
        self.assertEqual(pda.transitions[0].symbols[0], PDASymbol('a', 'Z', ('Z', 'A')))
        self.assertEqual(tm.transitions[0].symbols[0], TMSymbol(BLANK, 'x', 'L'))
        self.assertEqual(mealy.transitions[0].symbols[1], MealySymbol('b', ''))
        self.assertEqual(to_dict(pda)['transitions'][0]['symbols'][2], 'ε, ε → A')

    def test_structured_pda_entries_take_precedence(self):
        data = {
            'mode': 'pda',
            'states': [{'id': 'q0', 'isInitial': True}],
            'transitions': [{
                'id': 't0', 'from': 'q0', 'to': 'q0', 'symbols': ['ignored'],
                'pdaTransitions': [{'input': 'a', 'pop': 'ε', 'push': 'AB'}],
            }],
        }
        model = from_dict(data)
        self.assertEqual(model.transitions[0].symbols, (PDASymbol('a', '', ('B', 'A')),))

    def test_defaults(self):
        model = from_dict({'states': [{'id': 'q0'}]})
        self.assertEqual(model.mode, Mode.DFA)
        self.assertIsNone(model.alphabet)
        self.assertEqual(model.states[0], State('q0'))

    def test_drafts_are_not_validated(self):
        model = from_dict({'mode': 'dfa', 'states': [], 'transitions': []})
        self.assertEqual(model.states, ())

    def test_malformed_payloads(self):
        cases = [
            'not json',
            '[]',
            '{"mode": "dfa"}',
            '{"mode": "regex", "states": []}',
            '{"_format": "jflap", "states": []}',
            '{"states": [{"label": "no id"}]}',
            '{"states": [{"id": "q0", "x": "left"}]}',
            '{"states": [], "transitions": [{"id": "t0", "from": "q0"}]}',
            '{"mode": "pda", "states": [], "transitions": [{"id": "t0", "from": "q0", "to": "q0", "symbols": ["a"]}]}',
            '{"states": [], "alphabet": "ab"}',
            '{"mode": "tm", "tapes": 0, "states": []}',
            '{"mode": "tm", "tapes": "2", "states": []}',
            '{"mode": "tm", "tapes": 2, "states": [], '
            '"transitions": [{"id": "t0", "from": "q0", "to": "q0", "symbols": ["a → a, R"]}]}',
        ]
        for text in cases:
            with self.subTest(text=text), self.assertRaises(InterchangeError):
                decode(text)

    def test_export_filename(self):
        self.assertEqual(export_filename(self.models[2]), 'stateforge-pda.json')
        self.assertEqual(export_filename(self.models[3], 'automata-lab'), 'automata-lab-tm.json')
        self.assertEqual(export_filename(self.models[3], ''), 'stateforge-tm.json')


class TestJflapImport(TestCase):

    def test_deterministic_fa(self):
        transitions = """
        <transition><from>0</from><to>1</to><read>a</read></transition>
        <transition><from>0</from><to>1</to><read>b</read></transition>
        <transition><from>1</from><to>1</to><read>a</read></transition>
        """
        model = decode_jflap(jflap('fa', TWO_STATES, transitions))
        self.assertEqual(model.mode, Mode.DFA)
        self.assertEqual([s.id for s in model.states], ['jff_0', 'jff_1'])
        self.assertEqual([s.label for s in model.states], ['start', 'q1'])
        self.assertEqual((model.states[0].x, model.states[0].y), (60.0, 80.5))
        self.assertTrue(model.states[0].is_initial)
        self.assertTrue(model.states[1].is_accepting)
        self.assertEqual([t.id for t in model.transitions], ['jt_0', 'jt_1'])
        self.assertEqual(model.transitions[0].symbols, (FASymbol('a'), FASymbol('b')))

    def test_empty_read_makes_an_nfa(self):
        transitions = '<transition><from>0</from><to>1</to><read/></transition>'
        model = decode_jflap(jflap('fa', TWO_STATES, transitions))
        self.assertEqual(model.mode, Mode.NFA)
        self.assertTrue(model.transitions[0].symbols[0].is_epsilon)

    def test_duplicate_reads_make_an_nfa(self):
        transitions = """
        <transition><from>0</from><to>0</to><read>a</read></transition>
        <transition><from>0</from><to>1</to><read>a</read></transition>
        """
        self.assertEqual(decode_jflap(jflap('fa', TWO_STATES, transitions)).mode, Mode.NFA)

    def test_pda(self):
        transitions = '<transition><from>0</from><to>1</to><read>a</read><pop>Z</pop><push>AZ</push></transition>'
        model = decode_jflap(jflap('pda', TWO_STATES, transitions))
        self.assertEqual(model.mode, Mode.PDA)
        self.assertEqual(model.transitions[0].symbols, (PDASymbol('a', 'Z', ('Z', 'A')),))

    def test_turing(self):
        transitions = """
        <transition><from>0</from><to>1</to><read/><write>1</write><move>r</move></transition>
        """
        model = decode_jflap(jflap('turing', TWO_STATES, transitions))
        self.assertEqual(model.mode, Mode.TM)
        self.assertEqual(model.transitions[0].symbols, (TMSymbol(BLANK, '1', 'R'),))

    def test_multi_character_read_is_rejected(self):
        transitions = '<transition><from>0</from><to>1</to><read>ab</read></transition>'
        with self.assertRaises(InterchangeError):
            decode_jflap(jflap('fa', TWO_STATES, transitions))

    def test_multi_tape_turing(self):
        transitions = """
        <transition>
            <from>0</from><to>1</to>
            <read tape="1">a</read><write tape="1">a</write><move tape="1">R</move>
            <read tape="2"/><write tape="2">a</write><move tape="2">l</move>
        </transition>
        """
        model = decode_jflap(jflap('turing', TWO_STATES, transitions, extra='<tapes>2</tapes>'))
        self.assertEqual(model.tapes, 2)
        self.assertEqual(model.transitions[0].symbols, (MultiTapeSymbol(('a', BLANK), ('a', 'a'), ('R', 'L')),))

    def test_mealy(self):
        transitions = '<transition><from>0</from><to>1</to><read>a</read><transout>1</transout></transition>'
        model = decode_jflap(jflap('mealy', TWO_STATES, transitions))
        self.assertEqual(model.mode, Mode.MEALY)
        self.assertEqual(model.transitions[0].symbols, (MealySymbol('a', '1'),))

    def test_moore_state_output(self):
        states = """
        <state id="0"><x>0</x><y>0</y><initial/><output>0</output></state>
        <state id="1"><x>0</x><y>0</y><output>1</output></state>
        """
        transitions = '<transition><from>0</from><to>1</to><read>a</read><transout>1</transout></transition>'
        model = decode_jflap(jflap('moore', states, transitions))
        self.assertEqual(model.mode, Mode.MOORE)
        self.assertEqual([s.output for s in model.states], ['0', '1'])

    def test_rejected_documents(self):
        pop_in_fa = '<transition><from>0</from><to>1</to><read>a</read><pop>Z</pop></transition>'
        missing_move = '<transition><from>0</from><to>1</to><read>a</read><write>b</write></transition>'
        unknown_state = '<transition><from>0</from><to>7</to><read>a</read></transition>'
        no_initial = '<state id="0"><x>0</x><y>0</y></state>'
        missing_tape_move = """
        <transition><from>0</from><to>1</to>
            <read tape="1">a</read><write tape="1">a</write><move tape="1">R</move>
            <read tape="2">a</read><write tape="2">a</write>
        </transition>
        """
        unknown_tape = """
        <transition><from>0</from><to>1</to>
            <read tape="3">a</read><write tape="1">a</write><move tape="1">R</move>
        </transition>
        """
        cases = [
            jflap('fa', TWO_STATES, pop_in_fa),
            jflap('turing', TWO_STATES, missing_move),
            jflap('fa', TWO_STATES, unknown_state),
            jflap('fa', no_initial, ''),
            jflap('grammar', TWO_STATES, ''),
            jflap('turing', TWO_STATES, missing_tape_move, extra='<tapes>2</tapes>'),
            jflap('turing', TWO_STATES, unknown_tape, extra='<tapes>2</tapes>'),
            jflap('turing', TWO_STATES, '', extra='<tapes>two</tapes>'),
            jflap('fa', TWO_STATES, '<transition><from>0</from><to>1</to><read>λ</read></transition>'),
            jflap('fa', TWO_STATES, '<block id="2"/>'),
            '<structure><type>fa</type><automaton>',
        ]
        for document in cases:
            with self.subTest(document=document), self.assertRaises(InterchangeError):
                decode_jflap(document)


class TestImportAutomaton(TestCase):

    def test_chooses_decoder_by_extension(self):
        document = jflap('fa', TWO_STATES, '<transition><from>0</from><to>1</to><read>a</read></transition>')
        self.assertEqual(import_automaton(document, 'machine.JFF').states[0].id, 'jff_0')

        model = make_automaton('nfa', [('q0', 'q1', ['a'])])
        self.assertEqual(import_automaton(encode(model), 'machine.json'), model)
        self.assertEqual(import_automaton(encode(model).encode('utf-8')), model)
