import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from lxml import etree

from .automaton import (
    EPSILON_SYMBOLS, MOVES, Automaton, FASymbol, MealySymbol, Mode, MultiTapeSymbol, PDASymbol, State, TMSymbol,
    Transition, format_symbol, parse_symbol, validate_automaton,
)
from .errors import InterchangeError, ValidationError
from .tape import BLANK

logger = logging.getLogger(__name__)

FORMAT = 'stateforge-v1'
KNOWN_KEYS = ('_format', 'mode', 'tapes', 'alphabet', 'states', 'transitions')

JFLAP_KINDS = {
    'fa': None,  # DFA or NFA, decided by the transitions
    'pda': Mode.PDA,
    'turing': Mode.TM,
    'mealy': Mode.MEALY,
    'moore': Mode.MOORE,
}

# Transition elements each JFLAP kind may carry
_JFLAP_ELEMENTS = {
    'fa': {'read'},
    'pda': {'read', 'pop', 'push'},
    'turing': {'read', 'write', 'move'},
    'mealy': {'read', 'transout'},
    'moore': {'read', 'transout'},
}
_JFLAP_REQUIRED = {
    'pda': {'pop', 'push'},
    'turing': {'write', 'move'},
    'mealy': {'transout'},
}


def to_dict(model: Automaton) -> Dict:
    """
    The native JSON form of a model, with a fixed key order.

    Unknown top-level fields carried by an imported model are appended after the
    known keys.
    """
    data = {'_format': FORMAT, 'mode': model.mode.value}
    if model.tapes != 1:
        data['tapes'] = model.tapes
    if model.alphabet is not None:
        data['alphabet'] = list(model.alphabet)

    states = []
    for state in model.states:
        entry = {
            'id': state.id,
            'label': state.label,
            'x': state.x,
            'y': state.y,
            'isInitial': state.is_initial,
            'isAccepting': state.is_accepting,
        }
        if state.output is not None:
            entry['output'] = state.output
        states.append(entry)
    data['states'] = states

    data['transitions'] = [
        {
            'id': t.id,
            'from': t.source,
            'to': t.target,
            'symbols': [format_symbol(spec) for spec in t.symbols],
        }
        for t in model.transitions
    ]

    for key, value in model.extras:
        data[key] = value
    return data


def encode(model: Automaton) -> str:
    """Serialise a model to native JSON. The same model always gives the same text."""
    return json.dumps(to_dict(model), indent=2, ensure_ascii=False)


def _pda_entries(entries: List[Dict]) -> Tuple[PDASymbol, ...]:
    """Structured PDA entries as saved by the editor: push strings are written top-first."""
    def field(entry, key):
        value = str(entry.get(key, '')).strip()
        return '' if value in EPSILON_SYMBOLS else value

    symbols = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise InterchangeError(f"pdaTransitions entries must be objects, got {entry!r}")
        symbols.append(PDASymbol(field(entry, 'input'), field(entry, 'pop'), tuple(reversed(field(entry, 'push')))))
    return tuple(symbols)


def _decode_state(entry: Any) -> State:
    if not isinstance(entry, dict) or 'id' not in entry:
        raise InterchangeError(f"Every state needs an 'id', got {entry!r}")
    try:
        x = float(entry.get('x', 0))
        y = float(entry.get('y', 0))
    except (TypeError, ValueError):
        raise InterchangeError(f"State '{entry['id']}' has non-numeric coordinates") from None

    output = entry.get('output')
    return State(
        id=str(entry['id']),
        label=str(entry.get('label', '')),
        x=x,
        y=y,
        is_initial=bool(entry.get('isInitial', False)),
        is_accepting=bool(entry.get('isAccepting', False)),
        output=None if output is None else str(output),
    )


def _decode_transition(mode: Mode, entry: Any, tapes: int = 1) -> Transition:
    if not isinstance(entry, dict):
        raise InterchangeError(f"Every transition must be an object, got {entry!r}")
    for key in ('id', 'from', 'to'):
        if key not in entry:
            raise InterchangeError(f"Transition {entry!r} is missing '{key}'")

    symbols = entry.get('symbols', [])
    if not isinstance(symbols, list):
        raise InterchangeError(f"Transition '{entry['id']}' symbols must be a list")
    try:
        if mode == Mode.PDA and entry.get('pdaTransitions'):
            specs = _pda_entries(entry['pdaTransitions'])
        else:
            specs = tuple(parse_symbol(mode, symbol, tapes) for symbol in symbols)
    except ValueError as e:
        raise InterchangeError(f"Transition '{entry['id']}': {e}") from None

    return Transition(str(entry['id']), str(entry['from']), str(entry['to']), specs)


def from_dict(data: Dict) -> Automaton:
    """
    Build a model from its native JSON form.

    Drafts are allowed: the model is not validated here, the engines do that before
    they run.

    Raises:
        InterchangeError: If the payload is malformed
    """
    if not isinstance(data, dict):
        raise InterchangeError("Payload must be a JSON object")
    if data.get('_format', FORMAT) != FORMAT:
        raise InterchangeError(f"Unsupported format '{data['_format']}', expected '{FORMAT}'")
    if not isinstance(data.get('states'), list):
        raise InterchangeError("Payload must contain a 'states' array")

    try:
        mode = Mode.parse(data.get('mode') or Mode.DFA)
    except ValueError as e:
        raise InterchangeError(str(e)) from None

    transitions = data.get('transitions', [])
    if not isinstance(transitions, list):
        raise InterchangeError("'transitions' must be an array")

    tapes = data.get('tapes', 1)
    if isinstance(tapes, bool) or not isinstance(tapes, int) or tapes < 1:
        raise InterchangeError("'tapes' must be a positive integer")

    alphabet = data.get('alphabet')
    if alphabet is not None:
        if not isinstance(alphabet, list) or not all(isinstance(s, str) for s in alphabet):
            raise InterchangeError("'alphabet' must be an array of strings")
        alphabet = tuple(alphabet)

    return Automaton(
        mode=mode,
        states=tuple(_decode_state(entry) for entry in data['states']),
        transitions=tuple(_decode_transition(mode, entry, tapes) for entry in transitions),
        alphabet=alphabet,
        tapes=tapes,
        extras=tuple((key, value) for key, value in data.items() if key not in KNOWN_KEYS),
    )


def decode(text: Union[str, bytes]) -> Automaton:
    """
    Parse native JSON text into a model.

    Raises:
        InterchangeError: If the text is not valid JSON or not a stateforge payload
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InterchangeError(f"Invalid JSON: {e}") from None
    return from_dict(data)


def _child_text(element, tag: str) -> Optional[str]:
    """Text of a child element, '' for an empty element and None if it is absent."""
    child = element.find(tag)
    if child is None:
        return None
    return (child.text or '').strip()


def _jflap_tape_action(element, transition_index: int, tapes: int):
    """Turing machine transition; multi-tape files tag each read, write and move with tape="k"."""
    cells = {tag: {} for tag in ('read', 'write', 'move')}
    for tag, values in cells.items():
        for child in element.findall(tag):
            tape = (child.get('tape') or '1').strip()
            if not tape.isdecimal() or not 1 <= int(tape) <= tapes:
                raise InterchangeError(
                    f"Transition {transition_index} refers to tape '{tape}' of a {tapes}-tape machine"
                )
            values[int(tape)] = (child.text or '').strip()

    reads, writes, moves = [], [], []
    for tape in range(1, tapes + 1):
        if tape not in cells['write'] or tape not in cells['move']:
            raise InterchangeError(f"Transition {transition_index} lacks a write or move for tape {tape}")
        move = cells['move'][tape].upper()
        if move not in MOVES:
            raise InterchangeError(f"Transition {transition_index} has unknown head move '{move}'")
        # An empty tape cell is written as an empty element
        reads.append(cells['read'].get(tape) or BLANK)
        writes.append(cells['write'][tape] or BLANK)
        moves.append(move)

    if tapes == 1:
        return TMSymbol(reads[0], writes[0], moves[0])
    return MultiTapeSymbol(tuple(reads), tuple(writes), tuple(moves))


def _jflap_symbol(kind: str, element, transition_index: int, tapes: int = 1):
    present = {child.tag for child in element if isinstance(child.tag, str)} - {'from', 'to'}
    unexpected = present - _JFLAP_ELEMENTS[kind]
    if unexpected:
        raise InterchangeError(
            f"Transition {transition_index} has <{sorted(unexpected)[0]}>, not allowed in a '{kind}' automaton"
        )
    missing = _JFLAP_REQUIRED.get(kind, set()) - present
    if missing:
        raise InterchangeError(f"Transition {transition_index} of a '{kind}' automaton lacks <{sorted(missing)[0]}>")

    read = _child_text(element, 'read') or ''

    if kind in ('fa', 'moore'):
        return FASymbol(read)
    if kind == 'pda':
        # JFLAP writes the pushed string top-first
        return PDASymbol(read, _child_text(element, 'pop'), tuple(reversed(_child_text(element, 'push'))))
    if kind == 'mealy':
        return MealySymbol(read, _child_text(element, 'transout'))

    return _jflap_tape_action(element, transition_index, tapes)


def decode_jflap(document: Union[str, bytes]) -> Automaton:
    """
    Import a JFLAP .jff file.

    Supported kinds are fa, pda, turing (with any number of tapes), mealy and moore.
    An fa becomes an NFA when any transition reads the empty string or a state has two
    transitions on the same symbol, and a DFA otherwise. State ids are prefixed with 'jff_',
    coordinates are kept verbatim and transitions between the same pair of states
    are grouped into one.

    Raises:
        InterchangeError: If the XML is malformed, the kind is unknown, a transition
            carries elements that do not fit the kind, or the result is not a valid model
    """
    if isinstance(document, str):
        document = document.encode('utf-8')

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(document, parser)
    except etree.XMLSyntaxError as e:
        raise InterchangeError(f"Malformed JFLAP XML: {e}") from None

    kind = (root.findtext('type') or 'fa').strip()
    if kind not in JFLAP_KINDS:
        raise InterchangeError(f"Unsupported JFLAP automaton type '{kind}'")
    tapes = 1
    if kind == 'turing':
        count = (root.findtext('tapes') or '1').strip()
        if not count.isdecimal() or int(count) < 1:
            raise InterchangeError(f"Invalid tape count '{count}'")
        tapes = int(count)

    automaton = root.find('automaton')
    if automaton is None:
        automaton = root
    if automaton.find('block') is not None:
        raise InterchangeError("JFLAP building blocks are not supported")

    states = []
    ids = {}
    for element in automaton.findall('state'):
        jflap_id = element.get('id', '')
        ids[jflap_id] = f"jff_{jflap_id}"
        try:
            x = float(element.findtext('x') or 0)
            y = float(element.findtext('y') or 0)
        except ValueError:
            raise InterchangeError(f"State {jflap_id} has non-numeric coordinates") from None
        states.append(State(
            id=ids[jflap_id],
            label=element.get('name') or f"q{jflap_id}",
            x=x,
            y=y,
            is_initial=element.find('initial') is not None,
            is_accepting=element.find('final') is not None,
            output=(_child_text(element, 'output') or '') if kind == 'moore' else None,
        ))

    grouped: Dict[Tuple[str, str], List] = {}
    for index, element in enumerate(automaton.findall('transition')):
        endpoints = []
        for tag in ('from', 'to'):
            jflap_id = (element.findtext(tag) or '').strip()
            if jflap_id not in ids:
                raise InterchangeError(f"Transition {index} references unknown state '{jflap_id}'")
            endpoints.append(ids[jflap_id])
        spec = _jflap_symbol(kind, element, index, tapes)
        specs = grouped.setdefault(tuple(endpoints), [])
        if spec not in specs:
            specs.append(spec)

    transitions = tuple(
        Transition(f"jt_{i}", source, target, tuple(specs))
        for i, ((source, target), specs) in enumerate(grouped.items())
    )

    mode = JFLAP_KINDS[kind]
    if mode is None:
        reads = [(t.source, spec.read) for t in transitions for spec in t.symbols]
        nondeterministic = any(read == '' for _, read in reads) or len(set(reads)) != len(reads)
        mode = Mode.NFA if nondeterministic else Mode.DFA

    model = Automaton(mode, tuple(states), transitions, tapes=tapes)
    try:
        validate_automaton(model)
    except ValidationError as e:
        raise InterchangeError(f"Imported JFLAP automaton is invalid: {e}") from None

    logger.info(f"Imported JFLAP {kind} automaton as {mode.value} with {len(states)} states")
    return model


def import_automaton(content: Union[str, bytes], filename: Optional[str] = None) -> Automaton:
    """Decode an uploaded file, choosing the format by its extension (.jff or JSON)."""
    if filename and filename.lower().endswith('.jff'):
        return decode_jflap(content)
    model = decode(content)
    logger.info(f"Imported {model.mode.value} automaton with {len(model.states)} states")
    return model


def export_filename(model: Automaton, prefix: str = 'stateforge') -> str:
    """Download name of an exported model, e.g. stateforge-dfa.json."""
    return f"{prefix or 'stateforge'}-{model.mode.value}.json"
