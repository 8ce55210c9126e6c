import functools
import json
import logging

from django.http import HttpResponse, JsonResponse, StreamingHttpResponse
from django.utils.text import slugify
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .automaton import Mode, check_automaton
from .conf import get_setting, simulation_options
from .conversions import (
    complement_dfa, complete_dfa, convert, partition_refinement, product_dfa, regex_to_nfa, subset_construction,
)
from .equivalence import are_automata_equivalent
from .errors import InterchangeError, UnsupportedConversionError, ValidationError
from .interchange import encode, export_filename, from_dict, import_automaton, to_dict
from .properties import check_all_properties, detect_epsilon_loops, formal_definition
from .simulation import Simulation, multi_run, simulate

logger = logging.getLogger(__name__)


class MissingField(ValueError):
    pass


def _load_automaton(data, key='automaton'):
    """Decode the native JSON automaton stored under `key` in a request body."""
    payload = data.get(key)
    if not payload:
        raise MissingField('Missing automaton definition')
    return from_dict(payload)


def _error_payload(e):
    """Map a core error to (body, status) the way every endpoint reports it."""
    if isinstance(e, ValidationError):
        return {'error': e.message, 'invariant': e.invariant}, 400
    if isinstance(e, (InterchangeError, UnsupportedConversionError, ValueError)):
        return {'error': str(e)}, 400
    return {'error': f'Server error: {str(e)}'}, 500


def json_endpoint(view):
    """
    POST-only JSON view: parses the body, passes it to the view and turns errors
    into {'error': ...} responses (400 for bad input, 500 for anything else).
    """
    @csrf_exempt
    @require_POST
    @functools.wraps(view)
    def wrapper(request):
        try:
            data = json.loads(request.body or b'{}')
            if not isinstance(data, dict):
                raise ValueError('Request body must be a JSON object')
            return view(request, data)
        except Exception as e:
            body, status = _error_payload(e)
            if status == 500:
                logger.exception(f"Unexpected error in {view.__name__}")
            else:
                logger.warning(f"Rejected {view.__name__} request: {body['error']}")
            return JsonResponse(body, status=status)

    return wrapper


@json_endpoint
def validate(request, data):
    """
    Checks the structural invariants of an automaton.

    Expects a JSON body with:
    - automaton: The automaton in native JSON form

    Returns {'valid': bool} plus 'error' and 'invariant' when invalid.
    """
    return JsonResponse(check_automaton(_load_automaton(data)))


@json_endpoint
def simulate_automaton(request, data):
    """
    Runs an automaton over one input string to completion.

    Expects a JSON body with:
    - automaton: The automaton in native JSON form
    - input: The input string to simulate, or one string per tape for a multi-tape
      Turing machine
    - options: Optional overrides (max_steps, max_configurations, acceptance,
      initial_stack_symbol, blank_symbol)

    Returns the verdict, the reason for a rejection, the emitted output and every step.
    """
    model = _load_automaton(data)
    options = simulation_options(data.get('options'))
    result = simulate(model, data.get('input', ''), options)
    return JsonResponse({'mode': model.mode.value, **result.to_dict()})


@csrf_exempt
@require_POST
def simulate_stream(request):
    """
    Streams a simulation as Server-Sent Events: one event per step, then a
    'result' event with the verdict and an 'end' marker.
    """
    def error_stream(message, status):
        def error_generator():
            yield f"data: {json.dumps({'error': message})}\n\n"

        return StreamingHttpResponse(error_generator(), content_type='text/event-stream', status=status)

    try:
        data = json.loads(request.body)
        model = _load_automaton(data)
        simulation = Simulation(model, data.get('input', ''), simulation_options(data.get('options')))
    except Exception as e:
        body, status = _error_payload(e)
        if status == 500:
            logger.exception("Unexpected error starting streamed simulation")
        return error_stream(body['error'], status)

    def result_generator():
        """Generator to stream simulation steps as Server-Sent Events"""
        try:
            for step in simulation:
                yield f"data: {json.dumps({'type': 'step', **step.to_dict()})}\n\n"

            result = simulation.result()
            yield f"data: {json.dumps({'type': 'result', 'verdict': result.verdict.value, 'reason': result.reason, 'output': result.output})}\n\n"
            yield f"data: {json.dumps({'type': 'end'})}\n\n"

        except Exception as e:
            logger.exception("Streamed simulation failed")
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"

    response = StreamingHttpResponse(result_generator(), content_type='text/event-stream')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'  # Disable nginx buffering
    return response


@json_endpoint
def multi_run_automaton(request, data):
    """
    Runs a batch of inputs against one automaton.

    Expects a JSON body with:
    - automaton: The automaton in native JSON form
    - inputs: List of input strings
    """
    model = _load_automaton(data)
    inputs = data.get('inputs')
    if not isinstance(inputs, list) or not all(isinstance(i, str) for i in inputs):
        raise MissingField("'inputs' must be a list of strings")
    results = multi_run(model, inputs, simulation_options(data.get('options')))
    return JsonResponse({
        'results': results,
        'accepted': sum(1 for r in results if r['accepted']),
        'total': len(results),
    })


@json_endpoint
def check_properties(request, data):
    """
    Property panel: determinism, completeness, connectivity, ε-loops and the
    formal definition of the automaton.
    """
    model = _load_automaton(data)
    return JsonResponse({
        'properties': check_all_properties(model),
        'epsilon_loops': detect_epsilon_loops(model),
        'formal_definition': formal_definition(model),
    })


@json_endpoint
def convert_automaton(request, data):
    """
    Converts an automaton to another mode.

    Expects a JSON body with:
    - automaton: The automaton in native JSON form
    - target: Target mode (nfa -> dfa, dfa -> nfa, mealy -> moore, moore -> mealy)

    For nfa -> dfa the response also lists the subset construction steps.
    """
    model = _load_automaton(data)
    target = data.get('target')
    if not target:
        raise MissingField('Missing conversion target')

    steps = []
    if model.mode == Mode.NFA and str(target).lower() == Mode.DFA.value:
        conversion = subset_construction(model)
        converted, steps = conversion.model, conversion.to_dict()['steps']
    else:
        converted = convert(model, target)

    logger.debug(f"Converted {model.mode.value} -> {converted.mode.value}")
    return JsonResponse({'automaton': to_dict(converted), 'steps': steps})


@json_endpoint
def minimise(request, data):
    """Minimises a DFA; the response lists the partition after each refinement round."""
    conversion = partition_refinement(_load_automaton(data))
    return JsonResponse({'automaton': to_dict(conversion.model), **conversion.to_dict()})


@json_endpoint
def complete(request, data):
    return JsonResponse({'automaton': to_dict(complete_dfa(_load_automaton(data)))})


@json_endpoint
def complement(request, data):
    return JsonResponse({'automaton': to_dict(complement_dfa(_load_automaton(data)))})


@json_endpoint
def product(request, data):
    """
    Combines two finite automata.

    Expects a JSON body with:
    - automaton1, automaton2: The automata in native JSON form
    - operation: 'union', 'intersection' or 'difference'
    """
    first = _load_automaton(data, 'automaton1')
    second = _load_automaton(data, 'automaton2')
    combined = product_dfa(first, second, data.get('operation', 'union'))
    return JsonResponse({'automaton': to_dict(combined)})


@json_endpoint
def equivalence(request, data):
    """Checks whether two finite automata accept the same language."""
    first = _load_automaton(data, 'automaton1')
    second = _load_automaton(data, 'automaton2')
    equivalent, details = are_automata_equivalent(first, second)
    return JsonResponse({'equivalent': equivalent, 'details': details})


@json_endpoint
def regex_to_automaton(request, data):
    """Builds an ε-NFA from a regular expression with Thompson's construction."""
    regex = data.get('regex')
    if regex is None:
        raise MissingField('Missing regex')
    return JsonResponse({'automaton': to_dict(regex_to_nfa(regex))})


@csrf_exempt
@require_POST
def import_file(request):
    """
    Imports a native JSON or JFLAP .jff file.

    Accepts either a multipart upload in the 'file' field or a JSON body with
    'content' and 'filename'. The format is chosen by the file extension.
    """
    try:
        upload = request.FILES.get('file')
        if upload is not None:
            content, filename = upload.read(), upload.name
        else:
            data = json.loads(request.body)
            if not isinstance(data, dict):
                raise ValueError('Request body must be a JSON object')
            content, filename = data.get('content'), data.get('filename')
            if not content:
                raise MissingField('Missing file content')

        model = import_automaton(content, filename)
        return JsonResponse({'automaton': to_dict(model), 'check': check_automaton(model)})

    except Exception as e:
        body, status = _error_payload(e)
        if status == 500:
            logger.exception("Unexpected error during import")
        else:
            logger.warning(f"Rejected import: {body['error']}")
        return JsonResponse(body, status=status)


@json_endpoint
def export_file(request, data):
    """Returns the automaton as a downloadable native JSON file."""
    model = _load_automaton(data)
    filename = export_filename(model, slugify(get_setting('APP_NAME')))
    response = HttpResponse(encode(model), content_type='application/json; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    logger.info(f"Exported {model.mode.value} automaton as {filename}")
    return response
