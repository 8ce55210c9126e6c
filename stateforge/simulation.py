import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .automaton import (
    Automaton, Edge, MealySymbol, Mode, MultiTapeSymbol, PDASymbol, TMSymbol, WILDCARD, validate_automaton,
)
from .errors import SimulationBudgetExceeded
from .tape import BLANK, Tape

logger = logging.getLogger(__name__)

FINAL_STATE = 'final-state'
EMPTY_STACK = 'empty-stack'

# Why a configuration (or the whole run) stopped
SYMBOL_NOT_IN_ALPHABET = 'symbol-not-in-alphabet'
NO_TRANSITION = 'no-transition'
NOT_ACCEPTING = 'not-accepting'
STACK_NOT_EMPTY = 'stack-not-empty'
HALTED = 'halted'
STEP_BUDGET = 'step-budget'
CONFIGURATION_BUDGET = 'configuration-budget'


class Verdict(str, Enum):
    ACCEPT = 'accept'
    REJECT = 'reject'
    BUDGET_EXCEEDED = 'budget-exceeded'


@dataclass(frozen=True)
class SimulationOptions:
    """
    Per-run limits and machine conventions.

    Args:
        max_steps: Steps after which a run without a verdict stops as budget-exceeded
        max_configurations: Upper bound on live configurations, including those
            produced while computing an ε-closure
        acceptance: 'final-state' or 'empty-stack' (PDA only)
        initial_stack_symbol: Symbol the PDA stack starts with, None for an empty stack
        blank_symbol: Symbol read from unwritten TM tape cells
    """
    max_steps: int = 1000
    max_configurations: int = 10000
    acceptance: str = FINAL_STATE
    initial_stack_symbol: Optional[str] = 'Z'
    blank_symbol: str = BLANK

    def __post_init__(self):
        if self.acceptance not in (FINAL_STATE, EMPTY_STACK):
            raise ValueError(f"acceptance must be '{FINAL_STATE}' or '{EMPTY_STACK}'")
        if self.max_steps <= 0 or self.max_configurations <= 0:
            raise ValueError("max_steps and max_configurations must be positive integers")


@dataclass(frozen=True)
class Configuration:
    """
    Snapshot of one simulation thread. The stack's top is its last element.

    A Turing machine configuration holds one tape per machine tape; `tape` is the first
    of them, which carries the input.
    """
    state: str
    remaining: str = ''
    stack: Tuple[str, ...] = ()
    tapes: Tuple[Tape, ...] = ()
    output: str = ''

    @property
    def tape(self) -> Optional[Tape]:
        return self.tapes[0] if self.tapes else None

    def to_dict(self) -> Dict:
        return {
            'state': self.state,
            'remaining': self.remaining,
            'stack': list(self.stack),
            'tape': self.tape.to_dict() if self.tape is not None else None,
            'tapes': [tape.to_dict() for tape in self.tapes],
            'output': self.output,
        }


@dataclass(frozen=True)
class DeadConfiguration:
    configuration: Configuration
    reason: str


@dataclass(frozen=True)
class Step:
    """
    One synchronous step of a run. Step 0 holds the initial closure.

    `rejection_reason` is only set on the step that ended the run with a rejection, so
    an explicit 'symbol-not-in-alphabet' can be told apart from an implicit
    'no-transition'.
    """
    index: int
    symbol: Optional[str]
    configurations: Tuple[Configuration, ...]
    dead: Tuple[DeadConfiguration, ...] = ()
    accepted: Tuple[Configuration, ...] = ()
    transitions: Tuple[str, ...] = ()
    rejection_reason: Optional[str] = None

    def states(self) -> List[str]:
        return list(dict.fromkeys(config.state for config in self.configurations))

    def to_dict(self) -> Dict:
        return {
            'index': self.index,
            'symbol': self.symbol,
            'states': self.states(),
            'configurations': [config.to_dict() for config in self.configurations],
            'dead': [{'configuration': d.configuration.to_dict(), 'reason': d.reason} for d in self.dead],
            'accepted': [config.to_dict() for config in self.accepted],
            'transitions': list(self.transitions),
            'rejection_reason': self.rejection_reason,
        }


@dataclass
class SimulationResult:
    verdict: Verdict
    steps: List[Step]
    reason: Optional[str] = None
    output: Optional[str] = None
    accepting: Tuple[Configuration, ...] = field(default_factory=tuple)

    @property
    def accepted(self) -> bool:
        return self.verdict == Verdict.ACCEPT

    def to_dict(self) -> Dict:
        return {
            'verdict': self.verdict.value,
            'accepted': self.accepted,
            'reason': self.reason,
            'output': self.output,
            'steps': [step.to_dict() for step in self.steps],
            'accepting_configurations': [config.to_dict() for config in self.accepting],
        }


def _split_inputs(model: Automaton, input_string: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(input_string, str):
        return (input_string,)
    if not isinstance(input_string, (list, tuple)):
        raise ValueError("Input must be a string or a list of strings")
    if model.mode != Mode.TM:
        raise ValueError(f"A {model.mode.value} takes a single input string")
    inputs = tuple(input_string)
    if not all(isinstance(text, str) for text in inputs):
        raise ValueError("Tape inputs must be strings")
    if len(inputs) > model.tapes:
        raise ValueError(f"Got {len(inputs)} tape inputs for a machine with {model.tapes} tapes")
    return inputs


def _tape_actions(spec: Union[TMSymbol, MultiTapeSymbol]) -> Tuple[Tuple[str, ...], ...]:
    """Per-tape reads, writes and moves of a Turing machine edge."""
    if isinstance(spec, MultiTapeSymbol):
        return spec.reads, spec.writes, spec.moves
    return (spec.read,), (spec.write,), (spec.move,)


class _BudgetExhausted(Exception):
    pass


class Simulation:
    """
    A stepwise run of an automaton over one input string.

    The session owns its configuration set and never touches the model, so any number
    of sessions may run side by side. Input-driven machines (DFA, NFA, PDA, Mealy,
    Moore) advance one input symbol per call to step(); a Turing machine advances one
    transition per call.

    A multi-tape Turing machine takes either one string, written on its first tape, or
    a sequence with one string per tape; missing tapes start blank.

    Raises:
        ValidationError: If the model is invalid. Invalid models are never simulated.
        ValueError: If the input does not fit the machine
    """

    def __init__(self, model: Automaton, input_string: Union[str, Sequence[str]],
                 options: Optional[SimulationOptions] = None):
        validate_automaton(model)
        self.model = model
        self.inputs = _split_inputs(model, input_string)
        self.input = self.inputs[0] if self.inputs else ''
        self.options = options or SimulationOptions()

        self._outgoing = model.outgoing()
        self._accepting_ids = model.accepting_ids()
        self._alphabet = frozenset(model.input_alphabet())
        self._moore_outputs = {state.id: state.moore_output() for state in model.states}
        # A TM input alphabet can only be judged against a declared alphabet
        self._check_alphabet = model.mode != Mode.TM or model.alphabet is not None

        self.steps: List[Step] = []
        self.verdict: Optional[Verdict] = None
        self.reason: Optional[str] = None
        self.accepting: Tuple[Configuration, ...] = ()
        self._live: Tuple[Configuration, ...] = ()
        self._last_output = ''
        self._start()

    @property
    def done(self) -> bool:
        return self.verdict is not None

    @property
    def live(self) -> Tuple[Configuration, ...]:
        return self._live

    def _start(self) -> None:
        initial = self.model.initial_state()
        mode = self.model.mode

        if mode == Mode.TM:
            tapes = tuple(
                Tape.from_input(self.inputs[i] if i < len(self.inputs) else '', self.options.blank_symbol)
                for i in range(self.model.tapes)
            )
            config = Configuration(initial.id, '', tapes=tapes)
            self._live = (config,)
            if self._check_alphabet:
                unknown = [symbol for text in self.inputs for symbol in text if symbol not in self._alphabet]
                if unknown:
                    self._record(Step(0, None, (), (DeadConfiguration(config, SYMBOL_NOT_IN_ALPHABET),),
                                      rejection_reason=SYMBOL_NOT_IN_ALPHABET))
                    self._finish(Verdict.REJECT, SYMBOL_NOT_IN_ALPHABET)
                    return
            # A machine only accepts by entering an accepting state or halting in one
            self._record(Step(0, None, self._live))
            return

        stack = ()
        if mode == Mode.PDA and self.options.initial_stack_symbol:
            stack = (self.options.initial_stack_symbol,)
        output = self._moore_outputs[initial.id] if mode == Mode.MOORE else ''
        start = Configuration(initial.id, self.input, stack=stack, output=output)

        try:
            self._live = tuple(self._closure([start]))
        except _BudgetExhausted:
            self._finish(Verdict.BUDGET_EXCEEDED, CONFIGURATION_BUDGET)
            return
        self._last_output = output
        self._record(Step(0, None, self._live))

        if not self.input:
            self._finish_input()

    def step(self) -> Optional[Step]:
        """
        Advance every live configuration by one step.

        Returns:
            The recorded step, or None if the run had already finished
        """
        if self.done:
            return None

        try:
            if self.model.mode == Mode.TM:
                step = self._step_tm()
            else:
                step = self._step_input()
        except _BudgetExhausted:
            self._finish(Verdict.BUDGET_EXCEEDED, CONFIGURATION_BUDGET)
            return None

        if not self.done and step.index >= self.options.max_steps:
            self._finish(Verdict.BUDGET_EXCEEDED, STEP_BUDGET)
        return step

    def run(self) -> SimulationResult:
        """Step until a verdict is reached."""
        while not self.done:
            self.step()
        return self.result()

    def __iter__(self) -> Iterator[Step]:
        index = 0
        while True:
            while index < len(self.steps):
                yield self.steps[index]
                index += 1
            if self.done:
                return
            self.step()

    def result(self) -> SimulationResult:
        output = None
        if self.model.mode in (Mode.MEALY, Mode.MOORE):
            output = self._last_output
        return SimulationResult(
            verdict=self.verdict,
            steps=list(self.steps),
            reason=self.reason,
            output=output,
            accepting=self.accepting,
        )

    def _record(self, step: Step) -> Step:
        self.steps.append(step)
        if self._live and self.model.mode in (Mode.MEALY, Mode.MOORE):
            self._last_output = self._live[0].output
        return step

    def _finish(self, verdict: Verdict, reason: Optional[str] = None,
                accepting: Iterable[Configuration] = ()) -> None:
        self.verdict = verdict
        self.reason = reason
        self.accepting = tuple(accepting)
        if verdict == Verdict.BUDGET_EXCEEDED:
            logger.warning(f"Simulation of {self.model.mode.value} stopped: {reason} "
                           f"after {max(len(self.steps) - 1, 0)} steps")
        else:
            logger.debug(f"Simulation of {self.model.mode.value} on '{self.input}': {verdict.value}"
                         + (f" ({reason})" if reason else ''))

    def _finish_input(self) -> None:
        if self.model.mode in (Mode.MEALY, Mode.MOORE):
            # Transducers accept once the whole input has been translated
            self._finish(Verdict.ACCEPT, accepting=self._live)
            return

        if self.model.mode == Mode.PDA and self.options.acceptance == EMPTY_STACK:
            accepting = [config for config in self._live if not config.stack]
            reason = STACK_NOT_EMPTY
        else:
            accepting = [config for config in self._live if config.state in self._accepting_ids]
            reason = NOT_ACCEPTING

        if accepting:
            self._finish(Verdict.ACCEPT, accepting=accepting)
        else:
            self._finish(Verdict.REJECT, reason)

    def _apply(self, config: Configuration, edge: Edge, consume: bool) -> Optional[Configuration]:
        spec = edge.spec
        remaining = config.remaining[1:] if consume else config.remaining

        if isinstance(spec, PDASymbol):
            stack = config.stack
            if spec.pop:
                if not stack or stack[-1] != spec.pop:
                    return None
                stack = stack[:-1]
            return Configuration(edge.target, remaining, stack=stack + spec.push)

        output = config.output
        if isinstance(spec, MealySymbol):
            output += spec.output
        elif self.model.mode == Mode.MOORE:
            output += self._moore_outputs[edge.target]
        return Configuration(edge.target, remaining, output=output)

    def _closure(self, configurations: List[Configuration]) -> List[Configuration]:
        """
        All configurations reachable through ε-edges, in discovery order.

        A configuration already seen in this computation is never expanded again, which
        terminates ε-cycles; ε-moves that keep growing a PDA stack run into the
        configuration budget instead.
        """
        seen = dict.fromkeys(configurations)
        queue = deque(seen)

        while queue:
            config = queue.popleft()
            for edge in self._outgoing.get(config.state, ()):
                if not edge.spec.is_epsilon:
                    continue
                successor = self._apply(config, edge, consume=False)
                if successor is None or successor in seen:
                    continue
                seen[successor] = None
                if len(seen) > self.options.max_configurations:
                    raise _BudgetExhausted()
                queue.append(successor)

        return list(seen)

    def _step_input(self) -> Step:
        index = len(self.steps)
        symbol = self._live[0].remaining[0]

        if self._check_alphabet and symbol not in self._alphabet:
            dead = tuple(DeadConfiguration(config, SYMBOL_NOT_IN_ALPHABET) for config in self._live)
            self._live = ()
            step = self._record(Step(index, symbol, (), dead, rejection_reason=SYMBOL_NOT_IN_ALPHABET))
            self._finish(Verdict.REJECT, SYMBOL_NOT_IN_ALPHABET)
            return step

        moved = {}
        dead = []
        taken = {}
        for config in self._live:
            found = False
            for edge in self._outgoing.get(config.state, ()):
                if edge.spec.is_epsilon or edge.spec.read != symbol:
                    continue
                successor = self._apply(config, edge, consume=True)
                if successor is None:
                    continue
                found = True
                taken[edge.transition_id] = None
                moved[successor] = None
            if not found:
                dead.append(DeadConfiguration(config, NO_TRANSITION))

        if len(moved) > self.options.max_configurations:
            raise _BudgetExhausted()
        self._live = tuple(self._closure(list(moved)))

        if not self._live:
            step = self._record(Step(index, symbol, (), tuple(dead), transitions=tuple(taken),
                                     rejection_reason=NO_TRANSITION))
            self._finish(Verdict.REJECT, NO_TRANSITION)
            return step

        step = self._record(Step(index, symbol, self._live, tuple(dead), transitions=tuple(taken)))
        if not self._live[0].remaining:
            self._finish_input()
        return step

    def _step_tm(self) -> Step:
        index = len(self.steps)
        moved = {}
        dead = []
        taken = {}
        halted = []

        for config in self._live:
            symbols = tuple(tape.read() for tape in config.tapes)
            found = False
            for edge in self._outgoing.get(config.state, ()):
                reads, writes, moves = _tape_actions(edge.spec)
                if any(read != WILDCARD and read != symbol for read, symbol in zip(reads, symbols)):
                    continue
                tapes = tuple(
                    tape.write(symbol if write == WILDCARD else write).move(move)
                    for tape, symbol, write, move in zip(config.tapes, symbols, writes, moves)
                )
                found = True
                taken[edge.transition_id] = None
                moved[Configuration(edge.target, '', tapes=tapes)] = None
            if found:
                continue
            if config.state in self._accepting_ids:
                halted.append(config)
            else:
                dead.append(DeadConfiguration(config, HALTED))

        if len(moved) > self.options.max_configurations:
            raise _BudgetExhausted()

        self._live = tuple(moved)
        accepted = tuple(config for config in self._live if config.state in self._accepting_ids) + tuple(halted)

        if not self._live and not accepted:
            step = self._record(Step(index, None, (), tuple(dead), transitions=tuple(taken),
                                     rejection_reason=HALTED))
            self._finish(Verdict.REJECT, HALTED)
            return step

        step = self._record(Step(index, None, self._live, tuple(dead), accepted, tuple(taken)))
        if accepted:
            self._finish(Verdict.ACCEPT, accepting=accepted)
        return step


def simulate(model: Automaton, input_string: Union[str, Sequence[str]],
             options: Optional[SimulationOptions] = None) -> SimulationResult:
    """
    Runs an automaton over an input string to completion.

    Args:
        model: A valid automaton of any mode
        input_string: Input symbols, one character per symbol, or one string per tape
            for a multi-tape Turing machine
        options: Budget and machine conventions; defaults to SimulationOptions()

    Returns:
        SimulationResult with the verdict, the full trace and, for Mealy/Moore
        machines, the emitted output

    Raises:
        ValidationError: If the model is invalid
    """
    return Simulation(model, input_string, options).run()


def iter_steps(model: Automaton, input_string: Union[str, Sequence[str]],
               options: Optional[SimulationOptions] = None) -> Iterator[Step]:
    """Generator version of simulate that yields each step as soon as it is computed."""
    yield from Simulation(model, input_string, options)


def accepts(model: Automaton, input_string: Union[str, Sequence[str]],
            options: Optional[SimulationOptions] = None) -> bool:
    """
    Whether the automaton accepts the input.

    Raises:
        SimulationBudgetExceeded: If the run stopped before reaching a verdict
    """
    simulation = Simulation(model, input_string, options)
    result = simulation.run()
    if result.verdict == Verdict.BUDGET_EXCEEDED:
        raise SimulationBudgetExceeded(max(len(result.steps) - 1, 0), len(simulation.live))
    return result.accepted


def multi_run(model: Automaton, inputs: Iterable[str], options: Optional[SimulationOptions] = None) -> List[Dict]:
    """
    Runs a batch of inputs against the same automaton.

    Returns:
        One dictionary per input: {'input', 'verdict', 'accepted', 'reason', 'output', 'steps'}
    """
    results = []
    for input_string in inputs:
        result = simulate(model, input_string, options)
        results.append({
            'input': input_string,
            'verdict': result.verdict.value,
            'accepted': result.accepted,
            'reason': result.reason,
            'output': result.output,
            'steps': len(result.steps) - 1,
        })
    return results
