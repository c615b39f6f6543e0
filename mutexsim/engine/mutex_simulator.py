# mutexsim/engine/mutex_simulator.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from mutexsim.analysis.safety_checker import SafetyReport, check_safety

from . import actions
from .document_parser import (
    DocumentValidationError, dump_document, load_document_from_file,
    load_document_from_string, save_document,
)
from .expression_engine import ExpressionInterpreter, evaluate
from .model import (
    DEFAULT_TRACE_LIMIT, MAX_PROCESSES, MIN_PROCESSES, ActionResult, Algorithm,
    Mode, Model, Reason, StepKind, StepResult, TraceEntry, clear_trace, log_event,
    log_warning, make_model,
)
from .snapshot import export_state, model_from_document

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

MUTUAL_EXCLUSION = 'mutual_exclusion'


class InvariantViolation(RuntimeError):
    """Raised after a step when an invariant fails and strict_invariants is on."""
    pass


@dataclass(frozen=True)
class InvariantFailure:
    step: int
    name: str
    expression: Optional[str]
    message: str


class MutexSimulator:
    """Owns one Model and drives it: actions, single steps, bounded runs, loading and export.

    Recognised config keys: max_steps, trace_limit, min_processes, max_processes,
    strict_invariants, check_invariants.
    """

    def __init__(self, process_count=4, algorithm='TokenRing', config=None):
        self.logger = logging.getLogger(f"{__name__}.MutexSimulator")
        self.config = config or {}

        self.max_steps = self.config.get('max_steps', 10000)
        self.trace_limit = self.config.get('trace_limit') or DEFAULT_TRACE_LIMIT
        self.min_processes = self.config.get('min_processes', MIN_PROCESSES)
        self.max_processes = self.config.get('max_processes', MAX_PROCESSES)
        self.strict_invariants = self.config.get('strict_invariants', False)
        self.check_invariants = self.config.get('check_invariants', True)

        self.invariants: List = []
        self.invariant_failures: List[InvariantFailure] = []
        self.model: Model = None
        self.reset(process_count, algorithm)

    # --- Lifecycle ---

    def reset(self, process_count=None, algorithm=None):
        """Replace the model with a fresh interactive one (P1..Pn, token at P1)."""
        if process_count is None:
            process_count = len(self.model.processes) if self.model else 4
        if algorithm is None:
            algorithm = self.model.algorithm if self.model else Algorithm.TOKEN_RING

        model = make_model(process_count, algorithm, trace_limit=self.trace_limit,
                           min_processes=self.min_processes, max_processes=self.max_processes)
        log_event(model, f"Reset: {model.algorithm.value} with {len(model.processes)} processes.")
        self.model = model
        self.invariants = []
        self.invariant_failures = []
        self.logger.info(f"Reset to {model.algorithm.value} with {len(model.processes)} processes.")
        return model

    def load(self, document):
        """Replace the current model with one built from a parsed document.

        The new Model is built completely before it is swapped in; on a
        DocumentValidationError the current model is left untouched.
        """
        try:
            model = model_from_document(document, trace_limit=self.trace_limit)
        except DocumentValidationError as e:
            self.logger.warning(f"Document rejected: {e}")
            raise

        self.model = model
        self.invariants = list(document.get('invariants') or [])
        self.invariant_failures = []
        self.logger.info(f"Loaded {document['kind']} document ({model.algorithm.value}, mode={model.mode.value}).")
        return model

    def load_text(self, text):
        try:
            document = load_document_from_string(text)
        except DocumentValidationError as e:
            self.logger.warning(f"Document rejected: {e}")
            raise
        return self.load(document)

    def load_file(self, file_path):
        try:
            document = load_document_from_file(file_path)
        except DocumentValidationError as e:
            self.logger.warning(f"Document rejected: {e}")
            raise
        return self.load(document)

    # --- Snapshot ---

    def export_state(self) -> dict:
        return export_state(self.model)

    def export_text(self, fmt='json') -> str:
        return dump_document(self.export_state(), fmt)

    def save_state(self, file_path):
        save_document(self.export_state(), file_path)
        self.logger.info(f"State saved to {file_path}")

    # --- Actions ---

    def _report(self, action: str, result: ActionResult, *args) -> ActionResult:
        if not result.ok:
            target = f" {args[0]}" if args else ''
            self.logger.info(f"{action}{target} rejected: {result.reason.value}")
        return result

    def request_cs(self, pid: str) -> ActionResult:
        return self._report('request_cs', actions.request_cs(self.model, pid), pid)

    def release_cs(self, pid: str) -> ActionResult:
        return self._report('release_cs', actions.release_cs(self.model, pid), pid)

    def crash(self, pid: str) -> ActionResult:
        return self._report('crash', actions.crash_process(self.model, pid), pid)

    def recover(self, pid: str) -> ActionResult:
        return self._report('recover', actions.recover_process(self.model, pid), pid)

    def drop_token(self) -> ActionResult:
        return self._report('drop_token', actions.drop_token(self.model))

    def regenerate_token(self) -> ActionResult:
        return self._report('regenerate_token', actions.regenerate_token(self.model))

    def drop_next_message(self) -> ActionResult:
        return self._report('drop_next_message', actions.drop_next_message(self.model))

    def toggle_drop_next_send(self) -> ActionResult:
        return self._report('toggle_drop_next_send', actions.toggle_drop_next_send(self.model))

    def exit_script(self):
        """Leave script mode; the model keeps its current state and becomes interactive."""
        if self.model.mode is Mode.SCRIPT:
            self.model.mode = Mode.INTERACTIVE
            log_event(self.model, 'Exited script mode; interactive controls enabled.')

    def clear_trace(self):
        clear_trace(self.model)

    # --- Stepping ---

    def step(self) -> StepResult:
        """Advance exactly one logical step, then check invariants."""
        result = actions.step_once(self.model)
        if self.check_invariants:
            self._check_invariants()
        return result

    def _is_terminal(self, result: StepResult) -> bool:
        if self.model.mode is Mode.SCRIPT:
            return result.kind is StepKind.SCRIPT_DONE or result.reason is Reason.NO_EVENTS
        return result.is_stalled or result.kind is StepKind.CS_ENTRY

    def run(self, max_steps: Optional[int] = None) -> List[StepResult]:
        """Step until something a user must react to happens.

        Interactive runs stop at a stall or a critical-section entry; script runs
        stop once the script is exhausted. Bounded by max_steps.
        """
        limit = max_steps if max_steps is not None else self.max_steps
        results = []
        while len(results) < limit:
            result = self.step()
            results.append(result)
            if self._is_terminal(result):
                return results
        self.logger.error(f"Maximum step limit ({limit}) reached without reaching a stopping point.")
        return results

    # --- Checks ---

    def check_safety(self) -> SafetyReport:
        return check_safety(self.model)

    def _record_failure(self, name: str, expression: Optional[str], message: str):
        failure = InvariantFailure(step=self.model.step_count, name=name, expression=expression, message=message)
        self.invariant_failures.append(failure)
        self.logger.error(f"Invariant FAILED: {message}")
        log_warning(self.model, f"Invariant failed: {message}")
        if self.strict_invariants:
            raise InvariantViolation(message)

    def _check_invariants(self):
        report = check_safety(self.model)
        if not report.ok:
            self._record_failure(MUTUAL_EXCLUSION, None, report.message)

        if not self.invariants:
            return

        interpreter = ExpressionInterpreter(export_state(self.model))
        for inv in self.invariants:
            inv_expr, inv_name = inv, inv
            # Object-style invariants: { name: "...", expression: "..." }
            if isinstance(inv, dict):
                inv_expr = inv.get('expression')
                inv_name = inv.get('name', inv_expr)
            if not inv_expr:
                continue

            # Only an explicit False fails; None means the expression could not be evaluated
            if evaluate(inv_expr, interpreter) is False:
                message = inv_expr if inv_name == inv_expr else f"{inv_name} ({inv_expr})"
                self._record_failure(inv_name, inv_expr, message)

    @property
    def trace(self) -> List[TraceEntry]:
        return list(self.model.trace)
