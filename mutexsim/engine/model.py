# mutexsim/engine/model.py
#
# The single mutable aggregate shared by every engine component: processes,
# ring topology, per-algorithm resource state, metrics, the bounded trace log
# and the loaded script. Engine functions receive the Model explicitly.

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TRACE_LIMIT = 700
MIN_PROCESSES = 2
MAX_PROCESSES = 12


class Algorithm(str, Enum):
    TOKEN_RING = 'TokenRing'
    RICART_AGRAWALA = 'RA'

    @classmethod
    def parse(cls, value) -> 'Algorithm':
        """Map a document/config value onto the closed set of algorithms.

        Raises ValueError for anything else, so an unsupported algorithm is
        rejected when a Model is built rather than when it is stepped.
        """
        if isinstance(value, cls):
            return value
        for member in cls:
            if value == member.value:
                return member
        raise ValueError(f"Unsupported algorithm: {value!r} (expected 'TokenRing' or 'RA')")


class Mode(str, Enum):
    INTERACTIVE = 'interactive'
    SCRIPT = 'script'


class MessageKind(str, Enum):
    REQUEST = 'REQUEST'
    REPLY = 'REPLY'


class TraceLevel(str, Enum):
    INFO = 'info'
    WARNING = 'warning'


class Reason(str, Enum):
    """Reason codes carried by rejected actions and stalled steps."""
    UNKNOWN_PROCESS = 'unknown_process'
    CRASHED = 'crashed'
    ALREADY_IN_CS = 'already_in_cs'
    ALREADY_REQUESTING = 'already_requesting'
    NOT_IN_CS = 'not_in_cs'
    ALREADY_CRASHED = 'already_crashed'
    NOT_CRASHED = 'not_crashed'
    NOT_INTERACTIVE = 'not_interactive'
    UNSUPPORTED_ALGORITHM = 'unsupported_algorithm'
    NO_ALIVE_PROCESSES = 'no_alive_processes'
    NO_MESSAGES = 'no_messages'
    TOKEN_LOST = 'token_lost'
    UNKNOWN_HOLDER = 'unknown_holder'
    CRASHED_IN_CS = 'crashed_in_cs'
    RELEASE_REQUIRED = 'release_required'
    WAITING_REPLIES = 'waiting_replies'
    NO_EVENTS = 'no_events'
    BAD_EVENT = 'bad_event'
    UNSUPPORTED_OP = 'unsupported_op'


class StepKind(str, Enum):
    CS_ENTRY = 'cs_entry'
    TOKEN_PASS = 'token_pass'
    MESSAGE_DELIVERED = 'message_delivered'
    MESSAGE_DROPPED = 'message_dropped'
    SCRIPT_EVENT = 'script_event'
    SCRIPT_DONE = 'script_done'
    STALLED = 'stalled'


@dataclass
class Process:
    id: str
    requesting: bool = False
    in_cs: bool = False
    crashed: bool = False
    # Ricart-Agrawala bookkeeping; untouched by the Token Ring engine
    clock: int = 0
    req_ts: Optional[int] = None
    awaiting: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)

    def reset_request(self):
        self.req_ts = None
        self.awaiting = []
        self.deferred = []


@dataclass(frozen=True)
class Message:
    id: int
    kind: MessageKind
    sender: str
    recipient: str
    timestamp: int

    def describe(self) -> str:
        return f"{self.kind.value} #{self.id} {self.sender} -> {self.recipient}"


@dataclass
class TokenState:
    holder: Optional[str]
    lost: bool = False


@dataclass
class NetworkState:
    queue: Deque[Message] = field(default_factory=deque)
    next_message_id: int = 1
    drop_next_send: bool = False


@dataclass
class Metrics:
    cs_entries: int = 0
    cs_releases: int = 0
    token_passes: int = 0
    messages_sent: int = 0
    messages_delivered: int = 0
    messages_dropped: int = 0

    def as_dict(self, algorithm: Algorithm) -> Dict[str, int]:
        if algorithm is Algorithm.TOKEN_RING:
            return {
                'csEntries': self.cs_entries,
                'csReleases': self.cs_releases,
                'tokenPasses': self.token_passes,
            }
        return {
            'csEntries': self.cs_entries,
            'csReleases': self.cs_releases,
            'messagesSent': self.messages_sent,
            'messagesDelivered': self.messages_delivered,
            'messagesDropped': self.messages_dropped,
        }


METRIC_FIELDS = {
    'csEntries': 'cs_entries',
    'csReleases': 'cs_releases',
    'tokenPasses': 'token_passes',
    'messagesSent': 'messages_sent',
    'messagesDelivered': 'messages_delivered',
    'messagesDropped': 'messages_dropped',
}


@dataclass(frozen=True)
class TraceEntry:
    step: int
    level: TraceLevel
    text: str


@dataclass
class ScriptState:
    description: str = ''
    events: List[dict] = field(default_factory=list)
    index: int = 0


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    reason: Optional[Reason] = None
    armed: Optional[bool] = None

    @classmethod
    def rejected(cls, reason: Reason) -> 'ActionResult':
        return cls(ok=False, reason=reason)


ACCEPTED = ActionResult(ok=True)


@dataclass(frozen=True)
class StepResult:
    kind: StepKind
    reason: Optional[Reason] = None
    pid: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    message: Optional[Message] = None
    awaiting: Tuple[str, ...] = ()

    @classmethod
    def stalled(cls, reason: Reason, **kwargs) -> 'StepResult':
        return cls(kind=StepKind.STALLED, reason=reason, **kwargs)

    @property
    def is_stalled(self) -> bool:
        return self.kind is StepKind.STALLED


@dataclass
class Model:
    algorithm: Algorithm
    processes: List[Process]
    ring: List[str]
    mode: Mode = Mode.INTERACTIVE
    token: Optional[TokenState] = None
    network: Optional[NetworkState] = None
    metrics: Metrics = field(default_factory=Metrics)
    script: ScriptState = field(default_factory=ScriptState)
    trace_limit: int = DEFAULT_TRACE_LIMIT
    step_count: int = 0
    trace: Deque[TraceEntry] = field(default_factory=deque, init=False)

    def __post_init__(self):
        # Closed union: exactly one resource variant per algorithm
        self.algorithm = Algorithm.parse(self.algorithm)
        if self.algorithm is Algorithm.TOKEN_RING:
            if self.token is None:
                self.token = TokenState(holder=self.ring[0] if self.ring else None)
            self.network = None
        else:
            if self.network is None:
                self.network = NetworkState()
            self.token = None
        self.trace = deque(maxlen=max(1, self.trace_limit))

    @property
    def is_token_ring(self) -> bool:
        return self.algorithm is Algorithm.TOKEN_RING


def clamp_int(value, lo: int, hi: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return lo
    return max(lo, min(hi, n))


def make_model(process_count, algorithm, trace_limit: int = DEFAULT_TRACE_LIMIT,
               min_processes: int = MIN_PROCESSES, max_processes: int = MAX_PROCESSES) -> Model:
    """Build a fresh interactive Model with processes P1..Pn in ring order."""
    algorithm = Algorithm.parse(algorithm)
    n = clamp_int(process_count, min_processes, max_processes)
    processes = [Process(id=f"P{i}") for i in range(1, n + 1)]
    return Model(
        algorithm=algorithm,
        processes=processes,
        ring=[p.id for p in processes],
        trace_limit=trace_limit,
    )


# --- Trace log ---

def log_event(model: Model, text: str, level: TraceLevel = TraceLevel.INFO) -> TraceEntry:
    model.step_count += 1
    entry = TraceEntry(step=model.step_count, level=level, text=text)
    # deque(maxlen) evicts the oldest entry once the bound is exceeded
    model.trace.append(entry)
    logger.debug(f"[{entry.step:03d}] {level.value}: {text}")
    return entry


def log_warning(model: Model, text: str) -> TraceEntry:
    return log_event(model, text, TraceLevel.WARNING)


def clear_trace(model: Model):
    model.trace.clear()
    model.step_count = 0


# --- Process lookups ---

def get_proc(model: Model, pid) -> Optional[Process]:
    for p in model.processes:
        if p.id == pid:
            return p
    return None


def any_in_cs(model: Model) -> Optional[Process]:
    for p in model.processes:
        if p.in_cs:
            return p
    return None


def alive_pids(model: Model) -> List[str]:
    return [p.id for p in model.processes if not p.crashed]


def ring_next_alive(model: Model, pid: str) -> str:
    """Next alive successor of pid in ring order, or pid itself if none."""
    n = len(model.ring)
    if n == 0:
        return pid
    start = model.ring.index(pid) if pid in model.ring else -1
    for k in range(1, n + 1):
        candidate = model.ring[(start + k) % n]
        p = get_proc(model, candidate)
        if p is not None and not p.crashed:
            return candidate
    return pid


_PID_DIGITS = re.compile(r'\d+')


def pid_number(pid) -> Optional[int]:
    match = _PID_DIGITS.search(str(pid))
    return int(match.group(0)) if match else None


def compare_pids(a: str, b: str) -> int:
    """Numeric comparison of process ids (P2 < P10), falling back to string order."""
    an, bn = pid_number(a), pid_number(b)
    if an is not None and bn is not None:
        return (an > bn) - (an < bn)
    return (a > b) - (a < b)
