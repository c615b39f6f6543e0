# mutexsim/analysis/trace_analyzer.py
from collections import Counter
from typing import Dict, Iterable, List, Optional

from mutexsim.engine.model import Model, TraceEntry, TraceLevel


class TraceAnalyzer:
    def __init__(self, entries: Iterable[TraceEntry], algorithm: Optional[str] = None, mode: Optional[str] = None):
        # Copy, so later steps on the model do not change what is being analysed
        self.entries: List[TraceEntry] = list(entries)
        self.algorithm = algorithm
        self.mode = mode

    @classmethod
    def from_model(cls, model: Model) -> 'TraceAnalyzer':
        return cls(model.trace, algorithm=model.algorithm.value, mode=model.mode.value)

    def get_warnings(self) -> List[TraceEntry]:
        return [e for e in self.entries if e.level is TraceLevel.WARNING]

    def entries_since(self, step: int) -> List[TraceEntry]:
        """Entries with a step number strictly greater than step."""
        return [e for e in self.entries if e.step > step]

    def find(self, text: str) -> List[TraceEntry]:
        return [e for e in self.entries if text in e.text]

    def level_counts(self) -> Dict[str, int]:
        counts = Counter(e.level.value for e in self.entries)
        return {level.value: counts.get(level.value, 0) for level in TraceLevel}

    def last_step(self) -> int:
        return self.entries[-1].step if self.entries else 0

    @staticmethod
    def format_entry(entry: TraceEntry) -> str:
        marker = '!' if entry.level is TraceLevel.WARNING else ' '
        return f"[{entry.step:03d}]{marker} {entry.text}"

    def format_text(self) -> str:
        """Plain-text trace export, oldest entry first."""
        header = [
            'Mutex Explorer trace',
            f"Algorithm: {self.algorithm or 'unknown'}",
            f"Mode: {self.mode or 'unknown'}",
            '',
        ]
        return '\n'.join(header + [self.format_entry(e) for e in self.entries]) + '\n'
