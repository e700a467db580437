"""
Bounded per-step log of lattice-wide energies and mode amplitude.

Columns (exact schema):
    t, E0, E_sym, E_asym, A_kx
"""

from collections import deque
from dataclasses import astuple, dataclass

import pandas as pd

LOG_COLUMNS = ["t", "E0", "E_sym", "E_asym", "A_kx"]


@dataclass(frozen=True)
class LogEntry:
    t: int
    E0: float
    E_sym: float
    E_asym: float
    A_kx: float


class SimulationLog:
    """Keeps the most recent ``max_entries`` steps; older entries are dropped."""

    def __init__(self, max_entries: int = 1500):
        self.max_entries = max_entries
        self.entries: deque[LogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, t: int, e0: float, e_sym: float, e_asym: float, a_kx: float) -> LogEntry:
        entry = LogEntry(t=t, E0=e0, E_sym=e_sym, E_asym=e_asym, A_kx=a_kx)
        self.entries.append(entry)
        return entry

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([astuple(e) for e in self.entries], columns=LOG_COLUMNS)

    def to_csv(self) -> str:
        return self.to_dataframe().to_csv(index=False)

    def to_text(self) -> str:
        lines = [f"Simulation log ({len(self.entries)} entries)"]
        for e in self.entries:
            lines.append(
                f"t={e.t:>6d}  E0={e.E0:.6f}  E_sym={e.E_sym:.6f}  E_asym={e.E_asym:.6f}  A_kx={e.A_kx:+.6f}"
            )
        return "\n".join(lines)

    def clear(self) -> None:
        self.entries.clear()
