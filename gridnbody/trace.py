from __future__ import annotations
import csv
import os
import time
import warnings


class SyncTraceLogger:
    """CSV event log of one partition's halo traffic and migration counts."""

    COLUMNS = [
        "wall_time", "rank", "iteration", "turn", "event", "peer",
        "n_bytes", "n_small", "n_large", "detail",
    ]

    def __init__(self, path: str, *, rank: int, enabled: bool = True):
        self.enabled = bool(enabled)
        self.rank = int(rank)
        self.start = time.perf_counter()
        self.path = path
        if not self.enabled:
            self._f = None
            self._w = None
            return
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._f = open(path, "w", newline="", encoding="utf-8")
        self._w = csv.writer(self._f)
        self._w.writerow(self.COLUMNS)
        self._f.flush()

    @classmethod
    def for_rank(cls, path: str, *, rank: int, size: int) -> "SyncTraceLogger":
        """Rank 0 writes ``path``; other ranks write ``<base>_rank<N><ext>``."""
        trace_file = path
        if size > 1 and rank != 0:
            base, ext = os.path.splitext(path)
            trace_file = f"{base}_rank{rank}{ext or '.csv'}"
        return cls(trace_file, rank=rank, enabled=True)

    def log(self, *, iteration: int, event: str, turn: int = -1, peer: int = -1,
            n_bytes: int = 0, n_small: int = 0, n_large: int = 0, detail: str = ""):
        if not self.enabled or self._w is None:
            return
        wall = time.perf_counter() - self.start
        self._w.writerow([
            f"{wall:.6f}",
            int(self.rank),
            int(iteration),
            int(turn),
            str(event),
            int(peer),
            int(n_bytes),
            int(n_small),
            int(n_large),
            str(detail),
        ])
        self._f.flush()

    def close(self):
        try:
            if self._f is not None:
                self._f.close()
        except OSError as exc:
            warnings.warn(
                f"SyncTraceLogger.close() failed for {self.path!r}: {exc!r}",
                RuntimeWarning,
            )
