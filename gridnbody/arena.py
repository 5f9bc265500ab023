from __future__ import annotations

from typing import Iterable

import numpy as np

from .particle import FIELDS, Particle

N_FIELDS = len(FIELDS)


class ParticleArena:
    """Columnar particle storage owned by one partition.

    ``data`` has shape (n, 8) in ``FIELDS`` order, ``uid`` has shape (n,).
    Rows are only ever appended (admission) or compacted by a keep mask
    (eviction); callers never delete while iterating.
    """

    def __init__(self, data: np.ndarray | None = None, uid: np.ndarray | None = None):
        if data is None:
            data = np.empty((0, N_FIELDS), dtype=np.float64)
        data = np.array(data, dtype=np.float64).reshape(-1, N_FIELDS)
        if uid is None:
            uid = np.full((data.shape[0],), -1, dtype=np.int64)
        uid = np.array(uid, dtype=np.int64).reshape(-1)
        if uid.shape[0] != data.shape[0]:
            raise ValueError("uid array must have one entry per particle row")
        self.data = data
        self.uid = uid

    @classmethod
    def from_particles(cls, particles: Iterable[Particle]) -> "ParticleArena":
        plist = list(particles)
        if not plist:
            return cls()
        data = np.stack([p.as_row() for p in plist])
        uid = np.array([p.uid for p in plist], dtype=np.int64)
        return cls(data, uid)

    def __len__(self) -> int:
        return int(self.data.shape[0])

    @property
    def mass(self) -> np.ndarray:
        return self.data[:, 0]

    @property
    def radius(self) -> np.ndarray:
        return self.data[:, 1]

    @property
    def pos(self) -> np.ndarray:
        return self.data[:, 2:4]

    @property
    def vel(self) -> np.ndarray:
        return self.data[:, 4:6]

    @property
    def force(self) -> np.ndarray:
        return self.data[:, 6:8]

    def append(self, data: np.ndarray, uid: np.ndarray) -> int:
        data = np.asarray(data, dtype=np.float64).reshape(-1, N_FIELDS)
        uid = np.asarray(uid, dtype=np.int64).reshape(-1)
        if data.shape[0] == 0:
            return 0
        self.data = np.concatenate([self.data, data], axis=0)
        self.uid = np.concatenate([self.uid, uid])
        return int(data.shape[0])

    def compact(self, keep: np.ndarray) -> int:
        """Drop rows where ``keep`` is False; returns the number removed."""
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != (len(self),):
            raise ValueError("keep mask must have shape (n,)")
        removed = int((~keep).sum())
        if removed:
            self.data = self.data[keep]
            self.uid = self.uid[keep]
        return removed

    def frozen_copy(self) -> tuple[np.ndarray, np.ndarray]:
        data = self.data.copy()
        uid = self.uid.copy()
        data.setflags(write=False)
        uid.setflags(write=False)
        return data, uid

    def particles(self) -> tuple[Particle, ...]:
        return tuple(Particle.from_row(row, uid) for row, uid in zip(self.data, self.uid))
