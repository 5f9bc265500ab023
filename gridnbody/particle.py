from __future__ import annotations

from dataclasses import astuple, dataclass
from typing import Iterable

import numpy as np

from .constants import KINEMATIC_HALF_STEP, UID_SERIAL_BITS
from .physics import kinematic_step, pair_forces

# Column order of a particle record in arenas and on the wire.
FIELDS: tuple[str, ...] = ("mass", "radius", "x", "y", "vx", "vy", "fx", "fy")


def make_uid(partition_id: int, serial: int) -> int:
    return (int(partition_id) << UID_SERIAL_BITS) | int(serial)


def uid_origin(uid: int) -> int:
    return int(uid) >> UID_SERIAL_BITS


@dataclass
class Particle:
    """A point mass with a radius; small and large particles share the same physics."""

    mass: float
    radius: float
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    fx: float = 0.0
    fy: float = 0.0
    uid: int = -1

    def as_row(self) -> np.ndarray:
        return np.array(astuple(self)[: len(FIELDS)], dtype=np.float64)

    @classmethod
    def from_row(cls, row: np.ndarray, uid: int = -1) -> "Particle":
        vals = [float(x) for x in row]
        return cls(*vals, uid=int(uid))

    def accumulate_force(self, candidates: Iterable["Particle"], side: float | None = None) -> None:
        """Recompute (fx, fy) from every candidate except ``self``."""
        others = [p for p in candidates if p is not self]
        if not others:
            self.fx = 0.0
            self.fy = 0.0
            return
        cand_pos = np.array([[p.x, p.y] for p in others], dtype=float)
        cand_mass = np.array([p.mass for p in others], dtype=float)
        f = pair_forces(
            np.array([[self.x, self.y]]),
            np.array([self.mass]),
            cand_pos,
            cand_mass,
            side=side,
        )
        self.fx = float(f[0, 0])
        self.fy = float(f[0, 1])

    def integrate(self, time_step: float, domain_side: float, half_step: float = KINEMATIC_HALF_STEP) -> None:
        pos, vel = kinematic_step(
            np.array([[self.x, self.y]]),
            np.array([[self.vx, self.vy]]),
            np.array([[self.fx, self.fy]]),
            np.array([self.mass]),
            time_step,
            domain_side,
            half_step=half_step,
        )
        self.x, self.y = float(pos[0, 0]), float(pos[0, 1])
        self.vx, self.vy = float(vel[0, 0]), float(vel[0, 1])


def small_particle(
    rng: np.random.Generator,
    *,
    radius: float,
    mass: float,
    grid_size: float,
    row: int,
    col: int,
    uid: int = -1,
) -> Particle:
    """Uniformly random position inside the (row, col) sub-square, at rest."""
    x = (rng.random() + col) * grid_size
    y = (rng.random() + row) * grid_size
    return Particle(mass=float(mass), radius=float(radius), x=float(x), y=float(y), uid=uid)


def large_particle(spec, *, grid_size: float, row: int, col: int, uid: int = -1) -> Particle:
    """Configured local position translated into the (row, col) sub-square, at rest."""
    x = float(spec.x) + grid_size * col
    y = float(spec.y) + grid_size * row
    return Particle(mass=float(spec.mass), radius=float(spec.radius), x=x, y=y, uid=uid)
