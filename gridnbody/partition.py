from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from .arena import ParticleArena
from .config import SimulationConfig
from .constants import KINEMATIC_HALF_STEP
from .halo import HaloSnapshot
from .particle import Particle, large_particle, make_uid, small_particle
from .physics import kinematic_step, pair_forces, wrap_torus
from .topology import grid_side, neighbors


class PartitionPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    FORCE_COMPUTING = "force_computing"
    INTEGRATING = "integrating"
    MIGRATING = "migrating"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class PartitionView:
    """Read-only picture of a partition, enough for an external renderer."""

    partition_id: int
    row: int
    col: int
    iteration: int
    small: tuple[Particle, ...]
    large: tuple[Particle, ...]


@dataclass(frozen=True)
class StepReport:
    iteration: int
    admitted: int
    evicted: int
    n_small: int
    n_large: int


class Partition:
    """One square sub-region of the torus and the particles it owns.

    Per iteration: admit particles that entered from received halos, recompute
    forces against local + halo particles, integrate, capture the outgoing
    snapshot, then evict particles that left the box (skipped on the last
    iteration so the final frame keeps every particle).
    """

    def __init__(
        self,
        partition_id: int,
        n_partitions: int,
        *,
        grid_size: int,
        horizon: int,
        time_slots: int,
        small: ParticleArena | None = None,
        large: ParticleArena | None = None,
        half_step: float = KINEMATIC_HALF_STEP,
        minimum_image: bool = False,
        dedupe_admission: bool = True,
    ):
        side = grid_side(n_partitions)
        pid = int(partition_id)
        if pid < 0 or pid >= int(n_partitions):
            raise ValueError(f"partition_id must be in [0, {int(n_partitions)}); got {pid}")
        self.partition_id = pid
        self.n_partitions = int(n_partitions)
        self.side = side
        self.row = pid // side
        self.col = pid % side
        self.grid_size = int(grid_size)
        self.domain_side = float(self.grid_size * side)
        self.horizon = int(horizon)
        self.time_slots = int(time_slots)
        self.half_step = float(half_step)
        self.minimum_image = bool(minimum_image)
        self.dedupe_admission = bool(dedupe_admission)

        self.small = small if small is not None else ParticleArena()
        self.large = large if large is not None else ParticleArena()
        self.neighbor_ids: tuple[int, ...] = tuple(neighbors(pid, self.horizon, self.n_partitions))
        self._neighbor_set = frozenset(self.neighbor_ids)
        self.halo: list[HaloSnapshot] = []
        self.iteration = 1
        self.phase = PartitionPhase.IDLE if self.time_slots > 0 else PartitionPhase.TERMINAL
        self.snapshot = self.take_snapshot()
        # Out-of-box particles leave with the initial snapshot only.
        self.initially_evicted = self.evict_exited() if self.time_slots > 0 else 0

    @classmethod
    def from_config(
        cls,
        config: SimulationConfig,
        partition_id: int,
        n_partitions: int,
        *,
        rng: np.random.Generator | None = None,
    ) -> "Partition":
        side = grid_side(n_partitions)
        row, col = int(partition_id) // side, int(partition_id) % side
        if rng is None:
            rng = np.random.default_rng(int(config.seed) + int(partition_id))
        serial = 0
        small = []
        for _ in range(int(config.small_count)):
            small.append(
                small_particle(
                    rng,
                    radius=config.small_radius,
                    mass=config.small_mass,
                    grid_size=config.grid_size,
                    row=row,
                    col=col,
                    uid=make_uid(partition_id, serial),
                )
            )
            serial += 1
        large = []
        for spec in config.large:
            large.append(
                large_particle(
                    spec,
                    grid_size=config.grid_size,
                    row=row,
                    col=col,
                    uid=make_uid(partition_id, serial),
                )
            )
            serial += 1
        large_arena = ParticleArena.from_particles(large)
        large_arena.pos[:] = wrap_torus(large_arena.pos, float(config.grid_size * side))
        return cls(
            partition_id,
            n_partitions,
            grid_size=config.grid_size,
            horizon=config.horizon,
            time_slots=config.time_slots,
            small=ParticleArena.from_particles(small),
            large=large_arena,
            half_step=config.half_step,
            minimum_image=config.minimum_image,
            dedupe_admission=config.dedupe_admission,
        )

    # --- geometry -------------------------------------------------------------

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(x_lo, x_hi, y_lo, y_hi), half-open on the high side."""
        g = float(self.grid_size)
        return self.col * g, (self.col + 1) * g, self.row * g, (self.row + 1) * g

    def contains(self, pos: np.ndarray) -> np.ndarray:
        x_lo, x_hi, y_lo, y_hi = self.bounds
        pos = np.asarray(pos, dtype=float).reshape(-1, 2)
        return (
            (pos[:, 0] >= x_lo) & (pos[:, 0] < x_hi)
            & (pos[:, 1] >= y_lo) & (pos[:, 1] < y_hi)
        )

    def is_neighbor(self, partition_id: int) -> bool:
        return int(partition_id) in self._neighbor_set

    @property
    def is_last_iteration(self) -> bool:
        return self.iteration >= self.time_slots

    # --- halo buffer ----------------------------------------------------------

    def receive_halo(self, snapshot: HaloSnapshot) -> None:
        self.halo.append(snapshot)

    def clear_halo(self) -> None:
        self.halo.clear()

    def take_snapshot(self) -> HaloSnapshot:
        return HaloSnapshot.capture(self.partition_id, self.iteration, self.small, self.large)

    # --- step phases ----------------------------------------------------------

    def admit_entered(self) -> int:
        """Append halo particles now inside this box to the matching arena."""
        admitted = 0
        for snap in self.halo:
            for arena, data, uid in (
                (self.small, snap.small_data, snap.small_uid),
                (self.large, snap.large_data, snap.large_uid),
            ):
                if data.shape[0] == 0:
                    continue
                take = self.contains(data[:, 2:4])
                if self.dedupe_admission:
                    take &= ~self._already_held(uid)
                admitted += arena.append(data[take], uid[take])
        return admitted

    def _already_held(self, uid: np.ndarray) -> np.ndarray:
        """Mask of identified uids that are held locally or repeat earlier in ``uid``."""
        held = np.isin(uid, self.small.uid) | np.isin(uid, self.large.uid)
        _, first = np.unique(uid, return_index=True)
        repeat = np.ones(uid.shape, dtype=bool)
        repeat[first] = False
        return (held | repeat) & (uid >= 0)

    def _candidates(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        pos = [self.small.pos, self.large.pos]
        mass = [self.small.mass, self.large.mass]
        uid = [self.small.uid, self.large.uid]
        for snap in self.halo:
            pos += [snap.small_data[:, 2:4], snap.large_data[:, 2:4]]
            mass += [snap.small_data[:, 0], snap.large_data[:, 0]]
            uid += [snap.small_uid, snap.large_uid]
        return np.concatenate(pos), np.concatenate(mass), np.concatenate(uid)

    def compute_forces(self) -> None:
        """Recompute the force on every owned particle that is inside the box.

        Pairs sharing a non-negative uid are skipped, so a particle never feels
        its own copy in a neighbor's halo.
        """
        cand_pos, cand_mass, cand_uid = self._candidates()
        side = self.domain_side if self.minimum_image else None
        for arena in (self.large, self.small):
            idx = np.nonzero(self.contains(arena.pos))[0]
            if idx.size == 0:
                continue
            arena.force[idx] = pair_forces(
                arena.pos[idx],
                arena.mass[idx],
                cand_pos,
                cand_mass,
                target_uid=arena.uid[idx],
                cand_uid=cand_uid,
                side=side,
            )

    def integrate(self, time_step: float) -> None:
        for arena in (self.large, self.small):
            idx = np.nonzero(self.contains(arena.pos))[0]
            if idx.size == 0:
                continue
            pos, vel = kinematic_step(
                arena.pos[idx],
                arena.vel[idx],
                arena.force[idx],
                arena.mass[idx],
                time_step,
                self.domain_side,
                half_step=self.half_step,
            )
            arena.pos[idx] = pos
            arena.vel[idx] = vel

    def evict_exited(self) -> int:
        evicted = 0
        for arena in (self.large, self.small):
            evicted += arena.compact(self.contains(arena.pos))
        return evicted

    def simulate_step(self, time_step: float) -> StepReport:
        if self.phase == PartitionPhase.TERMINAL:
            raise RuntimeError(
                f"partition {self.partition_id} already ran all {self.time_slots} iterations"
            )
        self.phase = PartitionPhase.MIGRATING
        admitted = self.admit_entered()
        self.phase = PartitionPhase.FORCE_COMPUTING
        self.compute_forces()
        self.phase = PartitionPhase.INTEGRATING
        self.integrate(time_step)
        self.phase = PartitionPhase.MIGRATING
        self.snapshot = self.take_snapshot()
        evicted = 0
        if not self.is_last_iteration:
            evicted = self.evict_exited()
        self.phase = PartitionPhase.IDLE
        return StepReport(
            iteration=self.iteration,
            admitted=admitted,
            evicted=evicted,
            n_small=len(self.small),
            n_large=len(self.large),
        )

    def finish_iteration(self) -> None:
        self.clear_halo()
        self.iteration += 1
        if self.iteration > self.time_slots:
            self.phase = PartitionPhase.TERMINAL

    def view(self) -> PartitionView:
        return PartitionView(
            partition_id=self.partition_id,
            row=self.row,
            col=self.col,
            iteration=self.iteration,
            small=self.small.particles(),
            large=self.large.particles(),
        )
