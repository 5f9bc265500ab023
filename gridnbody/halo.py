from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .arena import N_FIELDS, ParticleArena
from .constants import HALO_WIRE_VERSION
from .particle import Particle

_HEADER_I32 = 4


class HaloDecodeError(ValueError):
    """Payload is not a valid encoded halo snapshot."""


@dataclass(frozen=True, eq=False)
class HaloSnapshot:
    """Read-only copy of a partition's particles taken at the end of a step."""

    partition_id: int
    iteration: int
    small_data: np.ndarray
    small_uid: np.ndarray
    large_data: np.ndarray
    large_uid: np.ndarray

    @classmethod
    def capture(
        cls, partition_id: int, iteration: int, small: ParticleArena, large: ParticleArena
    ) -> "HaloSnapshot":
        sd, su = small.frozen_copy()
        ld, lu = large.frozen_copy()
        return cls(int(partition_id), int(iteration), sd, su, ld, lu)

    @property
    def n_small(self) -> int:
        return int(self.small_data.shape[0])

    @property
    def n_large(self) -> int:
        return int(self.large_data.shape[0])

    def small_particles(self) -> tuple[Particle, ...]:
        return tuple(Particle.from_row(r, u) for r, u in zip(self.small_data, self.small_uid))

    def large_particles(self) -> tuple[Particle, ...]:
        return tuple(Particle.from_row(r, u) for r, u in zip(self.large_data, self.large_uid))


def encode_halo(snapshot: HaloSnapshot) -> bytes:
    """Little-endian: int32[version, pid, n_small, n_large], int64 iteration, then
    per list int64 uids followed by float64 (n, 8) particle fields."""
    parts = [
        np.array(
            [HALO_WIRE_VERSION, snapshot.partition_id, snapshot.n_small, snapshot.n_large],
            dtype="<i4",
        ).tobytes(),
        np.array([snapshot.iteration], dtype="<i8").tobytes(),
    ]
    for data, uid in (
        (snapshot.small_data, snapshot.small_uid),
        (snapshot.large_data, snapshot.large_uid),
    ):
        parts.append(np.ascontiguousarray(uid, dtype="<i8").tobytes())
        parts.append(np.ascontiguousarray(data, dtype="<f8").tobytes())
    return b"".join(parts)


def _take(payload: bytes, off: int, nbytes: int) -> tuple[bytes, int]:
    end = off + nbytes
    if end > len(payload):
        raise HaloDecodeError(
            f"truncated halo payload: need {end} bytes, have {len(payload)}"
        )
    return payload[off:end], end


def decode_halo(payload: bytes) -> HaloSnapshot:
    payload = bytes(payload)
    raw, off = _take(payload, 0, 4 * _HEADER_I32)
    version, pid, n_small, n_large = (int(x) for x in np.frombuffer(raw, dtype="<i4"))
    if version != HALO_WIRE_VERSION:
        raise HaloDecodeError(f"unsupported halo wire version {version}")
    if n_small < 0 or n_large < 0 or pid < 0:
        raise HaloDecodeError(
            f"corrupt halo header: pid={pid} n_small={n_small} n_large={n_large}"
        )
    raw, off = _take(payload, off, 8)
    (iteration,) = np.frombuffer(raw, dtype="<i8")

    arrays = []
    for n in (n_small, n_large):
        raw, off = _take(payload, off, 8 * n)
        uid = np.frombuffer(raw, dtype="<i8").astype(np.int64)
        raw, off = _take(payload, off, 8 * N_FIELDS * n)
        data = np.frombuffer(raw, dtype="<f8").astype(np.float64).reshape(n, N_FIELDS)
        uid.setflags(write=False)
        data.setflags(write=False)
        arrays.append((data, uid))
    if off != len(payload):
        raise HaloDecodeError(f"trailing bytes in halo payload: {len(payload) - off}")

    (sd, su), (ld, lu) = arrays
    return HaloSnapshot(int(pid), int(iteration), sd, su, ld, lu)
