from __future__ import annotations

import numpy as np
import pytest

from gridnbody.arena import ParticleArena
from gridnbody.particle import Particle


def _arena(n: int) -> ParticleArena:
    return ParticleArena.from_particles(
        Particle(mass=1.0, radius=0.1, x=float(i), y=0.0, uid=i) for i in range(n)
    )


def test_empty_arena():
    a = ParticleArena()
    assert len(a) == 0
    assert a.pos.shape == (0, 2)
    assert a.particles() == ()


def test_columns_are_views():
    a = _arena(3)
    a.force[1] = [2.0, -2.0]
    assert a.particles()[1].fx == 2.0
    assert a.particles()[1].fy == -2.0


def test_append_and_compact():
    a = _arena(4)
    b = _arena(2)
    assert a.append(b.data, b.uid + 10) == 2
    assert len(a) == 6
    removed = a.compact(np.array([True, False, True, False, True, True]))
    assert removed == 2
    assert list(a.uid) == [0, 2, 10, 11]


def test_compact_rejects_wrong_mask():
    a = _arena(3)
    with pytest.raises(ValueError):
        a.compact(np.array([True, False]))


def test_uid_length_must_match():
    with pytest.raises(ValueError):
        ParticleArena(np.zeros((2, 8)), np.zeros(3, dtype=np.int64))


def test_frozen_copy_is_read_only_and_detached():
    a = _arena(2)
    data, uid = a.frozen_copy()
    with pytest.raises(ValueError):
        data[0, 0] = 5.0
    a.pos[0] = [100.0, 100.0]
    assert data[0, 2] == 0.0
    assert list(uid) == [0, 1]
