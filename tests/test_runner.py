from __future__ import annotations

import csv
import threading

import numpy as np
import pytest

from gridnbody.config import LargeParticleSpec, SimulationConfig
from gridnbody.partition import Partition
from gridnbody.runner import run_local, run_partition
from gridnbody.sync import synchronize
from gridnbody.transport import LocalExchange


def _cfg(**kw) -> SimulationConfig:
    base = dict(
        time_slots=5,
        time_step=0.01,
        horizon=1,
        grid_size=20,
        small_count=10,
        small_mass=1.0,
        small_radius=1.0,
        large=[LargeParticleSpec(radius=3.0, mass=20.0, x=10.0, y=10.0)],
    )
    base.update(kw)
    return SimulationConfig(**base).validate()


def test_single_partition_keeps_every_particle():
    cfg = _cfg()
    stats = run_partition(cfg, LocalExchange(1).transport(0), verbose=False)
    assert stats.rank == 0 and stats.size == 1
    assert stats.iterations == 5
    assert stats.sync_failures == 0
    assert stats.admitted == 0 and stats.evicted == 0
    assert len(stats.final_view.small) == 10
    assert len(stats.final_view.large) == 1


def _migrating_cfg(**kw) -> SimulationConfig:
    # heavy bodies in every box corner pull small particles across edges
    base = dict(
        time_slots=6,
        time_step=0.5,
        horizon=1,
        grid_size=10,
        small_count=20,
        small_mass=1.0,
        small_radius=0.5,
        large=[LargeParticleSpec(radius=1.0, mass=1000.0, x=0.5, y=0.5)],
    )
    base.update(kw)
    return SimulationConfig(**base)


def _step_all(parts, exchange, time_step):
    reports = [None] * len(parts)

    def _worker(p):
        synchronize(p, exchange.transport(p.partition_id))
        reports[p.partition_id] = p.simulate_step(time_step)

    threads = [threading.Thread(target=_worker, args=(p,), daemon=True) for p in parts]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not any(t.is_alive() for t in threads), "halo exchange stalled"
    return reports


def _uids(arrays) -> list[int]:
    return [int(u) for a in arrays for u in a]


def _run_checking_ownership(cfg: SimulationConfig, n: int) -> int:
    """Step every partition by hand; each uid must be owned exactly once per step."""
    parts = [Partition.from_config(cfg, pid, n) for pid in range(n)]
    everyone = _uids(a for p in parts for a in (p.snapshot.small_uid, p.snapshot.large_uid))
    assert len(set(everyone)) == len(everyone)
    exchange = LocalExchange(n)
    admitted = 0
    for _ in range(cfg.time_slots):
        reports = _step_all(parts, exchange, cfg.time_step)
        admitted += sum(r.admitted for r in reports)
        sent = _uids(a for p in parts for a in (p.snapshot.small_uid, p.snapshot.large_uid))
        assert sorted(sent) == sorted(everyone)
        held = _uids(a for p in parts for a in (p.small.uid, p.large.uid))
        assert len(held) == len(set(held))
        for p in parts:
            assert np.all(p.contains(p.small.pos)) or p.is_last_iteration
            p.finish_iteration()
    held = _uids(a for p in parts for a in (p.small.uid, p.large.uid))
    assert sorted(held) == sorted(everyone)
    return admitted


@pytest.mark.parametrize("n", [4, 9])
def test_migration_keeps_single_ownership(n):
    assert _run_checking_ownership(_migrating_cfg(), n) > 0


def test_large_particle_placed_on_box_corner_is_owned_once():
    cfg = _migrating_cfg(
        small_count=30,
        large=[LargeParticleSpec(radius=2.0, mass=50.0, x=10.0, y=10.0)],
    )
    _run_checking_ownership(cfg, 9)


@pytest.mark.parametrize("n", [4, 9])
def test_local_run_conserves_particle_count(n):
    cfg = _migrating_cfg()
    stats = run_local(cfg, n, verbose=False)
    assert [s.rank for s in stats] == list(range(n))
    assert sum(s.admitted for s in stats) > 0
    assert sum(s.admitted for s in stats) == sum(s.evicted for s in stats)
    assert all(s.sync_failures == 0 for s in stats)
    final = [p.uid for s in stats for p in s.final_view.small + s.final_view.large]
    assert len(final) == len(set(final)) == n * (cfg.small_count + cfg.large_count)


def test_non_square_partition_count():
    with pytest.raises(ValueError, match="perfect square"):
        run_local(_cfg(), 3, verbose=False)


def test_zero_time_slots():
    stats = run_local(_cfg(time_slots=0), 4, verbose=False)
    assert all(s.iterations == 0 for s in stats)
    assert sum(len(s.final_view.small) for s in stats) == 40


def test_observer_frames():
    frames = []
    lock = threading.Lock()

    def obs(iteration, view):
        with lock:
            frames.append((view.partition_id, iteration))

    run_local(_cfg(), 4, observer=obs, observe_every=2, verbose=False)
    for pid in range(4):
        assert sorted(i for p, i in frames if p == pid) == [0, 2, 4]


def test_trace_files_per_rank(tmp_path):
    path = tmp_path / "sync.csv"
    run_local(_cfg(time_slots=2), 4, trace_path=str(path), verbose=False)
    files = [path] + [tmp_path / f"sync_rank{r}.csv" for r in (1, 2, 3)]
    for rank, f in enumerate(files):
        with open(f, newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        events = [r["event"] for r in rows]
        assert events.count("send") == 2 * 3
        assert events.count("recv") == 2 * 3
        assert events.count("step") == 2
        assert {r["rank"] for r in rows} == {str(rank)}


def test_progress_lines(capsys):
    run_local(_cfg(time_slots=2), 4)
    out = capsys.readouterr().out
    assert "[info] partitions=4 grid=2x2" in out
    assert "[run] starting iteration 1" in out
    assert out.count("[run rank=") == 4
