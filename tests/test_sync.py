from __future__ import annotations

import threading

import pytest

from gridnbody.arena import ParticleArena
from gridnbody.halo import HaloSnapshot, encode_halo
from gridnbody.partition import Partition, PartitionPhase
from gridnbody.particle import Particle, make_uid
from gridnbody.sync import synchronize
from gridnbody.trace import SyncTraceLogger
from gridnbody.transport import LocalExchange, Transport, TransportError


def _partition(pid: int, n: int, horizon: int = 1) -> Partition:
    side = int(round(n ** 0.5))
    row, col = divmod(pid, side)
    p = Particle(1.0, 0.1, col * 10.0 + 5.0, row * 10.0 + 5.0, uid=make_uid(pid, 0))
    return Partition(
        pid,
        n,
        grid_size=10,
        horizon=horizon,
        time_slots=3,
        small=ParticleArena.from_particles([p]),
    )


def _sync_all(partitions, exchange, **kw):
    reports = [None] * len(partitions)

    def _worker(p):
        reports[p.partition_id] = synchronize(p, exchange.transport(p.partition_id), **kw)

    threads = [threading.Thread(target=_worker, args=(p,), daemon=True) for p in partitions]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)
    assert not any(t.is_alive() for t in threads), "halo exchange stalled"
    return reports


class _RecordingTransport(Transport):
    def __init__(self, rank: int, size: int, inbound=()):
        self.rank = rank
        self.size = size
        self.sent: list[int] = []
        self.inbound = list(inbound)

    def send(self, dest, payload):
        self.sent.append(int(dest))

    def recv_any(self):
        item = self.inbound.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


# ---------------------------------------------------------------------------
# Rendezvous over in-process queues
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("n,horizon", [(4, 1), (9, 1), (16, 1), (16, 2), (25, 1)])
def test_every_partition_receives_one_snapshot_per_neighbor(n, horizon):
    parts = [_partition(pid, n, horizon) for pid in range(n)]
    reports = _sync_all(parts, LocalExchange(n))
    for p, rep in zip(parts, reports):
        senders = sorted(s.partition_id for s in p.halo)
        assert senders == list(p.neighbor_ids)
        assert rep.received == len(p.neighbor_ids)
        assert rep.sent == len(p.neighbor_ids)
        assert rep.failures == 0
        assert p.phase == PartitionPhase.IDLE


def test_single_partition_has_no_traffic():
    p = _partition(0, 1)
    t = _RecordingTransport(0, 1)
    rep = synchronize(p, t)
    assert (rep.sent, rep.received, rep.failures) == (0, 0, 0)
    assert t.sent == []
    assert p.halo == []


def test_received_snapshot_matches_sender_state():
    parts = [_partition(pid, 4) for pid in range(4)]
    _sync_all(parts, LocalExchange(4))
    by_sender = {s.partition_id: s for s in parts[0].halo}
    assert by_sender[3].small_particles() == parts[3].snapshot.small_particles()


def test_sends_follow_turn_order():
    p = _partition(4, 16)  # neighbors 0 1 3 5 7 8 9 11
    inbound = [
        (q, encode_halo(_partition(q, 16).snapshot)) for q in p.neighbor_ids
    ]
    t = _RecordingTransport(4, 16, inbound=inbound)
    rep = synchronize(p, t)
    assert t.sent == [0, 1, 3, 5, 7, 8, 9, 11]
    assert rep.received == 8


def test_transport_size_must_match():
    with pytest.raises(ValueError, match="transport size"):
        synchronize(_partition(0, 4), _RecordingTransport(0, 9))


# ---------------------------------------------------------------------------
# Best-effort failure handling
# ---------------------------------------------------------------------------


def test_receive_failure_is_logged_and_skipped(capsys):
    p = _partition(0, 4)
    good = encode_halo(_partition(1, 4).snapshot)
    t = _RecordingTransport(
        0, 4, inbound=[TransportError("link down"), (1, good), (2, b"\x01\x02")]
    )
    rep = synchronize(p, t)
    assert rep.failures == 2
    assert rep.received == 1
    assert [s.partition_id for s in p.halo] == [1]
    out = capsys.readouterr().out
    assert "[sync rank=0]" in out
    assert "link down" in out


def test_send_failure_is_logged_and_skipped(capsys):
    class _Broken(_RecordingTransport):
        def send(self, dest, payload):
            raise TransportError(f"cannot reach {dest}")

    p = _partition(3, 4)
    inbound = [(q, encode_halo(_partition(q, 4).snapshot)) for q in (0, 1, 2)]
    rep = synchronize(p, _Broken(3, 4, inbound=inbound))
    assert rep.sent == 0
    assert rep.failures == 3
    assert rep.received == 3
    assert "cannot reach 0" in capsys.readouterr().out


def test_snapshot_from_non_neighbor_is_dropped(capsys):
    p = _partition(0, 16)  # 10 is not within horizon 1 of 0
    assert not p.is_neighbor(10)
    stranger = encode_halo(
        HaloSnapshot.capture(10, 1, ParticleArena(), ParticleArena())
    )
    inbound = [(10, stranger)] + [
        (q, encode_halo(_partition(q, 16).snapshot)) for q in p.neighbor_ids[1:]
    ]
    rep = synchronize(p, _RecordingTransport(0, 16, inbound=inbound))
    assert rep.received == len(p.neighbor_ids) - 1
    assert all(s.partition_id != 10 for s in p.halo)
    assert "not in neighbor list" in capsys.readouterr().out


def test_trace_records_traffic(tmp_path):
    path = tmp_path / "trace.csv"
    parts = [_partition(pid, 4) for pid in range(4)]
    exchange = LocalExchange(4)
    traces = [SyncTraceLogger.for_rank(str(path), rank=pid, size=4) for pid in range(4)]
    threads = [
        threading.Thread(
            target=synchronize,
            args=(p, exchange.transport(p.partition_id)),
            kwargs={"trace": traces[p.partition_id]},
            daemon=True,
        )
        for p in parts
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)
    for tr in traces:
        tr.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("wall_time,rank,iteration,turn,event")
    events = [ln.split(",")[4] for ln in lines[1:]]
    assert events.count("send") == 3
    assert events.count("recv") == 3
    assert (tmp_path / "trace_rank3.csv").exists()
