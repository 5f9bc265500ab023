from __future__ import annotations

from dataclasses import dataclass

from .halo import HaloDecodeError, decode_halo, encode_halo
from .partition import Partition, PartitionPhase
from .trace import SyncTraceLogger
from .transport import Transport, TransportError


@dataclass(frozen=True)
class SyncReport:
    sent: int
    received: int
    failures: int


def synchronize(
    partition: Partition,
    transport: Transport,
    *,
    trace: SyncTraceLogger | None = None,
) -> SyncReport:
    """Round-robin halo exchange for one iteration.

    Every partition walks ``turn = 0 .. n_partitions-1`` in the same order.
    On its own turn a partition performs exactly ``len(neighbor_ids)`` blocking
    receives from any source; on a neighbor's turn it performs one blocking send
    of its snapshot to that neighbor. At turn ``k`` only ``k`` receives and every
    partition that lists ``k`` as a neighbor sends to it, so inbound messages
    always match the expected count.

    Transport and decode failures are logged per message and the exchange carries
    on with whatever arrived; nothing is retried.
    """
    if transport.size != partition.n_partitions:
        raise ValueError(
            f"transport size {transport.size} != partition count {partition.n_partitions}"
        )
    rank = partition.partition_id
    iteration = partition.iteration
    partition.phase = PartitionPhase.SYNCING
    payload = encode_halo(partition.snapshot)
    sent = 0
    received = 0
    failures = 0

    def _failed(turn: int, peer: int, exc: Exception) -> None:
        nonlocal failures
        failures += 1
        print(
            f"[sync rank={rank}] iteration={iteration} turn={turn} peer={peer} "
            f"communication failure ({type(exc).__name__}: {exc}); continuing without it",
            flush=True,
        )
        if trace is not None:
            trace.log(iteration=iteration, event="comm_error", turn=turn, peer=peer, detail=str(exc))

    for turn in range(partition.n_partitions):
        if turn == rank:
            for _ in range(len(partition.neighbor_ids)):
                source = -1
                try:
                    source, data = transport.recv_any()
                    snap = decode_halo(data)
                except (TransportError, HaloDecodeError) as exc:
                    _failed(turn, source, exc)
                    continue
                if not partition.is_neighbor(snap.partition_id):
                    print(
                        f"[sync rank={rank}] dropping halo from partition {snap.partition_id} "
                        f"(source={source}): not in neighbor list",
                        flush=True,
                    )
                    continue
                partition.receive_halo(snap)
                received += 1
                if trace is not None:
                    trace.log(
                        iteration=iteration,
                        event="recv",
                        turn=turn,
                        peer=snap.partition_id,
                        n_bytes=len(data),
                        n_small=snap.n_small,
                        n_large=snap.n_large,
                    )
        elif partition.is_neighbor(turn):
            try:
                transport.send(turn, payload)
            except TransportError as exc:
                _failed(turn, turn, exc)
                continue
            sent += 1
            if trace is not None:
                trace.log(
                    iteration=iteration,
                    event="send",
                    turn=turn,
                    peer=turn,
                    n_bytes=len(payload),
                    n_small=partition.snapshot.n_small,
                    n_large=partition.snapshot.n_large,
                )
    partition.phase = PartitionPhase.IDLE
    return SyncReport(sent=sent, received=received, failures=failures)
