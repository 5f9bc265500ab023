from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .config import SimulationConfig
from .partition import Partition, PartitionView
from .sync import synchronize
from .topology import grid_side
from .trace import SyncTraceLogger
from .transport import MPI, LocalExchange, MPITransport, Transport

Observer = Callable[[int, PartitionView], None]


@dataclass
class RunStats:
    rank: int
    size: int
    iterations: int
    admitted: int
    evicted: int
    sync_failures: int
    final_view: PartitionView


def run_partition(
    config: SimulationConfig,
    transport: Transport,
    *,
    observer: Optional[Observer] = None,
    observe_every: int = 0,
    trace: SyncTraceLogger | None = None,
    verbose: bool = True,
) -> RunStats:
    """Drive one partition through ``config.time_slots`` iterations.

    Each iteration: halo sync, simulate_step, optional observer frame, then
    clear the halo buffer and advance the iteration counter. The observer also
    receives frame 0 (the initial state) when given.
    """
    rank = int(transport.rank)
    size = int(transport.size)
    side = grid_side(size)
    partition = Partition.from_config(config, rank, size)
    if rank == 0 and verbose:
        print(
            f"[info] partitions={size} grid={side}x{side} grid_size={config.grid_size} "
            f"horizon={config.horizon} time_slots={config.time_slots} dt={config.time_step:g} "
            f"half_step={config.half_step:g} minimum_image={config.minimum_image}",
            flush=True,
        )
    if verbose:
        print(
            f"[run rank={rank}] row={partition.row} col={partition.col} "
            f"small={len(partition.small)} large={len(partition.large)} "
            f"handed_off={partition.initially_evicted} "
            f"neighbors={list(partition.neighbor_ids)}",
            flush=True,
        )
    if observer is not None:
        observer(0, partition.view())

    admitted = 0
    evicted = 0
    failures = 0
    for i in range(int(config.time_slots)):
        if rank == 0 and verbose:
            print(f"[run] starting iteration {i}", flush=True)
        sync = synchronize(partition, transport, trace=trace)
        failures += sync.failures
        rep = partition.simulate_step(config.time_step)
        admitted += rep.admitted
        evicted += rep.evicted
        if trace is not None:
            trace.log(
                iteration=rep.iteration,
                event="step",
                n_small=rep.n_small,
                n_large=rep.n_large,
                detail=f"admitted={rep.admitted} evicted={rep.evicted}",
            )
        if observer is not None and observe_every and (rep.iteration % int(observe_every) == 0):
            observer(rep.iteration, partition.view())
        partition.finish_iteration()

    return RunStats(
        rank=rank,
        size=size,
        iterations=int(config.time_slots),
        admitted=admitted,
        evicted=evicted,
        sync_failures=failures,
        final_view=partition.view(),
    )


def run_local(
    config: SimulationConfig,
    n_partitions: int,
    *,
    observer: Optional[Observer] = None,
    observe_every: int = 0,
    trace_path: str = "",
    verbose: bool = True,
) -> list[RunStats]:
    """All partitions in this process, one thread each, over queue channels."""
    n = int(n_partitions)
    grid_side(n)
    exchange = LocalExchange(n)
    results: list[RunStats | None] = [None] * n
    errors: list[BaseException | None] = [None] * n

    def _worker(rank: int) -> None:
        trace = SyncTraceLogger.for_rank(trace_path, rank=rank, size=n) if trace_path else None
        try:
            results[rank] = run_partition(
                config,
                exchange.transport(rank),
                observer=observer,
                observe_every=observe_every,
                trace=trace,
                verbose=verbose,
            )
        except BaseException as exc:
            errors[rank] = exc
        finally:
            if trace is not None:
                trace.close()

    threads = [
        threading.Thread(target=_worker, args=(rank,), name=f"partition-{rank}", daemon=True)
        for rank in range(n)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for exc in errors:
        if exc is not None:
            raise exc
    return [r for r in results if r is not None]


def run_mpi(
    config: SimulationConfig,
    *,
    observer: Optional[Observer] = None,
    observe_every: int = 0,
    trace_path: str = "",
    verbose: bool = True,
) -> RunStats:
    """One partition per MPI rank; the world size must be a perfect square."""
    if MPI is None:
        raise RuntimeError("mpi4py required")
    owns_mpi_init = False
    if not MPI.Is_initialized():
        MPI.Init()
        owns_mpi_init = True
    comm = MPI.COMM_WORLD
    trace = None
    try:
        rank = comm.Get_rank()
        size = comm.Get_size()
        grid_side(size)
        if trace_path:
            trace = SyncTraceLogger.for_rank(trace_path, rank=rank, size=size)
        return run_partition(
            config,
            MPITransport(comm),
            observer=observer,
            observe_every=observe_every,
            trace=trace,
            verbose=verbose,
        )
    finally:
        if trace is not None:
            trace.close()
        if owns_mpi_init and MPI.Is_initialized() and not MPI.Is_finalized():
            comm.Barrier()
            MPI.Finalize()
