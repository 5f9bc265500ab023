from __future__ import annotations

import queue

import numpy as np

try:
    import mpi4py

    mpi4py.rc.initialize = False
    mpi4py.rc.finalize = False
    from mpi4py import MPI
except Exception:
    MPI = None

from .constants import HALO_TAG


class TransportError(RuntimeError):
    """A point-to-point send or receive failed."""


class Transport:
    """Blocking point-to-point byte channel between partitions.

    Contract:
    - ``send`` blocks until the payload is handed to the transport.
    - ``recv_any`` blocks, without timeout, until a payload from any sender arrives
      and returns ``(source_rank, payload)``.
    - failures surface as ``TransportError``.
    """

    rank: int
    size: int

    def send(self, dest: int, payload: bytes) -> None:
        raise NotImplementedError

    def recv_any(self) -> tuple[int, bytes]:
        raise NotImplementedError


class MPITransport(Transport):
    """Length header followed by the byte payload, both blocking ``Send``/``Recv``."""

    def __init__(self, comm, *, tag: int = HALO_TAG):
        if MPI is None:
            raise RuntimeError("mpi4py required")
        self.comm = comm
        self.rank = int(comm.Get_rank())
        self.size = int(comm.Get_size())
        self.tag = int(tag)

    def send(self, dest: int, payload: bytes) -> None:
        nbytes = np.array([len(payload)], dtype=np.int64)
        try:
            self.comm.Send([nbytes, MPI.INT64_T], dest=int(dest), tag=self.tag)
            self.comm.Send([payload, MPI.BYTE], dest=int(dest), tag=self.tag + 1)
        except MPI.Exception as exc:
            raise TransportError(f"send to rank {dest} failed: {exc}") from exc

    def recv_any(self) -> tuple[int, bytes]:
        nbytes = np.empty((1,), dtype=np.int64)
        status = MPI.Status()
        try:
            self.comm.Recv([nbytes, MPI.INT64_T], source=MPI.ANY_SOURCE, tag=self.tag, status=status)
            source = int(status.Get_source())
            buf = bytearray(int(nbytes[0]))
            self.comm.Recv([buf, MPI.BYTE], source=source, tag=self.tag + 1)
        except MPI.Exception as exc:
            raise TransportError(f"receive failed: {exc}") from exc
        return source, bytes(buf)


class LocalExchange:
    """In-process message fabric: one unbounded inbox per partition."""

    def __init__(self, size: int):
        size = int(size)
        if size < 1:
            raise ValueError("size must be >= 1")
        self.size = size
        self.inboxes: list[queue.Queue] = [queue.Queue() for _ in range(size)]

    def transport(self, rank: int) -> "QueueTransport":
        return QueueTransport(self, rank)


class QueueTransport(Transport):
    def __init__(self, exchange: LocalExchange, rank: int):
        rank = int(rank)
        if rank < 0 or rank >= exchange.size:
            raise ValueError(f"rank must be in [0, {exchange.size}); got {rank}")
        self.exchange = exchange
        self.rank = rank
        self.size = exchange.size

    def send(self, dest: int, payload: bytes) -> None:
        dest = int(dest)
        if dest < 0 or dest >= self.size:
            raise TransportError(f"send to unknown rank {dest}")
        self.exchange.inboxes[dest].put((self.rank, bytes(payload)))

    def recv_any(self) -> tuple[int, bytes]:
        source, payload = self.exchange.inboxes[self.rank].get()
        return int(source), payload
