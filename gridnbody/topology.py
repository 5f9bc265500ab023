from __future__ import annotations

import math


def is_perfect_square(n: int) -> bool:
    n = int(n)
    if n < 1:
        return False
    root = math.isqrt(n)
    return root * root == n


def grid_side(n_partitions: int) -> int:
    """Side of the square partition grid; ``n_partitions`` must be a perfect square."""
    n = int(n_partitions)
    if not is_perfect_square(n):
        raise ValueError(
            f"number of partitions must be a perfect square (1, 4, 9, 16, ...); got {n}"
        )
    return math.isqrt(n)


def partition_coords(partition_id: int, n_partitions: int) -> tuple[int, int]:
    """(row, col) of a partition in the toroidal grid."""
    side = grid_side(n_partitions)
    pid = int(partition_id)
    if pid < 0 or pid >= int(n_partitions):
        raise ValueError(f"partition_id must be in [0, {int(n_partitions)}); got {pid}")
    return pid // side, pid % side


def neighbors(partition_id: int, horizon: int, n_partitions: int) -> list[int]:
    """Partitions within Chebyshev distance ``horizon`` on the torus.

    Rows are visited by stepping the flat index in multiples of the grid side
    and reducing modulo ``n_partitions``. Column offsets can spill into the
    adjacent row of the flat index, so every candidate is re-anchored to the
    pivot's row before it is kept. The result is sorted, duplicate-free and
    never contains ``partition_id``.
    """
    horizon = int(horizon)
    if horizon < 1:
        return []
    n = int(n_partitions)
    side = grid_side(n)
    pid = int(partition_id)
    if pid < 0 or pid >= n:
        raise ValueError(f"partition_id must be in [0, {n}); got {pid}")

    seen: set[int] = set()
    for i in range(pid - horizon * side, pid + horizon * side + 1, side):
        pivot = i % n
        row = pivot // side
        for j in range(pivot - horizon, pivot + horizon + 1):
            cur_row = j // side
            seen.add(j + (row - cur_row) * side)
    seen.discard(pid)
    return sorted(seen)
