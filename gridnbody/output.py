from __future__ import annotations

import math
import os
from typing import Callable

import numpy as np

from .partition import PartitionView


def render_pixels(view: PartitionView, grid_size: int) -> np.ndarray:
    """(grid_size, grid_size, 3) uint8 image of one partition, row index = local y.

    Large particles paint a blue disc of their radius; each small particle adds 1
    to the red channel of its pixel (saturating at 255) unless the pixel is
    already covered by a large particle.
    """
    g = int(grid_size)
    img = np.zeros((g, g, 3), dtype=np.int32)
    x0 = float(g * view.col)
    y0 = float(g * view.row)

    for p in view.large:
        x = p.x - x0
        y = p.y - y0
        r = float(p.radius)
        n = int(math.ceil(2.0 * r))
        if n <= 0:
            continue
        steps = np.arange(n, dtype=float)
        ii = (x - r + steps)[None, :]
        jj = (y - r + steps)[:, None]
        inside = ((ii - x) ** 2 + (jj - y) ** 2) < r * r
        inside &= (ii >= 0) & (jj >= 0) & (ii < g) & (jj < g)
        rows, cols = np.nonzero(inside)
        img[jj[rows, 0].astype(int), ii[0, cols].astype(int), 2] = 255

    for p in view.small:
        px = int(p.x - x0)
        py = int(p.y - y0)
        if 0 <= px < g and 0 <= py < g and img[py, px, 2] != 255:
            img[py, px, 0] = min(int(img[py, px, 0]) + 1, 255)
    return img.astype(np.uint8)


def render_ppm(view: PartitionView, grid_size: int) -> str:
    """Plain-text PPM (P3) rendering of :func:`render_pixels`."""
    img = render_pixels(view, grid_size)
    g = int(grid_size)
    lines = ["P3", f"{g} {g}", "255"]
    for row in img:
        lines.append("".join(f"{int(c[0])} {int(c[1])} {int(c[2])} " for c in row))
    return "\n".join(lines) + "\n"


def write_partition_ppm(view: PartitionView, grid_size: int, filename: str, directory: str = ".") -> str:
    """Write ``<partition_id><filename>`` and return its path."""
    os.makedirs(directory or ".", exist_ok=True)
    path = os.path.join(directory or ".", f"{view.partition_id}{filename}")
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_ppm(view, grid_size))
    return path


def make_ppm_observer(grid_size: int, *, prefix: str = "frame", directory: str = ".") -> Callable:
    """Observer writing ``<pid><prefix>_<iteration>.ppm`` for each frame it is handed."""

    def obs(iteration: int, view: PartitionView) -> None:
        write_partition_ppm(view, grid_size, f"{prefix}_{int(iteration):06d}.ppm", directory)

    return obs
