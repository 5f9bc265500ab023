from __future__ import annotations

import argparse
from typing import Callable


def build_parser(
    *,
    cmd_run: Callable,
    cmd_neighbors: Callable,
) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gridnbody")
    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser("run")
    pr.add_argument("config", help="Simulation config (.yaml/.yml or legacy initialspec text)")
    pr.add_argument("--mode", choices=["mpi", "local"], default="mpi")
    pr.add_argument(
        "--partitions",
        type=int,
        default=1,
        help="Partition count for --mode local (must be a perfect square)",
    )
    pr.add_argument("--initial-ppm", default="", help="Initial frame file name (prefixed with partition id)")
    pr.add_argument("--final-ppm", default="", help="Final frame file name (prefixed with partition id)")
    pr.add_argument("--ppm-every", type=int, default=0, help="Preview frame period (iterations)")
    pr.add_argument("--ppm-prefix", default="frame", help="Preview frame file prefix")
    pr.add_argument("--out-dir", default=".", help="Directory for PPM output")
    pr.add_argument("--trace", action="store_true", help="Enable halo sync trace logging")
    pr.add_argument("--trace-out", default="sync_trace.csv", help="Sync trace output path")
    pr.add_argument("--quiet", action="store_true", help="Suppress per-iteration progress lines")
    pr.set_defaults(func=cmd_run)

    pn = sub.add_parser("neighbors")
    pn.add_argument("--partitions", type=int, required=True)
    pn.add_argument("--horizon", type=int, required=True)
    pn.add_argument("--id", type=int, action="append", default=[], help="Partition id (repeatable)")
    pn.set_defaults(func=cmd_neighbors)

    return p
