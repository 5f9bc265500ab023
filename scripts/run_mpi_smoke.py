from __future__ import annotations

import argparse
import os
from pathlib import Path
import re
import shutil
import subprocess
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gridnbody.config import load_config
from gridnbody.topology import grid_side, neighbors

_DONE_RE = re.compile(r"^\[done rank=(\d+)\] .*\bsmall=(\d+) large=(\d+) .*\bsync_failures=(\d+)")


def _find_mpirun(user_arg: str | None) -> str | None:
    if user_arg:
        return user_arg
    env_val = os.environ.get("MPIRUN", "").strip()
    if env_val:
        return env_val
    return (
        shutil.which("mpiexec.hydra")
        or shutil.which("mpiexec")
        or shutil.which("mpirun")
    )


def parse_done_lines(stdout: str) -> dict[int, tuple[int, int, int]]:
    """rank -> (small, large, sync_failures) from the ``[done rank=N]`` summaries."""
    out: dict[int, tuple[int, int, int]] = {}
    for line in stdout.splitlines():
        m = _DONE_RE.match(line.strip())
        if m:
            out[int(m.group(1))] = (int(m.group(2)), int(m.group(3)), int(m.group(4)))
    return out


def check_run(stdout: str, *, n: int, small_count: int, large_count: int, closed: bool) -> list[str]:
    """Problems found in a finished run; empty when the run looks healthy.

    ``closed`` means every partition is in every other partition's horizon, in
    which case no particle can be lost and the totals must match exactly.
    """
    done = parse_done_lines(stdout)
    problems = []
    if sorted(done) != list(range(n)):
        problems.append(f"expected done lines for ranks 0..{n - 1}, got {sorted(done)}")
        return problems
    small = sum(v[0] for v in done.values())
    large = sum(v[1] for v in done.values())
    failures = sum(v[2] for v in done.values())
    if failures:
        problems.append(f"{failures} halo messages failed")
    if closed and (small, large) != (n * small_count, n * large_count):
        problems.append(
            f"particle count changed: small={small} large={large}, "
            f"expected small={n * small_count} large={n * large_count}"
        )
    return problems


def main() -> int:
    p = argparse.ArgumentParser(description="Run gridnbody under MPI and check the per-rank summaries")
    p.add_argument("--n", type=int, default=4, help="MPI ranks, a perfect square (default: 4)")
    p.add_argument("--config", default="examples/smoke4.yaml")
    p.add_argument("--mpirun", default="", help="Path to mpirun/mpiexec")
    p.add_argument("--timeout", type=int, default=60)
    args = p.parse_args()

    try:
        grid_side(args.n)
    except ValueError as exc:
        print(f"[mpi-smoke] --n: {exc}", file=sys.stderr)
        return 2

    mpirun = _find_mpirun(args.mpirun or None)
    if not mpirun:
        print("[mpi-smoke] mpirun/mpiexec not found", file=sys.stderr)
        return 2

    cfg_path = Path(args.config)
    if not cfg_path.is_absolute():
        cfg_path = ROOT / cfg_path
    try:
        cfg = load_config(str(cfg_path))
    except (OSError, ValueError) as exc:
        print(f"[mpi-smoke] config: {exc}", file=sys.stderr)
        return 2

    cmd = [
        mpirun, "-n", str(int(args.n)), sys.executable, "-m", "gridnbody.main",
        "run", str(cfg_path), "--mode", "mpi", "--quiet",
    ]
    env = os.environ.copy()
    env.setdefault("PYTHONUNBUFFERED", "1")
    print("[mpi-smoke] " + " ".join(cmd), flush=True)
    try:
        proc = subprocess.run(
            cmd, cwd=str(ROOT), env=env, timeout=int(args.timeout), capture_output=True, text=True
        )
    except subprocess.TimeoutExpired:
        print("[mpi-smoke] timed out", file=sys.stderr)
        return 3
    sys.stdout.write(proc.stdout or "")
    sys.stderr.write(proc.stderr or "")
    if proc.returncode != 0:
        print(f"[mpi-smoke] mpirun exited with {proc.returncode}", file=sys.stderr)
        return int(proc.returncode)

    closed = len(neighbors(0, cfg.horizon, args.n)) == args.n - 1
    problems = check_run(
        proc.stdout or "",
        n=int(args.n),
        small_count=cfg.small_count,
        large_count=cfg.large_count,
        closed=closed,
    )
    for msg in problems:
        print(f"[mpi-smoke] FAIL {msg}", file=sys.stderr)
    if problems:
        return 1
    print(f"[mpi-smoke] ok ranks={args.n} closed={closed}", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
