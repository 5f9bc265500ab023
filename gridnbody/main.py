from __future__ import annotations

from .cli_parser import build_parser
from .config import load_config
from .output import make_ppm_observer, write_partition_ppm
from .runner import run_local, run_mpi
from .topology import grid_side, neighbors, partition_coords


def _make_observer(args, grid_size: int):
    frame_obs = None
    if args.ppm_every and args.ppm_every > 0:
        frame_obs = make_ppm_observer(grid_size, prefix=args.ppm_prefix, directory=args.out_dir)
    initial = str(args.initial_ppm or "")
    if frame_obs is None and not initial:
        return None

    def obs(iteration, view):
        if iteration == 0 and initial:
            write_partition_ppm(view, grid_size, initial, args.out_dir)
        if frame_obs is not None:
            frame_obs(iteration, view)

    return obs


def _cmd_run(args) -> None:
    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"[config] {exc}")

    observer = _make_observer(args, cfg.grid_size)
    observe_every = int(args.ppm_every) if args.ppm_every and args.ppm_every > 0 else 0
    trace_path = str(args.trace_out) if args.trace else ""
    try:
        if args.mode == "local":
            stats = run_local(
                cfg,
                int(args.partitions),
                observer=observer,
                observe_every=observe_every,
                trace_path=trace_path,
                verbose=not args.quiet,
            )
        else:
            stats = [
                run_mpi(
                    cfg,
                    observer=observer,
                    observe_every=observe_every,
                    trace_path=trace_path,
                    verbose=not args.quiet,
                )
            ]
    except ValueError as exc:
        raise SystemExit(f"[run] {exc}")

    for s in stats:
        if args.final_ppm:
            write_partition_ppm(s.final_view, cfg.grid_size, args.final_ppm, args.out_dir)
        print(
            f"[done rank={s.rank}] iterations={s.iterations} small={len(s.final_view.small)} "
            f"large={len(s.final_view.large)} admitted={s.admitted} evicted={s.evicted} "
            f"sync_failures={s.sync_failures}",
            flush=True,
        )


def _cmd_neighbors(args) -> None:
    try:
        grid_side(args.partitions)
    except ValueError as exc:
        raise SystemExit(f"[neighbors] {exc}")
    ids = args.id or list(range(int(args.partitions)))
    for pid in ids:
        try:
            row, col = partition_coords(pid, args.partitions)
        except ValueError as exc:
            raise SystemExit(f"[neighbors] {exc}")
        nb = neighbors(pid, args.horizon, args.partitions)
        print(f"{pid} (row={row} col={col}): {' '.join(str(x) for x in nb)}")


def main(argv=None) -> None:
    p = build_parser(cmd_run=_cmd_run, cmd_neighbors=_cmd_neighbors)
    args = p.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        raise SystemExit(f"unsupported cmd: {getattr(args, 'cmd', None)}")
    func(args)


if __name__ == "__main__":
    main()
