from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List

import yaml

from .constants import KINEMATIC_HALF_STEP

_RUN_KEYS = {"time_slots", "time_step", "seed", "kinematic_half_step", "minimum_image"}
_DOMAIN_KEYS = {"horizon", "grid_size"}
_SMALL_KEYS = {"count", "mass", "radius"}
_LARGE_KEYS = {"radius", "mass", "x", "y"}
_SYNC_KEYS = {"dedupe_admission"}

# Order of the eight header lines of a legacy initialspec file.
_LEGACY_HEADER = (
    "time_slots",
    "time_step",
    "horizon",
    "grid_size",
    "small_count",
    "small_mass",
    "small_radius",
    "large_count",
)


@dataclass
class LargeParticleSpec:
    radius: float
    mass: float
    x: float
    y: float


@dataclass
class SimulationConfig:
    time_slots: int
    time_step: float
    horizon: int
    grid_size: int
    small_count: int
    small_mass: float
    small_radius: float
    large: List[LargeParticleSpec] = field(default_factory=list)
    seed: int = 1
    kinematic_half_step: bool = True
    minimum_image: bool = False
    dedupe_admission: bool = True

    @property
    def large_count(self) -> int:
        return len(self.large)

    @property
    def half_step(self) -> float:
        return KINEMATIC_HALF_STEP if self.kinematic_half_step else 0.0

    def validate(self) -> "SimulationConfig":
        if self.time_slots < 0:
            raise ValueError("run.time_slots must be >= 0")
        if not self.time_step > 0.0:
            raise ValueError("run.time_step must be > 0")
        if self.horizon < 0:
            raise ValueError("domain.horizon must be >= 0")
        if self.grid_size < 1:
            raise ValueError("domain.grid_size must be >= 1")
        if self.small_count < 0:
            raise ValueError("small.count must be >= 0")
        if self.small_count > 0 and not self.small_mass > 0.0:
            raise ValueError("small.mass must be positive")
        if self.small_radius < 0.0:
            raise ValueError("small.radius must be >= 0")
        for i, lp in enumerate(self.large):
            if not lp.mass > 0.0:
                raise ValueError(f"large[{i}].mass must be positive")
            if lp.radius < 0.0:
                raise ValueError(f"large[{i}].radius must be >= 0")
            if not (0.0 <= lp.x < self.grid_size and 0.0 <= lp.y < self.grid_size):
                warnings.warn(
                    f"large[{i}] position ({lp.x}, {lp.y}) lies outside [0, {self.grid_size}); "
                    "it will migrate to another partition on the first step",
                    RuntimeWarning,
                )
        return self


def _section(root: dict[str, Any], key: str, allowed: set[str], *, required: bool = True) -> dict[str, Any]:
    sec = root.get(key, None)
    if sec is None:
        if required:
            raise ValueError(f"missing required section: {key}")
        return {}
    if not isinstance(sec, dict):
        raise ValueError(f"{key} must be a mapping")
    extra = sorted(set(sec.keys()) - allowed)
    if extra:
        raise ValueError(f"{key} contains unsupported keys: {extra}")
    return sec


_MISSING = object()


def _num(sec: dict[str, Any], scope: str, key: str, kind, default=_MISSING):
    raw = sec.get(key, default)
    if raw is _MISSING:
        raise ValueError(f"missing required key: {scope}.{key}")
    try:
        return kind(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{scope}.{key} must be a number; got {raw!r}") from exc


def _parse_large(raw: Any) -> list[LargeParticleSpec]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("large must be a list of {radius, mass, x, y} mappings")
    out = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"large[{i}] must be a mapping")
        extra = sorted(set(item.keys()) - _LARGE_KEYS)
        if extra:
            raise ValueError(f"large[{i}] contains unsupported keys: {extra}")
        out.append(
            LargeParticleSpec(
                radius=_num(item, f"large[{i}]", "radius", float),
                mass=_num(item, f"large[{i}]", "mass", float),
                x=_num(item, f"large[{i}]", "x", float),
                y=_num(item, f"large[{i}]", "y", float),
            )
        )
    return out


def config_from_dict(d: dict[str, Any]) -> SimulationConfig:
    if not isinstance(d, dict):
        raise ValueError("config root must be a mapping")
    extra = sorted(set(d.keys()) - {"run", "domain", "small", "large", "sync"})
    if extra:
        raise ValueError(f"config contains unsupported sections: {extra}")
    run = _section(d, "run", _RUN_KEYS)
    domain = _section(d, "domain", _DOMAIN_KEYS)
    small = _section(d, "small", _SMALL_KEYS, required=False)
    sync = _section(d, "sync", _SYNC_KEYS, required=False)
    return SimulationConfig(
        time_slots=_num(run, "run", "time_slots", int),
        time_step=_num(run, "run", "time_step", float),
        horizon=_num(domain, "domain", "horizon", int),
        grid_size=_num(domain, "domain", "grid_size", int),
        small_count=_num(small, "small", "count", int, 0),
        small_mass=_num(small, "small", "mass", float, 1.0),
        small_radius=_num(small, "small", "radius", float, 0.0),
        large=_parse_large(d.get("large", None)),
        seed=_num(run, "run", "seed", int, 1),
        kinematic_half_step=bool(run.get("kinematic_half_step", True)),
        minimum_image=bool(run.get("minimum_image", False)),
        dedupe_admission=bool(sync.get("dedupe_admission", True)),
    ).validate()


def load_yaml_config(path: str) -> SimulationConfig:
    with open(path, "r", encoding="utf-8") as f:
        d = yaml.safe_load(f)
    return config_from_dict(d)


def parse_initial_spec(text: str) -> SimulationConfig:
    """Legacy format: eight ``label value`` lines, then ``radius mass x y`` lines."""
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if len(lines) < len(_LEGACY_HEADER):
        raise ValueError(
            f"initialspec needs {len(_LEGACY_HEADER)} header lines, got {len(lines)}"
        )
    header: dict[str, str] = {}
    for i, key in enumerate(_LEGACY_HEADER):
        tokens = lines[i].split()
        if len(tokens) < 2:
            raise ValueError(f"initialspec line {i + 1}: expected '<label> <value>', got {lines[i]!r}")
        header[key] = tokens[-1]
    large = []
    for ln_no, ln in enumerate(lines[len(_LEGACY_HEADER):], start=len(_LEGACY_HEADER) + 1):
        tokens = ln.split()
        if len(tokens) != 4:
            raise ValueError(f"initialspec line {ln_no}: expected 'radius mass x y', got {ln!r}")
        try:
            radius, mass, x, y = (float(t) for t in tokens)
        except ValueError as exc:
            raise ValueError(f"initialspec line {ln_no}: {exc}") from exc
        large.append(LargeParticleSpec(radius=radius, mass=mass, x=x, y=y))
    try:
        large_count = int(header["large_count"])
        cfg = SimulationConfig(
            time_slots=int(header["time_slots"]),
            time_step=float(header["time_step"]),
            horizon=int(header["horizon"]),
            grid_size=int(header["grid_size"]),
            small_count=int(header["small_count"]),
            small_mass=float(header["small_mass"]),
            small_radius=float(header["small_radius"]),
            large=large,
        )
    except ValueError as exc:
        raise ValueError(f"initialspec header: {exc}") from exc
    if large_count != len(large):
        raise ValueError(
            f"initialspec declares {large_count} large particles but lists {len(large)}"
        )
    return cfg.validate()


def load_initial_spec(path: str) -> SimulationConfig:
    with open(path, "r", encoding="utf-8") as f:
        return parse_initial_spec(f.read())


def load_config(path: str) -> SimulationConfig:
    if Path(path).suffix.lower() in (".yaml", ".yml"):
        return load_yaml_config(path)
    return load_initial_spec(path)
