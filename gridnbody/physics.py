from __future__ import annotations

import numpy as np

from .constants import FORCE_CONSTANT, KINEMATIC_HALF_STEP, NUMERICAL_ZERO

_TARGET_CHUNK = 1024


def minimum_image(dr: np.ndarray, side: float) -> np.ndarray:
    return dr - side * np.round(dr / side)


def wrap_torus(pos: np.ndarray, side: float) -> np.ndarray:
    """Truncating modulo with a ``+side`` correction for negatives.

    Values that round up to ``side`` are folded back to 0 so the result always
    satisfies ``0 <= pos < side``.
    """
    side = float(side)
    out = np.fmod(pos, side)
    out = np.where(out < 0.0, out + side, out)
    return np.where(out >= side, out - side, out)


def pair_forces(
    target_pos: np.ndarray,
    target_mass: np.ndarray,
    cand_pos: np.ndarray,
    cand_mass: np.ndarray,
    *,
    target_uid: np.ndarray | None = None,
    cand_uid: np.ndarray | None = None,
    side: float | None = None,
) -> np.ndarray:
    """Net force on each target from every candidate.

    ``F = FORCE_CONSTANT * m1 * m2 / d**2`` along the target->candidate vector.
    When both uid arrays are given, pairs sharing a non-negative uid are skipped.
    Coincident pairs (``d <= NUMERICAL_ZERO``) are always skipped. When ``side``
    is given, pair vectors use the minimum-image convention.
    """
    target_pos = np.asarray(target_pos, dtype=float).reshape(-1, 2)
    target_mass = np.asarray(target_mass, dtype=float).reshape(-1)
    cand_pos = np.asarray(cand_pos, dtype=float).reshape(-1, 2)
    cand_mass = np.asarray(cand_mass, dtype=float).reshape(-1)
    nt = target_pos.shape[0]
    out = np.zeros((nt, 2), dtype=float)
    if nt == 0 or cand_pos.shape[0] == 0:
        return out
    use_uid = target_uid is not None and cand_uid is not None
    if use_uid:
        target_uid = np.asarray(target_uid, dtype=np.int64).reshape(-1)
        cand_uid = np.asarray(cand_uid, dtype=np.int64).reshape(-1)
        if target_uid.shape[0] != nt or cand_uid.shape[0] != cand_pos.shape[0]:
            raise ValueError("uid arrays must match the target and candidate counts")

    for lo in range(0, nt, _TARGET_CHUNK):
        hi = min(nt, lo + _TARGET_CHUNK)
        dr = cand_pos[None, :, :] - target_pos[lo:hi, None, :]
        if side is not None:
            dr = minimum_image(dr, float(side))
        d2 = (dr * dr).sum(axis=2)
        d = np.sqrt(d2)
        valid = d > NUMERICAL_ZERO
        if use_uid:
            tu = target_uid[lo:hi, None]
            valid &= ~((tu == cand_uid[None, :]) & (tu >= 0))
        with np.errstate(divide="ignore", invalid="ignore"):
            mag = FORCE_CONSTANT * target_mass[lo:hi, None] * cand_mass[None, :] / d2
            comp = dr / d[:, :, None] * mag[:, :, None]
        comp = np.where(valid[:, :, None], comp, 0.0)
        out[lo:hi] = comp.sum(axis=1)
    return out


def kinematic_step(
    pos: np.ndarray,
    vel: np.ndarray,
    force: np.ndarray,
    mass: np.ndarray,
    dt: float,
    side: float,
    half_step: float = KINEMATIC_HALF_STEP,
) -> tuple[np.ndarray, np.ndarray]:
    """Constant-acceleration update; returns (new_pos, new_vel).

    ``pos += half_step*a*dt**2 + v*dt`` (wrapped onto the torus), then
    ``v += a*dt``.
    """
    masses = np.asarray(mass, dtype=float).reshape(-1)
    if np.any(masses <= 0.0):
        raise ValueError("all masses must be positive")
    dt = float(dt)
    acc = np.asarray(force, dtype=float) / masses[:, None]
    pos_new = float(half_step) * acc * dt * dt + vel * dt + pos
    pos_new = wrap_torus(pos_new, side)
    vel_new = vel + acc * dt
    return pos_new, vel_new
