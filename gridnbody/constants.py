"""Named numeric constants for gridnbody.

Categories
----------
FORCE_CONSTANT
    Coupling constant of the pair force law ``F = FORCE_CONSTANT*m1*m2/d**2``.

NUMERICAL_ZERO
    Pair distance at or below which two particles are treated as coincident
    and exert no force on each other.

KINEMATIC_HALF_STEP
    Coefficient of the ``a*t**2`` displacement term of the position update.

HALO_TAG / HALO_WIRE_VERSION
    MPI tag pair base used for halo snapshot traffic and the version number
    written into every encoded snapshot.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Force law
# ---------------------------------------------------------------------------
FORCE_CONSTANT: float = 3.0

# ---------------------------------------------------------------------------
# Coincident-pair guard (prevent division by zero)
# ---------------------------------------------------------------------------
NUMERICAL_ZERO: float = 1e-30

# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------
KINEMATIC_HALF_STEP: float = 0.5

# ---------------------------------------------------------------------------
# Wire protocol
# ---------------------------------------------------------------------------
HALO_TAG: int = 9100
HALO_WIRE_VERSION: int = 1

# Bits reserved for the per-partition serial inside a particle uid.
UID_SERIAL_BITS: int = 32
