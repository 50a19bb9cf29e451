"""
Configuration and parameter objects.

This module only defines dataclasses and light validation; no lattice or
Hamiltonian is computed here.

Design goals
------------
- Parameters are immutable; a sweep builds modified copies.
- Runs are reproducible: parameters can be saved/loaded as JSON.
- Plane-wave model parameters and eigen-solver parameters are kept apart.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional
import json
import math

from .errors import InvalidCutoffError


@dataclass(frozen=True)
class PlaneWaveParameters:
    """
    Parameters of the plane-wave discretization of -1/2 Δ + V1 + V2.

    Notes on units
    --------------
    Atomic-like units: lengths in the units of the primitive vectors, momenta
    in inverse length, energies in units where the kinetic term is |G|²/2.

    Cutoffs
    -------
    EcL bounds |G1m - G2n| and EcW bounds |G1m + G2n|. A zero cutoff is
    allowed and gives an empty basis.

    Potential
    ---------
    Each layer's potential is v(x) = Σ_G exp(-γ|G|²) exp(iGx), so the
    coupling between two plane waves only depends on `gamma`.
    """
    EcL: float
    EcW: float
    gamma: float = 1.0
    # number of eigenpairs requested from the downstream solver
    n_eigs: int = 10
    # real-space sampling grid; not used by the exponential coupling
    n_fftwx: int = 0
    n_fftwy: int = 0
    name: str = "pw"

    def __post_init__(self):
        for label, ec in (("EcL", self.EcL), ("EcW", self.EcW)):
            if not math.isfinite(ec) or ec < 0:
                raise InvalidCutoffError(f"{label} must be a finite non-negative number, got {ec!r}")
        if not math.isfinite(self.gamma) or self.gamma < 0:
            raise ValueError(f"gamma must be a finite non-negative number, got {self.gamma!r}")
        if self.n_eigs < 1:
            raise ValueError("n_eigs must be positive.")

    @property
    def max_cutoff(self) -> float:
        return max(self.EcL, self.EcW)

    def with_gamma(self, gamma: float) -> "PlaneWaveParameters":
        return replace(self, gamma=gamma)

    def with_cutoffs(self, EcL: float, EcW: float) -> "PlaneWaveParameters":
        return replace(self, EcL=EcL, EcW=EcW)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    @staticmethod
    def from_json(path: str) -> "PlaneWaveParameters":
        with open(path, "r") as f:
            d = json.load(f)
        return PlaneWaveParameters(**d)


@dataclass(frozen=True)
class SolverParameters:
    """
    Parameters controlling the eigen-solver.

    We default to sparse `eigsh` for the smallest algebraic eigenvalues; pass
    `sigma` to switch to shift-invert around that energy instead.
    """
    sigma: Optional[float] = None
    which: str = "SA"
    maxiter: int = 10_000
    tol: float = 1e-10
    ncv: Optional[int] = None
    extra_eigs: int = 0
    # matrices smaller than this are diagonalized densely
    dense_below: int = 64
