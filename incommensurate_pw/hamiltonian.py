"""
Plane-wave Hamiltonian -1/2 Δ + V1 + V2 of an incommensurate bilayer.

Core objects
------------
- assemble_hamiltonian: sparse matrix on a given PlaneWaveBasis.
- hamiltonian2d: lattice + parameters -> HamiltonianResult.
- IncommensurateModel: enumerates the basis once and exposes H(gamma).

Matrix elements
---------------
Between basis states n1 = (j11,j12,j21,j22) and n2 = (j11',j12',j21',j22'):

  n1 == n2 :  1/2 |G1m + G2n|² + 1 + 1
  n1 != n2 :  exp(-γ |B1 (j11-j11', j12-j12')|²)   if (j21,j22) == (j21',j22')
            + exp(-γ |B2 (j21-j21', j22-j22')|²)   if (j11,j12) == (j11',j12')

The "+1 + 1" on the diagonal is the G = 0 Fourier coefficient of each layer's
potential. Only pairs sharing one layer's index couple, so the assembly works
group by group instead of looping over all npw² pairs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from multiprocessing import Pool
from typing import Dict, List, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from .basis import PlaneWaveBasis, enumerate_basis
from .config import PlaneWaveParameters, SolverParameters
from .lattice import CellAreas, TwistedBilayer

Triplets = Tuple[np.ndarray, np.ndarray, np.ndarray]


def kinetic_diagonal(Gmn: np.ndarray) -> np.ndarray:
    """Diagonal elements 1/2 (|G1m|² + |G2n|² + 2 G1m·G2n) + 2."""
    Gmn = np.asarray(Gmn, dtype=float).reshape(-1, 4)
    cross = Gmn[:, 0] * Gmn[:, 2] + Gmn[:, 1] * Gmn[:, 3]
    return 0.5 * (np.sum(Gmn ** 2, axis=1) + 2 * cross) + 1 + 1


def exp_coupling(B: np.ndarray, dj: np.ndarray, gamma: float) -> np.ndarray:
    """exp(-γ |B dj|²) for integer differences dj of shape (..., 2)."""
    dG = np.asarray(dj) @ np.asarray(B).T
    return np.exp(-gamma * np.sum(dG ** 2, axis=-1))


def _check_gamma(gamma: float) -> None:
    if not np.isfinite(gamma) or gamma < 0:
        raise ValueError(f"gamma must be a finite non-negative number, got {gamma!r}")


def _group_by(keys: np.ndarray) -> List[np.ndarray]:
    """Basis positions sharing the same integer pair, groups of size > 1 only."""
    groups: Dict[Tuple[int, int], List[int]] = {}
    for idx, (a, b) in enumerate(keys):
        groups.setdefault((int(a), int(b)), []).append(idx)
    return [np.asarray(g, dtype=int) for g in groups.values() if len(g) > 1]


def _group_triplets(args: Tuple[np.ndarray, np.ndarray, np.ndarray, float]) -> Triplets:
    """
    Couplings among one group of basis states.

    `js` are the integer pairs of the layer that varies within the group and
    `B` that layer's reciprocal matrix.
    """
    idx, js, B, gamma = args
    dj = js[:, None, :] - js[None, :, :]            # (m,m,2)
    val = exp_coupling(B, dj, gamma)                # (m,m)
    rows = np.broadcast_to(idx[:, None], val.shape)
    cols = np.broadcast_to(idx[None, :], val.shape)
    # drop the diagonal and exponentials that underflowed to zero
    keep = (rows != cols) & (val != 0.0)
    return rows[keep], cols[keep], val[keep]


def _coupling_tasks(basis: PlaneWaveBasis, B1: np.ndarray, B2: np.ndarray, gamma: float) -> list:
    G = basis.G
    tasks = []
    # layer-1 potential: layer-2 index fixed, layer-1 index varies
    for idx in _group_by(G[:, 2:4]):
        tasks.append((idx, G[idx, 0:2], B1, gamma))
    # layer-2 potential: layer-1 index fixed, layer-2 index varies
    for idx in _group_by(G[:, 0:2]):
        tasks.append((idx, G[idx, 2:4], B2, gamma))
    return tasks


def assemble_hamiltonian(
    basis: PlaneWaveBasis,
    B1: np.ndarray,
    B2: np.ndarray,
    gamma: float,
    nprocs: int = 1,
) -> sp.csr_matrix:
    """
    Sparse Hamiltonian on `basis`.

    Parameters
    ----------
    basis : PlaneWaveBasis
    B1, B2 : (2,2) reciprocal matrices of layer 1 and layer 2
    gamma : decay parameter of the exponential potentials
    nprocs : number of worker processes for the off-diagonal couplings

    Returns
    -------
    H : (npw, npw) complex csr_matrix
        Real symmetric in value; stored as complex. Exact zeros are not stored
        and duplicate (row, col) entries are summed.

    Raises
    ------
    ValueError
        If `gamma` is negative or not finite.
    """
    npw = basis.npw
    _check_gamma(gamma)
    B1 = np.asarray(B1, dtype=float)
    B2 = np.asarray(B2, dtype=float)

    diag = np.arange(npw)
    rows: List[np.ndarray] = [diag]
    cols: List[np.ndarray] = [diag]
    vals: List[np.ndarray] = [kinetic_diagonal(basis.Gmn)]

    tasks = _coupling_tasks(basis, B1, B2, gamma)
    if nprocs > 1 and len(tasks) > 1:
        with Pool(processes=nprocs) as pool:
            parts = pool.map(_group_triplets, tasks)
    else:
        parts = [_group_triplets(t) for t in tasks]
    for r, c, v in parts:
        rows.append(r)
        cols.append(c)
        vals.append(v)

    row = np.concatenate(rows).astype(int)
    col = np.concatenate(cols).astype(int)
    val = np.concatenate(vals).astype(complex)
    return sp.coo_matrix((val, (row, col)), shape=(npw, npw), dtype=complex).tocsr()


@dataclass(frozen=True)
class HamiltonianResult:
    H: sp.csr_matrix
    basis: PlaneWaveBasis
    areas: CellAreas

    @property
    def npw(self) -> int:
        return self.basis.npw

    @property
    def R(self) -> np.ndarray:
        """(npw,2) combined reciprocal vector G1m + G2n of each basis state."""
        return self.basis.R

    @property
    def bounds(self) -> Tuple[int, int, int, int]:
        return self.basis.bounds

    def astuple(self) -> tuple:
        """
        (H, G, Gmn, R, Gmax11, Gmax12, Gmax21, Gmax22, S1, S2, RS1, RS2).

        R has shape (npw, 2), one row per basis state (R[n] is the combined
        vector of state n), and positions are 0-based.
        """
        return (self.H, self.basis.G, self.basis.Gmn, self.R) + tuple(self.bounds) + tuple(self.areas)


def hamiltonian2d(
    system: TwistedBilayer,
    params: PlaneWaveParameters,
    nprocs: int = 1,
    verbose: bool = True,
) -> HamiltonianResult:
    """
    Enumerate the plane-wave basis and assemble the Hamiltonian.

    Invalid input (degenerate lattice, bad cutoffs) is rejected when
    `system` and `params` are constructed, so nothing here fails halfway.
    """
    model = IncommensurateModel(system, params, nprocs=nprocs, verbose=verbose)
    return model.result()


@dataclass
class IncommensurateModel:
    system: TwistedBilayer
    params: PlaneWaveParameters
    solver: SolverParameters = field(default_factory=SolverParameters)
    nprocs: int = 1
    verbose: bool = True
    basis: Optional[PlaneWaveBasis] = None

    def __post_init__(self):
        # The basis only depends on the lattices and cutoffs; enumerate once.
        if self.basis is None:
            self.basis = enumerate_basis(self.system, self.params)
            if self.verbose:
                print(f" EcutL = {self.params.EcL}; EcutW = {self.params.EcW}; DOF = {self.basis.npw}")

    @property
    def npw(self) -> int:
        return self.basis.npw

    def H(self, gamma: Optional[float] = None) -> sp.csr_matrix:
        """Hamiltonian for `gamma` (default: params.gamma) on the cached basis."""
        if gamma is None:
            gamma = self.params.gamma
        return assemble_hamiltonian(self.basis, self.system.B1, self.system.B2, gamma, nprocs=self.nprocs)

    def result(self, gamma: Optional[float] = None) -> HamiltonianResult:
        return HamiltonianResult(H=self.H(gamma), basis=self.basis, areas=self.system.cell_areas)
