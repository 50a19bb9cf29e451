"""
Truncated plane-wave basis of an incommensurate bilayer.

A basis state is labelled by four integers (j11, j12, j21, j22):

    G1m = j11 b11 + j12 b12     (reciprocal lattice of layer 1)
    G2n = j21 b21 + j22 b22     (reciprocal lattice of layer 2)

and is kept iff

    |G1m + G2n| < EcW   and   |G1m - G2n| < EcL.

Enumeration runs over a box [-Gmax, Gmax] per integer, with
Gmax = floor(max(EcL, EcW) / |b|) for the corresponding reciprocal vector.
The box is conservative; the cutoffs above do the actual truncation.

Basis ordering
--------------
Row-major over (j11, j12, j21, j22), each ascending, j11 outermost. The
position in this list is the row/column index of the Hamiltonian.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from .config import PlaneWaveParameters
from .errors import InvalidCutoffError
from .lattice import TwistedBilayer

Quadruple = Tuple[int, int, int, int]

# upper bound on (rows x layer-2 vectors) held in memory during enumeration
_MAX_BLOCK_ELEMENTS = 1 << 18


def box_bounds(B1: np.ndarray, B2: np.ndarray, EcL: float, EcW: float) -> Tuple[int, int, int, int]:
    """(Gmax11, Gmax12, Gmax21, Gmax22): per-axis bounds of the enumeration box."""
    ec = max(EcL, EcW)
    return tuple(
        int(np.floor(ec / np.linalg.norm(b)))
        for b in (B1[:, 0], B1[:, 1], B2[:, 0], B2[:, 1])
    )


def _layer_vectors(B: np.ndarray, gmax_a: int, gmax_b: int) -> Tuple[np.ndarray, np.ndarray]:
    """Integer pairs (ja, jb) in row-major order and their vectors ja*B[:,0] + jb*B[:,1]."""
    ja = np.arange(-gmax_a, gmax_a + 1)
    jb = np.arange(-gmax_b, gmax_b + 1)
    aa, bb = np.meshgrid(ja, jb, indexing="ij")
    jj = np.stack([aa.ravel(), bb.ravel()], axis=1).astype(int)
    vecs = jj[:, 0:1] * B[:, 0][None, :] + jj[:, 1:2] * B[:, 1][None, :]
    return jj, vecs


@dataclass(frozen=True)
class PlaneWaveBasis:
    G: np.ndarray          # (npw,4) integer quadruples (j11,j12,j21,j22)
    Gmn: np.ndarray        # (npw,4) realized vectors (G1m_x, G1m_y, G2n_x, G2n_y)
    bounds: Tuple[int, int, int, int]
    EcL: float
    EcW: float
    index_of: Dict[Quadruple, int]

    @property
    def npw(self) -> int:
        return self.G.shape[0]

    def __len__(self) -> int:
        return self.npw

    @property
    def G1m(self) -> np.ndarray:
        return self.Gmn[:, 0:2]

    @property
    def G2n(self) -> np.ndarray:
        return self.Gmn[:, 2:4]

    @property
    def R(self) -> np.ndarray:
        """(npw,2) combined reciprocal vectors G1m + G2n."""
        return self.G1m + self.G2n

    @property
    def layer1_index(self) -> np.ndarray:
        return self.G[:, 0:2]

    @property
    def layer2_index(self) -> np.ndarray:
        return self.G[:, 2:4]

    def index(self, j11: int, j12: int, j21: int, j22: int) -> int:
        """Position of a quadruple in the basis; KeyError if it was truncated."""
        return self.index_of[(int(j11), int(j12), int(j21), int(j22))]

    @staticmethod
    def build(B1: np.ndarray, B2: np.ndarray, EcL: float, EcW: float) -> "PlaneWaveBasis":
        """
        Enumerate every quadruple inside the dual cutoff region.

        Parameters
        ----------
        B1, B2 : (2,2)
            Reciprocal vectors (columns) of layer 1 and layer 2.
        EcL, EcW : float
            Cutoffs on |G1m - G2n| and |G1m + G2n|.

        Returns
        -------
        PlaneWaveBasis
            Possibly empty (npw == 0) when the cutoffs are smaller than the
            reciprocal lattice spacing.
        """
        for label, ec in (("EcL", EcL), ("EcW", EcW)):
            if not np.isfinite(ec) or ec < 0:
                raise InvalidCutoffError(f"{label} must be a finite non-negative number, got {ec!r}")
        B1 = np.asarray(B1, dtype=float)
        B2 = np.asarray(B2, dtype=float)
        bounds = box_bounds(B1, B2, EcL, EcW)
        Gmax11, Gmax12, Gmax21, Gmax22 = bounds

        j1, G1 = _layer_vectors(B1, Gmax11, Gmax12)   # (n1,2)
        j2, G2 = _layer_vectors(B2, Gmax21, Gmax22)   # (n2,2)

        # blocks of layer-1 rows against all of layer 2; nonzero() walks each
        # block row-major, which keeps (j11,j12) outer and (j21,j22) inner
        step = max(1, _MAX_BLOCK_ELEMENTS // max(1, len(G2)))
        hits1, hits2 = [], []
        for start in range(0, len(G1), step):
            blk = G1[start:start + step]
            Gsum = blk[:, None, :] + G2[None, :, :]
            Gdiff = blk[:, None, :] - G2[None, :, :]
            keep = (np.linalg.norm(Gsum, axis=-1) < EcW) & (np.linalg.norm(Gdiff, axis=-1) < EcL)
            r, c = np.nonzero(keep)
            hits1.append(r + start)
            hits2.append(c)
        i1 = np.concatenate(hits1).astype(int) if hits1 else np.zeros(0, dtype=int)
        i2 = np.concatenate(hits2).astype(int) if hits2 else np.zeros(0, dtype=int)

        G = np.concatenate([j1[i1], j2[i2]], axis=1).reshape(-1, 4).astype(int)
        Gmn = np.concatenate([G1[i1], G2[i2]], axis=1).reshape(-1, 4)

        index_of: Dict[Quadruple, int] = {}
        for idx, q in enumerate(G):
            index_of[tuple(int(x) for x in q)] = idx

        return PlaneWaveBasis(
            G=G,
            Gmn=Gmn,
            bounds=bounds,
            EcL=float(EcL),
            EcW=float(EcW),
            index_of=index_of,
        )


def enumerate_basis(system: TwistedBilayer, params: PlaneWaveParameters) -> PlaneWaveBasis:
    """Plane-wave basis of `system` truncated by the cutoffs in `params`."""
    return PlaneWaveBasis.build(system.B1, system.B2, params.EcL, params.EcW)
