"""
Layer lattices, reciprocal lattices and the bilayer system descriptor.

Each layer is a 2D Bravais lattice given by a 2x2 matrix whose *columns* are
the primitive vectors. The reciprocal matrix has the reciprocal vectors as
columns, so that

    B.T @ R = 2π I    (b_i · a_j = 2π δ_ij)

The two layers are independent: the combined system is in general
incommensurate and has no common supercell.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np

from .errors import DegenerateLatticeError

Potential = Callable[[float, float], float]


def rot2(theta: float) -> np.ndarray:
    """2D rotation matrix."""
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, -s], [s, c]], dtype=float)


def reciprocal_matrix(R: np.ndarray) -> np.ndarray:
    """
    Reciprocal lattice vectors of one layer.

    For R = [[a, c], [b, d]] (columns (a,b) and (c,d)),

        B = 2π/det(R) * [[d, -b], [-c, a]]

    Raises
    ------
    DegenerateLatticeError
        If det(R) == 0 (or is not finite).
    """
    R = np.asarray(R, dtype=float)
    if R.shape != (2, 2):
        raise ValueError(f"primitive lattice must be a 2x2 matrix, got shape {R.shape}")
    det = R[0, 0] * R[1, 1] - R[0, 1] * R[1, 0]
    if det == 0 or not np.isfinite(det):
        raise DegenerateLatticeError(f"primitive lattice is degenerate (det = {det})")
    return 2 * np.pi / det * np.array([[R[1, 1], -R[1, 0]], [-R[0, 1], R[0, 0]]])


def reciprocal(R1: np.ndarray, R2: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Reciprocal matrices (B1, B2) of both layers."""
    return reciprocal_matrix(R1), reciprocal_matrix(R2)


def cell_area(M: np.ndarray) -> float:
    """Area spanned by the two columns of M: sqrt(|a|²|b|² - (a·b)²)."""
    a, b = M[:, 0], M[:, 1]
    return float(np.sqrt(np.dot(a, a) * np.dot(b, b) - np.dot(a, b) ** 2))


class CellAreas(NamedTuple):
    S1: float    # primitive cell of layer 1
    S2: float    # primitive cell of layer 2
    RS1: float   # reciprocal cell of layer 1
    RS2: float   # reciprocal cell of layer 2


@dataclass(frozen=True)
class Layer:
    R: np.ndarray                   # (2,2) primitive vectors as columns
    B: np.ndarray                   # (2,2) reciprocal vectors as columns
    v: Optional[Potential] = None   # real-space potential, passthrough only
    X: np.ndarray = field(default_factory=lambda: np.zeros(2))  # fractional offset

    @staticmethod
    def from_primitive(R: np.ndarray, v: Optional[Potential] = None,
                       X: Optional[np.ndarray] = None) -> "Layer":
        R = np.array(R, dtype=float)
        X = np.zeros(2) if X is None else np.array(X, dtype=float).reshape(2)
        return Layer(R=R, B=reciprocal_matrix(R), v=v, X=X)

    @property
    def area(self) -> float:
        return cell_area(self.R)

    @property
    def reciprocal_area(self) -> float:
        return cell_area(self.B)

    @property
    def offset_cart(self) -> np.ndarray:
        """Offset of the layer in cartesian coordinates."""
        return self.R @ self.X


@dataclass(frozen=True)
class TwistedBilayer:
    """
    Two incommensurate layers.

    `theta` is informational: the twist is already contained in the
    primitive vectors of the two layers.
    """
    layer1: Layer
    layer2: Layer
    theta: float = 0.0

    @staticmethod
    def build(
        R1: np.ndarray,
        R2: np.ndarray,
        theta: float = 0.0,
        v1: Optional[Potential] = None,
        v2: Optional[Potential] = None,
        X1: Optional[np.ndarray] = None,
        X2: Optional[np.ndarray] = None,
    ) -> "TwistedBilayer":
        """
        Construct the bilayer from the primitive matrices of both layers.

        Reciprocal lattices are computed here, so a degenerate lattice fails
        before any basis is enumerated.
        """
        return TwistedBilayer(
            layer1=Layer.from_primitive(R1, v=v1, X=X1),
            layer2=Layer.from_primitive(R2, v=v2, X=X2),
            theta=float(theta),
        )

    @staticmethod
    def twisted(R: np.ndarray, theta: float, **kwargs) -> "TwistedBilayer":
        """
        Two copies of the same lattice twisted by `theta` (radians).

        Layer 1 is rotated by -θ/2 and layer 2 by +θ/2.
        """
        R = np.asarray(R, dtype=float)
        return TwistedBilayer.build(rot2(-theta / 2.0) @ R, rot2(theta / 2.0) @ R,
                                    theta=theta, **kwargs)

    @property
    def R1(self) -> np.ndarray:
        return self.layer1.R

    @property
    def R2(self) -> np.ndarray:
        return self.layer2.R

    @property
    def B1(self) -> np.ndarray:
        return self.layer1.B

    @property
    def B2(self) -> np.ndarray:
        return self.layer2.B

    @property
    def cell_areas(self) -> CellAreas:
        return CellAreas(
            S1=self.layer1.area,
            S2=self.layer2.area,
            RS1=self.layer1.reciprocal_area,
            RS2=self.layer2.reciprocal_area,
        )
