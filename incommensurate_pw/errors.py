"""
Exceptions raised while building an incommensurate bilayer Hamiltonian.

Both derive from ValueError: they signal bad input and are always raised
before the plane-wave basis is enumerated.
"""
from __future__ import annotations


class DegenerateLatticeError(ValueError):
    """A primitive lattice matrix has zero determinant."""


class InvalidCutoffError(ValueError):
    """An energy cutoff is negative or not a finite number."""
