"""
incommensurate_pw: plane-wave Hamiltonians for incommensurate 2D bilayers.

Modules:
- config: parameter dataclasses
- errors: input errors raised before any enumeration
- lattice: layer lattices, reciprocal lattices, bilayer descriptor
- basis: truncated plane-wave basis (dual cutoff on G1m ± G2n)
- hamiltonian: sparse Hamiltonian assembly
- solver: eigensolver wrappers and eigensystem caching
"""
from .config import PlaneWaveParameters, SolverParameters
from .errors import DegenerateLatticeError, InvalidCutoffError
from .lattice import (rot2, reciprocal, reciprocal_matrix, cell_area,
                      CellAreas, Layer, TwistedBilayer)
from .basis import PlaneWaveBasis, box_bounds, enumerate_basis
from .hamiltonian import (kinetic_diagonal, exp_coupling, assemble_hamiltonian,
                          HamiltonianResult, hamiltonian2d, IncommensurateModel)
from .solver import (solve_lowest, solve_model, reorder_eigensystem,
                     get_eigensystem_cached, save_eigensystem, load_eigensystem)

__all__ = [
    "PlaneWaveParameters", "SolverParameters",
    "DegenerateLatticeError", "InvalidCutoffError",
    "rot2", "reciprocal", "reciprocal_matrix", "cell_area",
    "CellAreas", "Layer", "TwistedBilayer",
    "PlaneWaveBasis", "box_bounds", "enumerate_basis",
    "kinetic_diagonal", "exp_coupling", "assemble_hamiltonian",
    "HamiltonianResult", "hamiltonian2d", "IncommensurateModel",
    "solve_lowest", "solve_model", "reorder_eigensystem",
    "get_eigensystem_cached", "save_eigensystem", "load_eigensystem",
]
