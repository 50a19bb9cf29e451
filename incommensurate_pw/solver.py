"""
Eigen-solvers for the plane-wave Hamiltonian.

Kept separate from the model code so the eigensolver (dense for small bases,
sparse `eigsh` for production) can be swapped without touching the assembly.
"""
from __future__ import annotations

from typing import Tuple, Optional, Literal
import os
import json
import hashlib

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from scipy.sparse.linalg import ArpackNoConvergence
from dataclasses import asdict
from pathlib import Path

from .config import PlaneWaveParameters, SolverParameters
from .hamiltonian import IncommensurateModel
from .lattice import TwistedBilayer


def reorder_eigensystem(
    evals: np.ndarray,
    evecs: np.ndarray,
    order: Literal["energy", "abs"] = "energy",
) -> tuple[np.ndarray, np.ndarray]:
    """
    Reorder eigenpairs consistently.

    Parameters
    ----------
    evals : (..., nb)
    evecs : (..., dim, nb)
    order : "energy" | "abs"
    """
    if order == "energy":
        idx = np.argsort(evals, axis=-1)
    elif order == "abs":
        idx = np.argsort(np.abs(evals), axis=-1)
    else:
        raise ValueError(f"Unknown order '{order}'")

    evals_new = np.take_along_axis(evals, idx, axis=-1)
    evecs_new = np.take_along_axis(evecs, idx[..., None, :], axis=-1)
    return evals_new, evecs_new


def solve_lowest(
    H: sp.spmatrix,
    n_eigs: int,
    solver: Optional[SolverParameters] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Lowest `n_eigs` eigenpairs of a symmetric sparse H.

    Returns
    -------
    evals : (nev,) float, ascending
    evecs : (dim, nev) complex
        nev = min(n_eigs, dim); both empty for an empty basis.
    """
    sp_ = SolverParameters() if solver is None else solver
    dim = H.shape[0]
    if dim == 0:
        return np.zeros(0), np.zeros((0, 0), dtype=complex)

    kreq = min(n_eigs + sp_.extra_eigs, dim)
    # ARPACK needs k < dim - 1
    if dim < sp_.dense_below or kreq >= dim - 1:
        evals, evecs = np.linalg.eigh(H.toarray())
        evals, evecs = evals[:kreq], evecs[:, :kreq]
    else:
        which = "LM" if sp_.sigma is not None else sp_.which
        try:
            evals, evecs = spla.eigsh(
                H, k=kreq, sigma=sp_.sigma, which=which, maxiter=sp_.maxiter,
                tol=sp_.tol, ncv=sp_.ncv
            )
        except ArpackNoConvergence as e:
            evals = e.eigenvalues
            evecs = e.eigenvectors
            if evals is None or evecs is None or len(evals) == 0:
                raise
    evals, evecs = reorder_eigensystem(np.real(evals), np.asarray(evecs, complex), order="energy")
    nev = min(n_eigs, len(evals))
    return evals[:nev], evecs[:, :nev]


def solve_model(model: IncommensurateModel, gamma: Optional[float] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Assemble H on the model basis and return its lowest `params.n_eigs` eigenpairs."""
    return solve_lowest(model.H(gamma), model.params.n_eigs, model.solver)


def _hash_array(a: np.ndarray, nhex: int = 10) -> str:
    """Short stable hash of array bytes (for filenames)."""
    h = hashlib.sha1(np.ascontiguousarray(a).view(np.uint8)).hexdigest()
    return h[:nhex]


def _safe_float(x: float) -> str:
    """Filename-friendly float formatting."""
    # e.g. 1.05 -> "1p05", -0.5 -> "m0p5"
    s = f"{x:g}"
    return s.replace(".", "p").replace("-", "m")


def default_eigensystem_cache_path(
    model: IncommensurateModel,
    *,
    cache_dir: str | os.PathLike = "cache",
) -> Path:
    """Construct a descriptive cache filename for the eigensystem."""
    p = model.params
    s = model.system
    lat_hash = _hash_array(np.concatenate([s.R1.ravel(), s.R2.ravel()]))
    fname = (
        f"{p.name}_eigs_"
        f"EcL{_safe_float(p.EcL)}_"
        f"EcW{_safe_float(p.EcW)}_"
        f"g{_safe_float(p.gamma)}_"
        f"ne{p.n_eigs}_"
        f"lat{lat_hash}.npz"
    )
    return Path(cache_dir) / fname


def model_snapshot(model: IncommensurateModel) -> dict:
    """
    Return a JSON-serializable snapshot sufficient to reconstruct the model.

    The potential callables v1, v2 are not serialized.
    """
    s = model.system
    return {
        "system": {
            "R1": s.R1.tolist(),
            "R2": s.R2.tolist(),
            "theta": float(s.theta),
            "X1": s.layer1.X.tolist(),
            "X2": s.layer2.X.tolist(),
        },
        "PlaneWaveParameters": model.params.to_dict(),
        "solver": asdict(model.solver),
    }


def model_from_snapshot(snap: dict, verbose: bool = False) -> IncommensurateModel:
    """Reconstruct the model from a snapshot created by model_snapshot()."""
    if "system" not in snap or "PlaneWaveParameters" not in snap or "solver" not in snap:
        raise ValueError("Invalid model snapshot: missing components.")

    d = snap["system"]
    system = TwistedBilayer.build(
        np.array(d["R1"]), np.array(d["R2"]), theta=d["theta"],
        X1=np.array(d["X1"]), X2=np.array(d["X2"]),
    )
    p = PlaneWaveParameters(**snap["PlaneWaveParameters"])
    s = SolverParameters(**snap["solver"])
    return IncommensurateModel(system, p, s, verbose=verbose)


def save_eigensystem(
    path: str | os.PathLike,
    *,
    model: IncommensurateModel,
    eigvals: np.ndarray,
    eigvecs: np.ndarray,
    meta: Optional[dict] = None,
) -> None:
    """Save eigensystem to a compressed .npz with metadata.

    Stored keys:
      - eigvals (nev,)
      - eigvecs (npw,nev)
      - G       (npw,4) basis quadruples
      - meta_json (str)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    meta = {} if meta is None else dict(meta)
    meta["model_snapshot"] = model_snapshot(model)
    meta["npw"] = int(model.npw)
    meta_json = json.dumps(meta, sort_keys=True)
    np.savez_compressed(
        path,
        eigvals=np.asarray(eigvals, float),
        eigvecs=np.asarray(eigvecs, complex),
        G=np.asarray(model.basis.G, int),
        meta_json=np.array(meta_json),
    )


def load_eigensystem(
    path: str | os.PathLike,
) -> tuple[IncommensurateModel, np.ndarray, np.ndarray, dict]:
    """Load eigensystem from a .npz.

    Returns (model, eigvals, eigvecs, meta_dict).
    """
    path = Path(path)
    data = np.load(path, allow_pickle=False)

    eigvals = np.asarray(data["eigvals"], float)
    eigvecs = np.asarray(data["eigvecs"], complex)
    meta_json = str(data["meta_json"])
    meta = json.loads(meta_json) if meta_json else {}
    snap = meta.get("model_snapshot", None)
    if snap is None:
        raise ValueError("Cache file does not contain a model_snapshot.")
    model = model_from_snapshot(snap)

    # the stored basis must match the one the snapshot enumerates
    if not np.array_equal(np.asarray(data["G"], int).reshape(-1, 4), model.basis.G):
        raise ValueError("Cached basis does not match the reconstructed model.")
    return model, eigvals, eigvecs, meta


def get_eigensystem_cached(
    model: IncommensurateModel,
    *,
    cache_dir: str | os.PathLike = "cache",
    force_recompute: bool = False,
) -> tuple[IncommensurateModel, np.ndarray, np.ndarray, Path, dict]:
    """Load eigensystem from cache or compute + store it.

    Returns
    -------
    model, eigvals, eigvecs, cache_path, meta
    """
    path = default_eigensystem_cache_path(model, cache_dir=cache_dir)

    if (not force_recompute) and path.exists():
        if model.verbose:
            print("Cache file found, loading")
        model, ev, eV, meta = load_eigensystem(path)
        return model, ev, eV, path, meta

    if model.verbose:
        print("Cache file not found, computing")
    eigvals, eigvecs = solve_model(model)
    if model.verbose:
        print("Done with computing")
    save_eigensystem(path, model=model, eigvals=eigvals, eigvecs=eigvecs)
    model2, ev2, eV2, meta = load_eigensystem(path)
    return model2, ev2, eV2, path, meta
