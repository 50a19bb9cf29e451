import pytest

import numpy as np

from incommensurate_pw import (IncommensurateModel, PlaneWaveParameters,
                               assemble_hamiltonian, enumerate_basis,
                               hamiltonian2d, kinetic_diagonal, exp_coupling)

pytestmark = pytest.mark.hamiltonian


def naive_hamiltonian(basis, B1, B2, gamma):
    """Dense reference built pair by pair."""
    G, Gmn = basis.G, basis.Gmn
    npw = basis.npw
    H = np.zeros((npw, npw), dtype=complex)
    for n1 in range(npw):
        for n2 in range(npw):
            d = G[n1] - G[n2]
            if n1 == n2:
                g = Gmn[n1]
                cp = 0.5 * (np.linalg.norm(g) ** 2 + 2 * np.dot(g[0:2], g[2:4])) + 1 + 1
            else:
                cp = 0.0
                if np.all(G[n1, 2:4] == G[n2, 2:4]):
                    cp += np.exp(-gamma * np.linalg.norm(B1 @ d[0:2]) ** 2)
                if np.all(G[n1, 0:2] == G[n2, 0:2]):
                    cp += np.exp(-gamma * np.linalg.norm(B2 @ d[2:4]) ** 2)
            H[n1, n2] = cp
    return H


def test_square_scenario(square_system, square_params):
    res = hamiltonian2d(square_system, square_params, verbose=False)
    H = res.H
    assert H.shape == (9, 9)
    assert H.dtype == np.complex128
    i0 = res.basis.index(0, 0, 0, 0)
    assert H[i0, i0] == 2.0
    i1 = res.basis.index(1, 0, 0, 0)
    assert H[i1, i1] == pytest.approx(0.5 * (2 * np.pi) ** 2 + 2)
    assert H[i0, i1] == pytest.approx(np.exp(-(2 * np.pi) ** 2), rel=1e-12, abs=0)
    # (1,0,0,0) and (-1,0,0,0) share the layer-2 index
    im1 = res.basis.index(-1, 0, 0, 0)
    assert H[i1, im1] == pytest.approx(np.exp(-(4 * np.pi) ** 2), rel=1e-12, abs=0)
    # (1,0,0,0) and (0,0,1,0) share neither index
    assert H[i1, res.basis.index(0, 0, 1, 0)] == 0
    # 9 diagonal + two groups of 5 states coupled all-to-all
    assert H.nnz == 9 + 5 * 4 + 5 * 4


def test_matches_pairwise_reference(twisted_system, twisted_params):
    basis = enumerate_basis(twisted_system, twisted_params)
    B1, B2 = twisted_system.B1, twisted_system.B2
    H = assemble_hamiltonian(basis, B1, B2, twisted_params.gamma)
    ref = naive_hamiltonian(basis, B1, B2, twisted_params.gamma)
    assert np.allclose(H.toarray(), ref, rtol=1e-12, atol=0)


def test_symmetric(twisted_system, twisted_params):
    H = hamiltonian2d(twisted_system, twisted_params, verbose=False).H
    assert (H != H.T).nnz == 0
    assert np.all(H.data.imag == 0)


def test_no_stored_zeros(twisted_system, twisted_params):
    H = hamiltonian2d(twisted_system, twisted_params, verbose=False).H
    assert np.all(H.data != 0)


def test_diagonal_positive(twisted_system, twisted_params):
    H = hamiltonian2d(twisted_system, twisted_params, verbose=False).H
    assert np.all(H.diagonal().real > 0)
    assert np.all(H.diagonal().real >= 2.0)


def test_selection_rules(twisted_system, twisted_params):
    res = hamiltonian2d(twisted_system, twisted_params, verbose=False)
    G = res.basis.G
    coo = res.H.tocoo()
    for i, j in zip(coo.row, coo.col):
        if i == j:
            continue
        assert np.all(G[i, 0:2] == G[j, 0:2]) or np.all(G[i, 2:4] == G[j, 2:4])


def test_gamma_zero(twisted_system, twisted_params):
    model = IncommensurateModel(twisted_system, twisted_params, verbose=False)
    H = model.H(gamma=0.0).tocoo()
    off = H.row != H.col
    assert np.any(off)
    assert np.all(H.data[off] == 1.0)


def test_underflow_dropped(twisted_system, twisted_params):
    # exp(-γ|ΔG|²) underflows to zero for huge γ: H is diagonal
    res = hamiltonian2d(twisted_system, twisted_params.with_gamma(1e6), verbose=False)
    assert res.H.nnz == res.npw
    assert np.allclose(res.H.diagonal(), kinetic_diagonal(res.basis.Gmn))


def test_empty_basis(square_system):
    res = hamiltonian2d(square_system, PlaneWaveParameters(EcL=0.0, EcW=0.0), verbose=False)
    assert res.npw == 0
    assert res.H.shape == (0, 0)
    assert res.H.nnz == 0
    assert res.R.shape == (0, 2)


def test_astuple(square_system, square_params):
    res = hamiltonian2d(square_system, square_params, verbose=False)
    H, G, Gmn, R, g11, g12, g21, g22, S1, S2, RS1, RS2 = res.astuple()
    assert H is res.H
    assert G.shape == (9, 4) and Gmn.shape == (9, 4) and R.shape == (9, 2)
    assert (g11, g12, g21, g22) == (1, 1, 1, 1)
    assert (S1, S2) == pytest.approx((1.0, 1.0))
    assert (RS1, RS2) == pytest.approx(((2 * np.pi) ** 2, (2 * np.pi) ** 2))


def test_parallel_matches_serial(twisted_system, twisted_params):
    serial = hamiltonian2d(twisted_system, twisted_params, verbose=False).H
    parallel = hamiltonian2d(twisted_system, twisted_params, nprocs=2, verbose=False).H
    assert (serial != parallel).nnz == 0


def test_model_reuses_basis(twisted_system, twisted_params):
    model = IncommensurateModel(twisted_system, twisted_params, verbose=False)
    basis = model.basis
    H1 = model.H()
    H2 = model.H(gamma=2 * twisted_params.gamma)
    assert model.basis is basis
    assert H1.shape == H2.shape == (model.npw, model.npw)
    assert np.allclose(H1.diagonal(), H2.diagonal())
    assert model.result(gamma=0.0).basis is basis
    with pytest.raises(ValueError):
        model.H(gamma=-1.0)


def test_verbose_reports_dof(square_system, square_params, capsys):
    hamiltonian2d(square_system, square_params)
    out = capsys.readouterr().out
    assert "DOF = 9" in out


def test_exp_coupling():
    B = 2 * np.pi * np.eye(2)
    dj = np.array([[0, 0], [1, 0], [1, 1]])
    val = exp_coupling(B, dj, 0.5)
    assert np.allclose(val, np.exp(-0.5 * (2 * np.pi) ** 2 * np.array([0, 1, 2])))


@pytest.mark.parametrize("gamma", [np.nan, np.inf, -0.5])
def test_invalid_gamma(twisted_system, twisted_params, gamma):
    basis = enumerate_basis(twisted_system, twisted_params)
    with pytest.raises(ValueError):
        assemble_hamiltonian(basis, twisted_system.B1, twisted_system.B2, gamma)
    model = IncommensurateModel(twisted_system, twisted_params, basis=basis, verbose=False)
    with pytest.raises(ValueError):
        model.H(gamma=gamma)


def test_astuple_R_rows(square_system, square_params):
    res = hamiltonian2d(square_system, square_params, verbose=False)
    H, G, Gmn, R = res.astuple()[:4]
    for n in range(res.npw):
        assert np.allclose(R[n], Gmn[n, 0:2] + Gmn[n, 2:4])
