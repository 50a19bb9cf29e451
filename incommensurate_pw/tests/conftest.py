import numpy as np
import pytest

from incommensurate_pw import PlaneWaveParameters, TwistedBilayer

HEX = np.array([[1.0, 0.5], [0.0, np.sqrt(3) / 2]])


@pytest.fixture
def square_system():
    return TwistedBilayer.build(np.eye(2), np.eye(2), theta=0.0)


@pytest.fixture
def square_params():
    ec = 1.1 * 2 * np.pi
    return PlaneWaveParameters(EcL=ec, EcW=ec, gamma=1.0)


@pytest.fixture
def twisted_system():
    return TwistedBilayer.twisted(HEX, theta=0.1)


@pytest.fixture
def twisted_params():
    # anisotropic cutoffs, a couple of reciprocal shells
    b = 4 * np.pi / np.sqrt(3)
    return PlaneWaveParameters(EcL=2.2 * b, EcW=1.6 * b, gamma=0.05, n_eigs=4)
