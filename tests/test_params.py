from pathlib import Path

import pane
import pytest

from probesim.params import SimulationParameters, CartesianAberration, PolarAberration, aberration_params
from probesim.types import InRange
from probesim.utils.optics import Aberration


def test_defaults():
    params = SimulationParameters()

    assert params.kv == 200.
    assert params.max_angle == 50.
    assert params.shape == (256, 256)
    assert params.probe_pos == (0., 0.)
    assert params.backend is None
    assert params.dtype == 'float32'

    assert params.to_aberrations() == [
        Aberration(1, 0, 1000., 'Defocus'),
        Aberration(1, 2, 0., 'Astigmatism'),
        Aberration(2, 1, 0., 'Coma'),
        Aberration(3, 0, 0., 'Spherical'),
    ]


def test_from_yaml(tmp_path: Path):
    path = tmp_path / 'params.yaml'
    path.write_text("""
kv: 300
max_angle: 40.
shape: [128, 96]
aperture: 21.4
aberrations:
  - {n: 1, m: 0, real: -50., name: Defocus}
  - {n: 1, m: 2, mag: 10., angle: 90.}
probe_pos: [1.5, -2.]
backend: cpu
dtype: float64
""")

    params = SimulationParameters.from_yaml(path)
    assert params.kv == 300.
    assert params.shape == (128, 96)
    assert params.probe_pos == (1.5, -2.)
    assert params.dtype == 'float64'

    (defocus, astig) = params.aberrations
    assert isinstance(defocus, CartesianAberration)
    assert isinstance(astig, PolarAberration)

    (defocus, astig) = params.to_aberrations()
    assert defocus.coeff == pytest.approx(-50.)
    assert astig.coeff == pytest.approx(10.j)


def test_polar_cartesian_equivalence():
    polar = pane.convert({'n': 2, 'm': 1, 'mag': 5., 'angle': 30.}, PolarAberration).to_aberration()
    cart = pane.convert({'n': 2, 'm': 1, 'real': 4.330127018922194, 'imag': 2.5}, CartesianAberration).to_aberration()

    assert polar.coeff == pytest.approx(cart.coeff)
    assert aberration_params(polar).to_aberration().coeff == pytest.approx(polar.coeff)


def test_roundtrip():
    params = SimulationParameters(
        kv=80., shape=(33, 65), aperture=0.,
        aberrations=(PolarAberration(n=3, m=0, mag=1e4, angle=0.),),
        probe_pos=(3., 4.),
    )
    assert SimulationParameters.from_data(params.into_data()) == params


@pytest.mark.parametrize('data', [
    {'kv': -1.},
    {'kv': 0.},
    {'max_angle': float('nan')},
    {'aperture': -0.5},
    {'shape': [0, 64]},
    {'shape': [64]},
    {'probe_pos': [float('inf'), 0.]},
    {'debounce': -1.},
    {'aberrations': [{'n': -1, 'm': 0}]},
    {'aberrations': [{'n': 1, 'm': 0, 'real': 1., 'mag': 2.}]},
    {'backend': 'fortran'},
    {'dtype': 'float16'},
    {'unknown_key': 5},
])
def test_invalid(data):
    with pytest.raises(pane.ConvertError):
        SimulationParameters.from_data(data)


def test_in_range():
    r = InRange(gt=0., le=10.)
    assert r.describe() == "> 0.0 and <= 10.0"
    assert r.check(10.)
    assert not r.check(0.)
    assert not r.check(float('nan'))

    with pytest.raises(TypeError, match="'gt' and 'ge' cannot both be specified"):
        InRange(gt=0., ge=0.)
