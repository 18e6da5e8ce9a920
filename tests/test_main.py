import json
from pathlib import Path

from click.testing import CliRunner
import numpy
import pytest
import tifffile

from probesim.main import cli
from probesim.types import DegenerateConfigurationError
from probesim.utils.num import Sampling
from probesim.utils.plotting import apply_colormap
from probesim.utils.io import save_outputs


PARAMS = """
kv: 200
max_angle: 50
shape: [32, 32]
aperture: 20
backend: cpu
debounce: 0.
"""


def test_validate(tmp_path: Path):
    path = tmp_path / 'params.yaml'
    path.write_text(PARAMS)

    result = CliRunner().invoke(cli, ['validate', str(path), '--json'])
    assert result.exit_code == 0
    out = json.loads(result.stdout.strip().splitlines()[-1])
    assert out['result'] == 'success'
    assert out['params']['shape'] == [32, 32]


def test_validate_invalid(tmp_path: Path):
    path = tmp_path / 'params.yaml'
    path.write_text("kv: -5\n")

    result = CliRunner().invoke(cli, ['validate', str(path), '--json'])
    assert result.exit_code == 1
    out = json.loads(result.stdout.strip().splitlines()[-1])
    assert out['result'] == 'error'


def test_run(tmp_path: Path):
    path = tmp_path / 'params.yaml'
    path.write_text(PARAMS)
    out_dir = tmp_path / 'out'

    result = CliRunner().invoke(cli, ['run', str(path), '-o', str(out_dir), '--log'])
    assert result.exit_code == 0, result.output

    for name in ('probe_real_intensity', 'probe_recip_intensity', 'object_phase', 'pattern_intensity'):
        for ext in ('npy', 'tiff', 'png'):
            assert (out_dir / f"{name}.{ext}").exists()

    pattern = numpy.load(out_dir / 'pattern_intensity.npy')
    assert pattern.shape == (32, 32)
    # log-scaled
    assert float(numpy.sum(numpy.expm1(pattern))) == pytest.approx(1., rel=1e-4)
    assert float(numpy.sum(numpy.load(out_dir / "probe_real_intensity.npy"))) == pytest.approx(1., rel=1e-4)


def test_run_zero_aperture(tmp_path: Path):
    # passes validation, but can't form a probe
    path = tmp_path / 'params.yaml'
    path.write_text(PARAMS.replace("aperture: 20", "aperture: 0"))
    out_dir = tmp_path / 'out'

    result = CliRunner().invoke(cli, ['validate', str(path)])
    assert result.exit_code == 0

    result = CliRunner().invoke(cli, ['run', str(path), '-o', str(out_dir)])
    assert result.exit_code == 1
    assert not isinstance(result.exception, DegenerateConfigurationError)
    assert "Simulation failed" in result.output
    assert "Aperture must be positive" in result.output
    assert not out_dir.exists()


def test_apply_colormap():
    data = numpy.linspace(0., 1., 12).reshape(3, 4)
    data[0, 0] = numpy.nan

    rgba = apply_colormap(data, 'gray')
    assert rgba.shape == (3, 4, 4)
    assert rgba.dtype == numpy.uint8
    assert tuple(rgba[2, 3, :3]) == (255, 255, 255)

    # constant images don't divide by zero
    rgba = apply_colormap(numpy.full((2, 2), 5.))
    assert numpy.all(rgba == rgba[0, 0])


def test_save_outputs(tmp_path: Path):
    sampling = Sampling((8, 8), sampling=(0.5, 0.5))
    data = numpy.random.default_rng(5).random((8, 8))

    written = save_outputs({'object_phase': data}, sampling, tmp_path, formats=('npy', 'tiff'))
    assert written == [tmp_path / 'object_phase.npy', tmp_path / 'object_phase.tiff']

    numpy.testing.assert_array_almost_equal(numpy.load(written[0]), data)
    numpy.testing.assert_array_almost_equal(tifffile.imread(written[1]), data.astype(numpy.float32))
