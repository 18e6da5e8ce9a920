"""
Atomic scattering factors, unit cell structure factors, and the projected specimen phase.

Scattering factors use the parameterization of Kirkland [1]: three Lorentzian terms
`a_i/(k^2 + b_i)` and three Gaussian terms `c_i exp(-d_i k^2)`, with `k^2` in 1/angstrom^2.

[1]. Kirkland, E. J. Advanced Computing in Electron Microscopy. (Springer US, Boston, MA, 2010). doi:10.1007/978-1-4419-6533-2.
"""

from dataclasses import dataclass
import logging
import math
import typing as t

import numpy
from numpy.typing import NDArray

from probesim.types import ConfigurationError
from .num import Sampling, get_array_module, to_complex_dtype, to_real_dtype, cast_array_module
from .physics import Electron

logger = logging.getLogger(__name__)


class ScatteringParams(t.NamedTuple):
    lorentzian: t.Tuple[t.Tuple[float, float], t.Tuple[float, float], t.Tuple[float, float]]
    """Lorentzian terms `(a_i, b_i)`"""
    gaussian: t.Tuple[t.Tuple[float, float], t.Tuple[float, float], t.Tuple[float, float]]
    """Gaussian terms `(c_i, d_i)`"""

    @classmethod
    def from_flat(cls, vals: t.Sequence[float]) -> 'ScatteringParams':
        """Build from a flat row `[a_1, b_1, a_2, b_2, a_3, b_3, c_1, d_1, c_2, d_2, c_3, d_3]`."""
        if len(vals) != 12:
            raise ValueError(f"Expected 12 scattering parameters, instead got {len(vals)}")
        return cls(
            tuple((vals[2*i], vals[2*i + 1]) for i in range(3)),  # type: ignore
            tuple((vals[2*i + 6], vals[2*i + 7]) for i in range(3)),  # type: ignore
        )

    def forward(self) -> float:
        """Scattering amplitude at `k = 0`."""
        return sum(a / b for (a, b) in self.lorentzian) + sum(c for (c, _) in self.gaussian)


ATOM_PARAMS: t.Dict[int, ScatteringParams] = {
    16: ScatteringParams.from_flat([  # S
        1.0164691e+00, 1.6918197e+00, 4.4176674e-01, 1.7418028e-01, 1.2150386e-01, 1.6701109e+02,
        8.2796669e-01, 2.3034282e+00, 2.3302253e-02, 1.5695415e-01, 1.1830285e+00, 5.8578291e+00,
    ]),
    42: ScatteringParams.from_flat([  # Mo
        6.1016011e-01, 9.1162808e-02, 1.2654400e+00, 5.0677603e-01, 1.9742876e+00, 5.8959036e+00,
        6.4802897e-01, 1.4663411e+00, 2.6038082e-03, 7.8433631e-03, 1.1388750e-01, 1.5511434e-01,
    ]),
}


def get_scattering_params(z: int) -> ScatteringParams:
    try:
        return ATOM_PARAMS[z]
    except KeyError:
        raise ConfigurationError(
            f"No scattering parameters for atomic number {z} (supported: {', '.join(map(str, sorted(ATOM_PARAMS)))})",
            z
        ) from None


def scattering_amplitude(k2: NDArray[numpy.floating], z: int) -> NDArray[numpy.complexfloating]:
    """
    Return the electron scattering amplitude of element `z`, evaluated at squared frequencies `k2`.

    Raises `ConfigurationError` if `z` isn't a supported element.
    """
    params = get_scattering_params(z)
    xp = get_array_module(k2)

    f = xp.zeros(k2.shape, dtype=to_complex_dtype(k2.dtype))
    for (a, b) in params.lorentzian:
        f = f + a / (k2 + b)
    for (c, d) in params.gaussian:
        f = f + c * xp.exp(-d * k2)
    return f


@dataclass(frozen=True)
class Site:
    z: int
    """Atomic number"""
    occupancy: float
    """Occupancy (number of atoms per column)"""
    positions: t.Tuple[t.Tuple[float, float], ...]
    """Fractional positions `(x, y)` inside the unit cell"""


@dataclass(frozen=True)
class UnitCell:
    """Rectangular unit cell with lattice constants `a` (along x) and `b` (along y), in angstrom."""

    a: float
    b: float
    sites: t.Tuple[Site, ...]

    def __post_init__(self):
        if not (self.a > 0. and self.b > 0.):
            raise ValueError(f"Lattice constants must be positive, instead got a={self.a}, b={self.b}")

    @property
    def elements(self) -> t.Tuple[int, ...]:
        return tuple(site.z for site in self.sites)


MOS2_CELL: UnitCell = UnitCell(3.16, 5.48, (
    Site(42, 1.0, ((0., 0.), (1/2, 1/2))),
    Site(16, 2.0, ((0., 1/3), (1/2, 1/2 + 1/3))),
))
"""MoS2 (2H, [001] projection) in a rectangular cell."""


def unit_cell_amplitude(
    ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], k2: NDArray[numpy.floating],
    cell: UnitCell = MOS2_CELL
) -> NDArray[numpy.complexfloating]:
    """
    Return the structure factor of a single unit cell over the frequency grid.

    Each site contributes `occupancy * f_z(k^2) * exp(-2 pi i (kx x + ky y))`, with `(x, y)`
    the site position in angstrom.
    """
    xp = get_array_module(ky, kx, k2)
    dtype = to_complex_dtype(k2.dtype)

    amp = xp.zeros(k2.shape, dtype=dtype)
    for site in cell.sites:
        f = scattering_amplitude(k2, site.z)
        for (x, y) in site.positions:
            phase = xp.exp(xp.array(-2.j*numpy.pi, dtype=dtype) * (ky * (y * cell.b) + kx * (x * cell.a)))
            amp = amp + site.occupancy * f * phase
    return amp


def lattice_tiling(extent: t.Tuple[float, float], cell: UnitCell, cap: float = 50.) -> t.Tuple[int, int]:
    """
    Return the number of unit cells `(n_a, n_b)` to tile along x and y.

    The tiled area is limited to `cap` angstrom along each axis.
    """
    (ey, ex) = (float(extent[0]), float(extent[1]))
    return (
        int(math.floor(min(ex, cap) / cell.a)),
        int(math.floor(min(ey, cap) / cell.b)),
    )


def _lattice_sum(k: NDArray[numpy.floating], n: int, spacing: float, dtype: t.Any) -> NDArray[numpy.complexfloating]:
    xp = get_array_module(k)
    ramp = xp.exp(xp.array(-2.j*numpy.pi * spacing, dtype=dtype) * k)

    total = xp.zeros(k.shape, dtype=dtype)
    term = xp.ones(k.shape, dtype=dtype)
    for _ in range(n):
        total = total + term
        term = term * ramp
    return total


def lattice_amplitude(
    ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], cell_amp: NDArray[numpy.complexfloating],
    cell: UnitCell, tiling: t.Tuple[int, int],
) -> NDArray[numpy.complexfloating]:
    """
    Superpose `cell_amp` over a `tiling[0]` x `tiling[1]` block of unit cells, centered on the origin.

    The double sum over cell origins factors into a sum along x times a sum along y.
    """
    xp = get_array_module(ky, kx, cell_amp)
    dtype = cell_amp.dtype
    (n_a, n_b) = tiling

    shift_x = -(n_a - 0.5) * cell.a / 2.
    shift_y = -n_b * cell.b / 2.
    shift = xp.exp(xp.array(-2.j*numpy.pi, dtype=dtype) * (kx * shift_x + ky * shift_y))

    return cell_amp * shift * _lattice_sum(kx, n_a, cell.a, dtype) * _lattice_sum(ky, n_b, cell.b, dtype)


def object_phase(
    sampling: Sampling, electron: Electron, cell: UnitCell = MOS2_CELL, cap: float = 50., *,
    dtype: t.Any = numpy.float32, xp: t.Any = None
) -> NDArray[numpy.floating]:
    """
    Return the projected phase [radians] of a crystal of `cell`, sampled on `sampling`.

    The phase is the (non-negative) magnitude of the inverse transformed lattice amplitude,
    scaled by `(n_y n_x)/(E_y E_x) * gamma * lambda`. It is centered, matching the probe.
    """
    xp2 = numpy if xp is None else cast_array_module(xp)
    dtype = to_real_dtype(dtype)

    (ky, kx) = sampling.recip_grid(dtype=dtype, xp=xp2)
    k2 = ky**2 + kx**2

    tiling = lattice_tiling(tuple(sampling.extent), cell, cap)
    logger.debug(f"Tiling {tiling[0]}x{tiling[1]} unit cells (extent {tuple(sampling.extent)})")

    amp = lattice_amplitude(ky, kx, unit_cell_amplitude(ky, kx, k2, cell), cell, tiling)
    phase = xp2.abs(xp2.fft.fftshift(xp2.fft.ifft2(amp)))

    scale = float(numpy.prod(sampling.shape) / numpy.prod(sampling.extent)) * electron.gamma * electron.wavelength
    return (phase * scale).astype(dtype)


__all__ = [
    'ScatteringParams', 'ATOM_PARAMS', 'get_scattering_params', 'scattering_amplitude',
    'Site', 'UnitCell', 'MOS2_CELL', 'unit_cell_amplitude',
    'lattice_tiling', 'lattice_amplitude', 'object_phase',
]
