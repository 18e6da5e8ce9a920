"""
Probe/optics utilities
"""

from dataclasses import dataclass
import math
import typing as t

import numpy
from numpy.typing import NDArray, ArrayLike

from probesim.types import DegenerateConfigurationError
from .num import get_array_module, ifft2, abs2, Float, to_complex_dtype


@dataclass(frozen=True)
class Aberration:
    """
    A single term of the aberration function, with radial order `n` and azimuthal order `m`.

    `coeff` is the (complex) aberration coefficient in length units. The real part
    multiplies `cos(m*phi)`, the imaginary part `sin(m*phi)`.
    """

    n: int
    m: int
    coeff: complex
    name: t.Optional[str] = None

    def __post_init__(self):
        if self.n < 0 or self.m < 0:
            raise ValueError(f"Aberration orders must be non-negative, instead got n={self.n}, m={self.m}")
        object.__setattr__(self, 'coeff', complex(self.coeff))

    @classmethod
    def from_polar(cls, n: int, m: int, mag: float, angle: float = 0., name: t.Optional[str] = None) -> 'Aberration':
        """Create an aberration from a magnitude and an angle (in degrees)."""
        return cls(n, m, mag * complex(math.cos(math.radians(angle)), math.sin(math.radians(angle))), name)

    @property
    def mag(self) -> float:
        return abs(self.coeff)

    @property
    def angle(self) -> float:
        """Aberration angle, in degrees."""
        return math.degrees(math.atan2(self.coeff.imag, self.coeff.real))

    def with_polar(self, mag: t.Optional[float] = None, angle: t.Optional[float] = None) -> 'Aberration':
        """Return a copy with the magnitude and/or angle (in degrees) replaced."""
        return self.from_polar(
            self.n, self.m,
            self.mag if mag is None else mag,
            self.angle if angle is None else angle,
            self.name,
        )


def aberration_phase(
    ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], wavelength: Float,
    aberrations: t.Iterable[Aberration],
) -> NDArray[numpy.floating]:
    """
    Evaluate the aberration function `chi` (in length units) over the frequency grid `ky`, `kx`.

    `chi = sum(theta^(n+1)/(n+1) * (Re(C_nm) cos(m phi) + Im(C_nm) sin(m phi)))`
    """
    xp = get_array_module(ky, kx)

    theta2 = (ky**2 + kx**2) * wavelength**2
    phi = xp.arctan2(ky, kx)

    chi = xp.zeros_like(theta2)
    for ab in aberrations:
        if ab.coeff == 0.:
            continue
        radial = theta2**((ab.n + 1) / 2.) / (ab.n + 1)
        chi = chi + radial * (ab.coeff.real * xp.cos(ab.m * phi) + ab.coeff.imag * xp.sin(ab.m * phi))

    return chi


def make_focused_probe(
    ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], wavelength: Float,
    aperture: Float, aberrations: t.Iterable[Aberration] = (), *, defocus: Float = 0.
) -> NDArray[numpy.complexfloating]:
    """
    Create a focused probe from a circular aperture of semi-angle `aperture` (in mrad),
    aberrated by `aberrations`.

    `defocus` is shorthand for an additional `Aberration(1, 0, defocus)` (positive corresponds to overfocus).

    Returns the probe in realspace (centered), normalized to unit total intensity.
    Raises `DegenerateConfigurationError` if the aperture passes no frequencies.
    """
    xp = get_array_module(ky, kx)
    dtype = to_complex_dtype(ky.dtype)

    if not aperture > 0.:
        raise DegenerateConfigurationError(f"Aperture must be positive to form a probe, instead got {aperture} mrad")

    aberrations = list(aberrations)
    if defocus != 0.:
        aberrations.append(Aberration(1, 0, defocus, 'Defocus'))

    theta2 = (ky**2 + kx**2) * wavelength**2
    chi = aberration_phase(ky, kx, wavelength, aberrations)

    probe = xp.exp(-2.j*numpy.pi * (chi / wavelength)).astype(dtype)

    mask = theta2 <= (aperture * 1e-3)**2
    probe = probe * mask

    # normalize intensity of probe
    intensity = float(xp.sum(abs2(probe)))
    if not intensity > 0.:
        raise DegenerateConfigurationError(
            f"Aperture of {aperture} mrad passes no frequencies (probe has zero intensity)"
        )
    probe = probe / math.sqrt(intensity)

    return ifft2(probe)


def fourier_shift_filter(ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], shifts: ArrayLike) -> NDArray[numpy.complexfloating]:
    """
    Create a phase ramp / Fourier shift filter, using the reciprocal space frequencies `ky` & `kx`.

    # Parameters:

     - `ky`, `kx`: Frequency grid filter is created with
     - `shifts`: Vector(s) to shift by. Should be an array of shape `(..., 2)`, with the last dimension
       representing `(y, x)` coordinates.

    Returns a ndarray of shape `(*shifts.shape[:-1], *ky.shape)`
    """
    xp = get_array_module(ky, kx)
    dtype = to_complex_dtype(ky.dtype)

    shifts = xp.asarray(shifts, dtype=ky.dtype)
    y = shifts[..., 0][..., None, None]
    x = shifts[..., 1][..., None, None]

    return xp.exp(xp.array(-2.j*numpy.pi, dtype=dtype) * (x * kx + y * ky))


def fresnel_propagator(ky: NDArray[numpy.floating], kx: NDArray[numpy.floating], wavelength: Float,
                       delta_z: Float, tilt: t.Tuple[float, float] = (0., 0.)) -> NDArray[numpy.complexfloating]:
    """
    Return a Fresnel diffraction filter in frequency space, for use in free-space propagation. Roughly taken from Kirkland [1].

    # Parameters

     - `ky`, `kx`: Frequency grid filter is created with
     - `wavelength`: Wavelength
     - `delta_z`: Distance to propagate by
     - `tilt`: `(x, y)` mistilt to apply (in mrad).

    [1]. Kirkland, E. J. Advanced Computing in Electron Microscopy. (Springer US, Boston, MA, 2010). doi:10.1007/978-1-4419-6533-2.

    """
    xp = get_array_module(ky, kx)

    (tiltx, tilty) = numpy.tan(tilt[0]*1e-3), numpy.tan(tilt[1]*1e-3)

    k2 = ky**2 + kx**2
    return xp.exp(-1.j * numpy.pi * delta_z * (wavelength * k2 - 2.*(kx*tiltx + ky*tilty))) \
        .astype(to_complex_dtype(k2.dtype))


__all__ = [
    'Aberration', 'aberration_phase', 'make_focused_probe',
    'fourier_shift_filter', 'fresnel_propagator',
]
