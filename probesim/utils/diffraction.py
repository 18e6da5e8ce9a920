"""
Single-slice diffraction of a (shifted) probe through the specimen phase.
"""

import typing as t

import numpy
from numpy.typing import NDArray

from .num import get_array_module, fft2, ifft2, abs2, to_complex_dtype
from .optics import fourier_shift_filter


def shift_probe(
    probe: NDArray[numpy.complexfloating], ky: NDArray[numpy.floating], kx: NDArray[numpy.floating],
    pos: t.Tuple[float, float],
) -> NDArray[numpy.complexfloating]:
    """
    Shift a (centered, realspace) probe to scan position `pos` `(x, y)`, using a Fourier phase ramp.
    """
    (x, y) = pos
    if x == 0. and y == 0.:
        return probe
    return ifft2(fft2(probe) * fourier_shift_filter(ky, kx, (y, x)))


def simulate_pattern(
    probe: NDArray[numpy.complexfloating], phase: NDArray[numpy.floating],
    ky: NDArray[numpy.floating], kx: NDArray[numpy.floating],
    pos: t.Tuple[float, float] = (0., 0.),
) -> NDArray[numpy.complexfloating]:
    """
    Return the far-field wavefunction of `probe` at scan position `pos`, transmitted through an object of phase `phase`.

    The result has the zero frequency at the top left (FFT convention). Use `pattern_intensity` to
    obtain a centered intensity.
    """
    if probe.shape != phase.shape:
        raise ValueError(f"Probe shape {probe.shape} doesn't match object shape {phase.shape}")
    if probe.shape != ky.shape or probe.shape != kx.shape:
        raise ValueError(f"Probe shape {probe.shape} doesn't match grid shape {ky.shape}")

    xp = get_array_module(probe, phase)
    dtype = to_complex_dtype(probe.dtype)

    wave = shift_probe(probe, ky, kx, pos)
    wave = wave * xp.exp(xp.array(1.j, dtype=dtype) * phase)
    return fft2(wave)


def pattern_intensity(pattern: NDArray[numpy.complexfloating], log: bool = False) -> NDArray[numpy.floating]:
    """Return the centered diffraction intensity of `pattern`, optionally `log1p` scaled."""
    xp = get_array_module(pattern)
    intensity = xp.fft.fftshift(abs2(pattern))
    if log:
        return xp.log1p(intensity)
    return intensity


__all__ = [
    'shift_probe', 'simulate_pattern', 'pattern_intensity',
]
