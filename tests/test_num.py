import warnings

import numpy
from numpy.testing import assert_array_almost_equal
import pytest

from .utils import with_backends, get_backend_module

from probesim.utils.num import (
    get_array_module, get_backend_module as get_named_backend,
    to_real_dtype, to_complex_dtype,
    fft2, ifft2, abs2, to_numpy,
    fftfreq, Sampling, make_recip_grid,
)


@with_backends('cpu', 'jax', 'cuda')
def test_get_array_module(backend: str):
    expected = get_backend_module(backend)

    assert get_array_module() is numpy
    assert get_array_module(numpy.array([1., 2.]), None) is numpy

    assert get_array_module(
        numpy.array([1., 2., 3.]),
        expected.array([1, 2, 3]),
        None,
        numpy.array([1., 2., 3.]),
    ) is expected


def test_get_backend_module():
    assert get_named_backend('cpu') is numpy
    assert get_named_backend('NumPy') is numpy

    with pytest.raises(ValueError, match="Unknown backend 'fortran'"):
        get_named_backend('fortran')  # type: ignore


@pytest.mark.parametrize(('input', 'expected'), [
    (numpy.complex64, numpy.float32),
    (numpy.complex128, numpy.float64),
    ('complex128', numpy.float64),
    (float, numpy.float64),
    (complex, numpy.float64),
])
def test_to_real_dtype(input, expected):
    assert to_real_dtype(input) is expected
    # test idempotence
    assert to_real_dtype(expected) is expected


@pytest.mark.parametrize(('input', 'expected'), [
    (numpy.float32, numpy.complex64),
    (numpy.float64, numpy.complex128),
    ('float32', numpy.complex64),
    (float, numpy.complex128),
    (complex, numpy.complex128),
])
def test_to_complex_dtype(input, expected):
    assert to_complex_dtype(input) is expected
    # test idempotence
    assert to_complex_dtype(expected) is expected


def test_to_complex_dtype_invalid():
    with pytest.raises(TypeError, match="Non-floating point datatype"):
        to_complex_dtype(numpy.int_)


@with_backends('cpu', 'jax', 'cuda')
def test_fft2(backend: str):
    xp = get_backend_module(backend)

    # point input at the center, f = 5 delta(x) delta(y)
    a = xp.pad(xp.array([[5.]], dtype=numpy.float32), ((2, 2), (2, 2)))

    # delta function input, so output is constant
    # normalized so intensity in = intensity out
    assert_array_almost_equal(
        to_numpy(fft2(a)),
        numpy.full((5, 5), 1., dtype=numpy.complex64)
    )

    # plane input, so output is delta function at k=0
    # zero frequency is cornered
    a = xp.full((5, 5), 1+1.j, dtype=numpy.complex64)
    assert_array_almost_equal(
        to_numpy(fft2(a)),
        numpy.pad([[5.+5.j]], ((0, 4), (0, 4))).astype(numpy.complex64)
    )


@with_backends('cpu', 'jax', 'cuda')
def test_ifft2(backend: str):
    xp = get_backend_module(backend)

    # point input at k=0, output is constant
    a = xp.pad(xp.array([[5.]], dtype=numpy.float32), ((0, 4), (0, 4)))
    assert_array_almost_equal(
        to_numpy(ifft2(a)),
        numpy.full((5, 5), 1., dtype=numpy.complex64),
        decimal=5
    )

    # plane input, so output is delta function
    # zero position is centered
    a = xp.full((5, 5), 1+1.j, dtype=numpy.complex64)
    assert_array_almost_equal(
        to_numpy(ifft2(a)),
        numpy.pad([[5.+5.j]], ((2, 2), (2, 2))).astype(numpy.complex64),
        decimal=5
    )


def test_abs2():
    assert_array_almost_equal(abs2([1.+1.j, 1.-1.j]), numpy.array([2., 2.]))
    assert_array_almost_equal(
        abs2(numpy.array([1., -2., 5.], dtype=numpy.float32)),
        numpy.array([1, 4., 25.], dtype=numpy.float32),
    )


@pytest.mark.parametrize('n', [1, 2, 5, 8, 9, 64, 65])
@pytest.mark.parametrize('extent', [1., 3.5, 16.05])
def test_fftfreq(n: int, extent: float):
    freqs = fftfreq(n, extent)

    assert freqs.shape == (n,)
    # zero frequency at index 0
    assert freqs[0] == 0.
    assert_array_almost_equal(freqs, numpy.fft.fftfreq(n, extent / n), decimal=12)

    # spacing is 1/extent
    assert_array_almost_equal(numpy.diff(numpy.sort(freqs)), numpy.full(n - 1, 1. / extent), decimal=12)

    # symmetric range
    if n % 2 == 0:
        assert numpy.min(freqs) == pytest.approx(-n / 2 / extent)
        assert numpy.max(freqs) == pytest.approx((n / 2 - 1) / extent)
    else:
        assert numpy.min(freqs) == pytest.approx(-numpy.max(freqs))


def test_fftfreq_invalid():
    with pytest.raises(ValueError, match="positive number of samples"):
        fftfreq(0, 1.)
    with pytest.raises(ValueError, match="positive extent"):
        fftfreq(4, 0.)


def test_fftfreq_dtype():
    assert fftfreq(8, 2., dtype=numpy.float32).dtype == numpy.float32


@with_backends('cpu', 'jax', 'cuda')
def test_make_recip_grid(backend: str):
    xp = get_backend_module(backend)

    (ky, kx) = make_recip_grid((10., 20.), (5, 8), dtype=numpy.float64, xp=xp)
    assert ky.shape == kx.shape == (5, 8)

    (ky, kx) = (to_numpy(ky), to_numpy(kx))
    assert_array_almost_equal(ky[:, 0], numpy.fft.fftfreq(5, 10. / 5))
    assert_array_almost_equal(kx[0], numpy.fft.fftfreq(8, 20. / 8))
    # broadcast along the other axis
    assert_array_almost_equal(ky[:, 3], ky[:, 0])
    assert_array_almost_equal(kx[4], kx[0])


def test_recip_grid_roundtrip():
    # a plane wave at an FFT bin frequency transforms to a single bin
    sampling = Sampling((16, 12), extent=(8., 6.))
    (yy, xx) = numpy.meshgrid(numpy.arange(16) * 0.5, numpy.arange(12) * 0.5, indexing='ij')
    (ky, kx) = sampling.recip_grid()

    wave = numpy.exp(2.j*numpy.pi * (yy * ky[3, 0] + xx * kx[0, 2]))
    recip = abs2(fft2(wave))

    assert numpy.argmax(recip) == numpy.ravel_multi_index((3, 2), recip.shape)
    assert recip[3, 2] == pytest.approx(numpy.sum(recip))


def test_sampling():
    sampling = Sampling((64, 64), sampling=(0.25, 0.25))
    assert sampling.extent.tolist() == [16., 16.]
    assert sampling.corner.tolist() == [-7.875, -7.875]

    assert sampling == Sampling((64, 64), extent=(16., 16.))
    assert hash(sampling) == hash(Sampling((64, 64), extent=(16., 16.)))
    assert sampling != Sampling((32, 64), extent=(16., 16.))

    with pytest.raises(ValueError, match="Either 'extent' or 'sampling' must be specified"):
        Sampling((64, 64))

    with pytest.raises(ValueError, match="Invalid sampling"):
        Sampling((64, 64), extent=(16., 0.))


def test_sampling_empty_shape():
    # rejected before any division by the shape
    with warnings.catch_warnings():
        warnings.simplefilter('error', RuntimeWarning)

        with pytest.raises(ValueError, match="Invalid sampling"):
            Sampling((0, 64), extent=(16., 16.))
        with pytest.raises(ValueError, match="Invalid sampling"):
            Sampling((64, -1), sampling=(0.25, 0.25))
