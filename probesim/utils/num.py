"""
General numeric utilities.
"""

from dataclasses import dataclass
import typing as t

import numpy
from numpy.typing import ArrayLike, DTypeLike, NDArray

from probesim.types import BackendName


Float: t.TypeAlias = t.Union[float, numpy.floating]
DTypeT = t.TypeVar('DTypeT', bound=numpy.generic)


try:
    import jax
    jax.config.update('jax_enable_x64', jax.default_backend() != 'METAL')
except ImportError:
    pass


def get_backend_module(backend: t.Optional[BackendName] = None):
    """Get the module `xp` associated with a compute backend"""
    if backend is None:
        return get_default_backend_module()

    backend = t.cast(BackendName, backend.lower())
    if backend not in ('cuda', 'cupy', 'jax', 'cpu', 'numpy'):
        raise ValueError(f"Unknown backend '{backend}'")

    if not t.TYPE_CHECKING:
        try:
            if backend == 'jax':
                import jax.numpy
                return jax.numpy
            if backend in ('cupy', 'cuda'):
                import cupy
                return cupy
        except ImportError:
            raise ValueError(f"Backend '{backend}' is not available")

    return numpy


def get_default_backend_module():
    if not t.TYPE_CHECKING:
        try:
            import jax.numpy
            return jax.numpy
        except ImportError:
            pass

        try:
            import cupy
            return cupy
        except ImportError:
            pass

    return numpy


def get_array_module(*arrs: t.Optional[ArrayLike]):
    try:
        import jax
        if any(isinstance(arr, jax.Array) for arr in arrs) \
           and not t.TYPE_CHECKING:
            return jax.numpy
    except ImportError:
        pass
    try:
        from cupy import get_array_module as f  # type: ignore
        if not t.TYPE_CHECKING:
            return f(*arrs)
    except ImportError:
        pass
    return numpy


def cast_array_module(xp: t.Any):
    if t.TYPE_CHECKING:
        return numpy
    return xp


def to_numpy(arr: t.Union[DTypeT, NDArray[DTypeT]], stream=None) -> NDArray[DTypeT]:
    """
    Convert an array to numpy.
    For cupy backend, this is equivalent to `cupy.asnumpy`.
    """
    if not t.TYPE_CHECKING:
        if is_jax(arr):
            return numpy.array(arr)

        if is_cupy(arr):
            return arr.get(stream)

    return numpy.array(arr)


def is_cupy(arr: t.Any) -> bool:
    try:
        import cupy  # pyright: ignore[reportMissingImports]
    except ImportError:
        return False
    return isinstance(arr, cupy.ndarray)


def is_jax(arr: t.Any) -> bool:
    try:
        import jax  # pyright: ignore[reportMissingImports]
    except ImportError:
        return False
    return isinstance(arr, jax.Array)


_COMPLEX_MAP: t.Dict[t.Type[numpy.floating], t.Type[numpy.complexfloating]] = {
    numpy.floating: numpy.complexfloating,
    numpy.float32: numpy.complex64,
    numpy.float64: numpy.complex128,
}

_REAL_MAP: t.Dict[t.Type[numpy.complexfloating], t.Type[numpy.floating]] = dict((v, k) for (k, v) in _COMPLEX_MAP.items())


def to_complex_dtype(dtype: DTypeLike) -> t.Type[numpy.complexfloating]:
    """
    Convert a floating point dtype to a complex version.
    """

    if not (isinstance(dtype, type) and issubclass(dtype, numpy.generic)):
        dtype = numpy.dtype(dtype).type

    if not isinstance(dtype, type) or not issubclass(dtype, (numpy.floating, numpy.complexfloating)):
        raise TypeError("Non-floating point datatype")

    if issubclass(dtype, numpy.complexfloating):
        return dtype

    try:
        return _COMPLEX_MAP[dtype]
    except KeyError:
        raise TypeError(f"Unsupported datatype '{dtype}'") from None


def to_real_dtype(dtype: DTypeLike) -> t.Type[numpy.floating]:
    """
    Convert a complex dtype to a plain float version.
    """

    if not (isinstance(dtype, type) and issubclass(dtype, numpy.generic)):
        dtype = numpy.dtype(dtype).type

    if not isinstance(dtype, type) or not issubclass(dtype, (numpy.floating, numpy.complexfloating)):
        raise TypeError("Non-floating point datatype")

    if issubclass(dtype, numpy.floating):
        return dtype

    try:
        return _REAL_MAP[dtype]
    except KeyError:
        raise TypeError(f"Unsupported datatype '{dtype}'") from None


def ifft2(a: ArrayLike) -> NDArray[numpy.complexfloating]:
    """
    Perform an inverse FFT on the last two axes of `a`.

    Follows our convention of centering real space and normalizing intensities.
    """

    xp = get_array_module(a)
    return xp.fft.fftshift(xp.fft.ifft2(a, norm='ortho'), axes=(-2, -1))


def fft2(a: ArrayLike) -> NDArray[numpy.complexfloating]:
    """
    Perform a forward FFT on the last two axes of `a`.

    Follows our convention of centering real space and normalizing intensities.
    """

    xp = get_array_module(a)
    return xp.fft.fft2(xp.fft.ifftshift(a, axes=(-2, -1)), norm='ortho')


def abs2(x: ArrayLike) -> NDArray[numpy.floating]:
    """
    Return the squared amplitude of a complex array.

    This is cheaper than `abs(x)**2.`
    """
    x = get_array_module(x).asarray(x)
    return x.real**2. + x.imag**2.  # type: ignore


def fftfreq(n: int, extent: Float, *, dtype: DTypeLike = numpy.float64, xp: t.Any = None) -> NDArray[numpy.floating]:
    """
    Return the sample frequencies of an `n`-point FFT over a box of size `extent`.

    Frequencies are spaced `1/extent` apart, and span `[-n/2, n/2 - 1]/extent` for even `n`
    and `[-(n-1)/2, (n-1)/2]/extent` for odd `n`. The result is ifftshifted, so the
    zero-frequency sample is at index 0 (matching `numpy.fft.fftfreq(n, extent/n)`).
    """
    xp2 = numpy if xp is None else cast_array_module(xp)

    if n < 1:
        raise ValueError(f"Expected a positive number of samples, instead got {n}")
    if not extent > 0.:
        raise ValueError(f"Expected a positive extent, instead got {extent}")

    if n % 2 == 0:
        (lo, hi) = (-n // 2, n // 2 - 1)
    else:
        (lo, hi) = (-(n - 1) // 2, (n - 1) // 2)

    freqs = xp2.arange(lo, hi + 1, dtype=numpy.float64) / float(extent)
    return xp2.fft.ifftshift(freqs).astype(dtype)


@dataclass(frozen=True, init=False)
class Sampling:
    shape: NDArray[numpy.int_]
    """Sampling shape (n_y, n_x)"""
    extent: NDArray[numpy.float64]
    """Sampling diameter (b, a)"""
    sampling: NDArray[numpy.float64]
    """Sample spacing (s_y, s_x)"""

    def __eq__(self, other: t.Any) -> bool:
        if type(self) is not type(other):
            return False
        return (
            numpy.array_equal(self.shape, other.shape) and
            numpy.array_equal(self.extent, other.extent)
        )

    def __hash__(self) -> int:
        return hash((tuple(self.shape.tolist()), tuple(self.extent.tolist())))

    @property
    def corner(self) -> NDArray[numpy.float64]:
        return ((-self.extent + self.sampling) / 2.).astype(numpy.float64)

    @t.overload
    def __init__(self,
                 shape: t.Tuple[int, int], *,
                 extent: t.Union[ArrayLike, t.Tuple[Float, Float]],
                 sampling: None = None):
        ...

    @t.overload
    def __init__(self,
                 shape: t.Tuple[int, int], *,
                 extent: None = None,
                 sampling: t.Union[ArrayLike, t.Tuple[Float, Float]]):
        ...

    def __init__(self,
                 shape: ArrayLike, *,
                 extent: t.Union[ArrayLike, t.Tuple[Float, Float], None] = None,
                 sampling: t.Union[ArrayLike, t.Tuple[Float, Float], None] = None):
        try:
            object.__setattr__(self, 'shape', numpy.broadcast_to(numpy.asarray(shape).astype(numpy.int_), (2,)))
        except ValueError as e:
            raise ValueError(f"Expected a shape (n_y, n_x), instead got: {shape}") from e
        if numpy.any(self.shape < 1):
            raise ValueError(f"Invalid sampling, shape {tuple(self.shape)}")

        if extent is not None:
            try:
                object.__setattr__(self, 'extent', numpy.broadcast_to(
                    numpy.asarray(extent).astype(numpy.float64), (2,)
                ))
            except ValueError as e:
                raise ValueError(f"Expected an extent (b, a), instead got: {extent}") from e
            object.__setattr__(self, 'sampling', self.extent / self.shape)
        elif sampling is not None:
            try:
                object.__setattr__(self, 'sampling', numpy.broadcast_to(
                    numpy.asarray(sampling).astype(numpy.float64), (2,)
                ))
            except ValueError as e:
                raise ValueError(f"Expected a sampling (s_y, s_x), instead got: {sampling}") from e
            object.__setattr__(self, 'extent', self.sampling * self.shape)
        else:
            raise ValueError("Either 'extent' or 'sampling' must be specified")

        if not numpy.all(self.extent > 0.):
            raise ValueError(f"Invalid sampling, shape {tuple(self.shape)} extent {tuple(self.extent)}")

    def recip_grid(
        self, *, centered: bool = False, dtype: t.Any = None, xp: t.Any = None
    ) -> t.Tuple[NDArray[numpy.number], NDArray[numpy.number]]:
        """
        Return the reciprocal space sampling grid `(kyy, kxx)`.

        Unless `centered` is specified, the grid is fftshifted so the zero-frequency component is in the top left.
        """
        xp2 = numpy if xp is None else cast_array_module(xp)

        if dtype is None:
            dtype = numpy.float64

        ky = fftfreq(int(self.shape[0]), self.extent[0], dtype=dtype, xp=xp2)
        kx = fftfreq(int(self.shape[1]), self.extent[1], dtype=dtype, xp=xp2)

        if centered:
            ky = xp2.fft.fftshift(ky)
            kx = xp2.fft.fftshift(kx)
        return tuple(xp2.meshgrid(ky, kx, indexing='ij'))  # type: ignore


def make_recip_grid(
    extent: t.Tuple[Float, Float], shape: t.Tuple[int, int], *,
    dtype: t.Any = None, xp: t.Any = None
) -> t.Tuple[NDArray[numpy.floating], NDArray[numpy.floating]]:
    """
    Return the frequency grid `(ky, kx)` for a box of size `extent` `(E_y, E_x)` sampled with `shape` `(n_y, n_x)`.
    """
    return Sampling(shape, extent=extent).recip_grid(dtype=dtype, xp=xp)  # type: ignore


__all__ = [
    'get_backend_module', 'get_default_backend_module',
    'get_array_module', 'cast_array_module',
    'to_numpy', 'is_cupy', 'is_jax',
    'to_complex_dtype', 'to_real_dtype',
    'fft2', 'ifft2', 'abs2', 'fftfreq',
    'Sampling', 'make_recip_grid',
]
