import asyncio
from itertools import chain
import typing as t

import pytest

P = t.ParamSpec('P')
T = t.TypeVar('T')


def with_backends(
    *backends: t.Union[str, t.Iterable[str]]
) -> t.Callable[[t.Callable[P, T]], t.Callable[P, T]]:
    """Run a test on the specified compute backends"""
    backends = t.cast(t.Tuple[str, ...],
        tuple(chain.from_iterable((b,) if isinstance(b, str) else b for b in backends))
    )

    def decorator(f: t.Callable[P, T]) -> t.Callable[P, T]:
        return pytest.mark.parametrize('backend', [
            pytest.param(backend, marks=getattr(pytest.mark, backend))
            for backend in backends
        ])(f)

    return decorator


def get_backend_module(backend: str):
    """Get the module `xp` associated with a compute backend"""
    backend = backend.lower()
    if backend not in ('cuda', 'jax', 'cpu'):
        raise ValueError(f"Unknown backend '{backend}'")

    if not t.TYPE_CHECKING:
        if backend == 'jax':
            import jax.numpy
            return jax.numpy
        if backend == 'cuda':
            import cupy
            return cupy

    import numpy
    return numpy


def run_async(f: t.Callable[[], t.Awaitable[T]]) -> T:
    """Run coroutine function `f` to completion on a fresh event loop."""
    return asyncio.run(f())  # type: ignore

