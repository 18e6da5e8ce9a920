"""
Interactive probe & diffraction simulation, driven by a recomputation graph.
"""

import asyncio
import logging
import math
import typing as t

import numpy
from numpy.typing import NDArray
import pane

from .graph import Graph, AsyncDerived
from .params import SimulationParameters, AberrationParams, aberration_params, Finite
from .types import InvalidInputError, Positive, NonNegative
from .utils.atoms import MOS2_CELL, UnitCell, object_phase
from .utils.diffraction import simulate_pattern, pattern_intensity
from .utils.num import Sampling, get_backend_module, fft2, abs2, to_numpy
from .utils.optics import Aberration, make_focused_probe
from .utils.physics import Electron

logger = logging.getLogger(__name__)

DISPLAY_NODES: t.Tuple[str, ...] = (
    'probe_real_intensity', 'probe_recip_intensity', 'object_phase', 'pattern_intensity'
)


def _make_sampling(electron: Electron, max_angle: float, shape: t.Tuple[int, int]) -> Sampling:
    s = electron.detector_sampling(max_angle)
    return Sampling(shape, sampling=(s, s))


def _make_probe(
    sampling: Sampling, electron: Electron, aperture: float, aberrations: t.Sequence[Aberration],
    xp: t.Any, dtype: str,
) -> NDArray[numpy.complexfloating]:
    (ky, kx) = sampling.recip_grid(dtype=dtype, xp=xp)
    return make_focused_probe(ky, kx, electron.wavelength, aperture, aberrations)


def _make_object(
    sampling: Sampling, electron: Electron, cap: float, xp: t.Any, dtype: str, cell: UnitCell = MOS2_CELL
) -> NDArray[numpy.floating]:
    return object_phase(sampling, electron, cell, cap, dtype=dtype, xp=xp)


def _make_pattern(
    probe: NDArray[numpy.complexfloating], obj: NDArray[numpy.floating],
    sampling: Sampling, probe_pos: t.Tuple[float, float], xp: t.Any,
) -> NDArray[numpy.complexfloating]:
    (ky, kx) = sampling.recip_grid(dtype=obj.dtype, xp=xp)
    return simulate_pattern(probe, obj, ky, kx, probe_pos)


def _probe_recip_intensity(probe: NDArray[numpy.complexfloating]) -> NDArray[numpy.floating]:
    return pattern_intensity(fft2(probe))


class Simulation:
    """
    Parameters and derived quantities of the simulation.

    Parameter setters validate their input, and raise `InvalidInputError` (leaving the
    previous state intact) on bad values. Derived quantities are recomputed in the background
    on the running event loop, after a debounce delay.
    """

    def __init__(self, params: t.Optional[SimulationParameters] = None, *, cell: UnitCell = MOS2_CELL):
        if params is None:
            params = SimulationParameters()
        self.cell: UnitCell = cell

        g = self.graph = Graph(debounce=params.debounce)

        g.source('kv', params.kv)
        g.source('max_angle', params.max_angle)
        g.source('shape', tuple(params.shape))
        g.source('aperture', params.aperture)
        g.source('aberrations', tuple(params.to_aberrations()))
        g.source('probe_pos', tuple(params.probe_pos))
        g.source('backend', params.backend)
        g.source('dtype', params.dtype)
        g.source('lattice_cap', params.lattice_cap)

        g.derived('xp', get_backend_module, 'backend')
        g.derived('electron', Electron.from_kv, 'kv')
        g.derived('sampling', _make_sampling, 'electron', 'max_angle', 'shape')

        g.async_derived('probe', lambda *args: _make_probe(*args),
                        'sampling', 'electron', 'aperture', 'aberrations', 'xp', 'dtype')
        g.async_derived('object', lambda *args: _make_object(*args, cell=self.cell),
                        'sampling', 'electron', 'lattice_cap', 'xp', 'dtype')
        g.async_derived('pattern', lambda *args: _make_pattern(*args),
                        'probe', 'object', 'sampling', 'probe_pos', 'xp')

        g.async_derived('probe_real_intensity', lambda probe: abs2(probe), 'probe', debounce=0.)
        g.async_derived('probe_recip_intensity', lambda probe: _probe_recip_intensity(probe), 'probe', debounce=0.)
        g.async_derived('object_phase', lambda obj: obj, 'object', debounce=0.)
        g.async_derived('pattern_intensity', lambda pattern: pattern_intensity(pattern), 'pattern', debounce=0.)

    def __getitem__(self, name: str) -> AsyncDerived:
        node = self.graph[name]
        if not isinstance(node, AsyncDerived):
            raise KeyError(name)
        return node

    @property
    def params(self) -> SimulationParameters:
        g = self.graph
        return SimulationParameters(
            kv=g.get('kv'), max_angle=g.get('max_angle'), shape=g.get('shape'),
            aperture=g.get('aperture'),
            aberrations=tuple(aberration_params(ab) for ab in g.get('aberrations')),
            probe_pos=g.get('probe_pos'), backend=g.get('backend'), dtype=g.get('dtype'),
            debounce=g.debounce, lattice_cap=g.get('lattice_cap'),
        )

    @property
    def electron(self) -> Electron:
        return self.graph.get('electron')

    @property
    def sampling(self) -> Sampling:
        return self.graph.get('sampling')

    def _convert(self, field: str, value: t.Any, ty: t.Any) -> t.Any:
        try:
            return pane.convert(value, ty)
        except pane.ConvertError as e:
            logger.warning(f"Ignoring invalid value for '{field}': {value!r}")
            raise InvalidInputError(f"Invalid value for '{field}': {value!r}\n{e}", field, value) from e

    def set_kv(self, kv: t.Any):
        self.graph.set('kv', self._convert('kv', kv, t.Annotated[float, Positive]))

    def set_max_angle(self, max_angle: t.Any):
        self.graph.set('max_angle', self._convert('max_angle', max_angle, t.Annotated[float, Positive]))

    def set_aperture(self, aperture: t.Any):
        self.graph.set('aperture', self._convert('aperture', aperture, t.Annotated[float, NonNegative]))

    def set_probe_pos(self, probe_pos: t.Any):
        self.graph.set('probe_pos', self._convert(
            'probe_pos', probe_pos, t.Tuple[t.Annotated[float, Finite], t.Annotated[float, Finite]]
        ))

    def _to_aberration(self, val: t.Any) -> Aberration:
        if isinstance(val, Aberration):
            if not (math.isfinite(val.coeff.real) and math.isfinite(val.coeff.imag)):
                logger.warning(f"Ignoring invalid value for 'aberrations': {val!r}")
                raise InvalidInputError(f"Invalid value for 'aberrations': {val!r}", 'aberrations', val)
            return val
        return self._convert('aberrations', val, AberrationParams).to_aberration()

    def set_aberrations(self, aberrations: t.Iterable[t.Any]):
        """Replace the list of aberrations."""
        self.graph.set('aberrations', tuple(map(self._to_aberration, aberrations)))

    def update_aberration(self, i: int, *, mag: t.Any = None, angle: t.Any = None):
        """Update the magnitude [angstrom] and/or angle [degrees] of aberration `i`."""
        aberrations = list(self.graph.get('aberrations'))
        if not 0 <= i < len(aberrations):
            logger.warning(f"Ignoring update to nonexistent aberration {i}")
            raise InvalidInputError(f"No aberration at index {i}", 'aberrations', i)

        if mag is not None:
            mag = self._convert('mag', mag, t.Annotated[float, Finite])
        if angle is not None:
            angle = self._convert('angle', angle, t.Annotated[float, Finite])

        aberrations[i] = aberrations[i].with_polar(mag, angle)
        self.graph.set('aberrations', tuple(aberrations))

    def set_params(self, params: t.Union[SimulationParameters, t.Dict[str, t.Any]]):
        """
        Replace all simulation parameters at once.

        `debounce` is fixed when the simulation is created, and is ignored here.
        """
        if not isinstance(params, SimulationParameters):
            params = self._convert('params', params, SimulationParameters)

        with self.graph.batch() as g:
            g.set('kv', params.kv)
            g.set('max_angle', params.max_angle)
            g.set('shape', tuple(params.shape))
            g.set('aperture', params.aperture)
            g.set('aberrations', tuple(params.to_aberrations()))
            g.set('probe_pos', tuple(params.probe_pos))
            g.set('backend', params.backend)
            g.set('dtype', params.dtype)
            g.set('lattice_cap', params.lattice_cap)

    async def run(self) -> t.Dict[str, NDArray[numpy.floating]]:
        """Wait for all displayed quantities to be up to date, and return them (as numpy arrays)."""
        results = await asyncio.gather(*(self.graph.wait(name) for name in DISPLAY_NODES))
        return {name: to_numpy(val) for (name, val) in zip(DISPLAY_NODES, results)}

    def run_sync(self) -> t.Dict[str, NDArray[numpy.floating]]:
        return asyncio.run(self.run())


__all__ = [
    'Simulation', 'DISPLAY_NODES',
]
