import typing as t

from .types import Dataclass, BackendName, InRange, Positive, NonNegative
from .utils.optics import Aberration


Finite = InRange()
Order = InRange(ge=0)

DTypeName: t.TypeAlias = t.Literal['float32', 'float64']


class CartesianAberration(Dataclass, kw_only=True):
    n: t.Annotated[int, Order]
    m: t.Annotated[int, Order]
    real: t.Annotated[float, Finite] = 0.
    """Real part of coefficient [angstrom] (multiplies cos(m phi))"""
    imag: t.Annotated[float, Finite] = 0.
    """Imaginary part of coefficient [angstrom] (multiplies sin(m phi))"""
    name: t.Optional[str] = None

    def to_aberration(self) -> Aberration:
        return Aberration(self.n, self.m, complex(self.real, self.imag), self.name)


class PolarAberration(Dataclass, kw_only=True):
    n: t.Annotated[int, Order]
    m: t.Annotated[int, Order]
    mag: t.Annotated[float, Finite]
    """Coefficient magnitude [angstrom]"""
    angle: t.Annotated[float, Finite] = 0.
    """Coefficient angle [degrees]"""
    name: t.Optional[str] = None

    def to_aberration(self) -> Aberration:
        return Aberration.from_polar(self.n, self.m, self.mag, self.angle, self.name)


AberrationParams: t.TypeAlias = t.Union[CartesianAberration, PolarAberration]


def aberration_params(ab: Aberration) -> CartesianAberration:
    return CartesianAberration(n=ab.n, m=ab.m, real=ab.coeff.real, imag=ab.coeff.imag, name=ab.name)


DEFAULT_ABERRATIONS: t.Tuple[AberrationParams, ...] = (
    CartesianAberration(n=1, m=0, real=1000., name='Defocus'),
    CartesianAberration(n=1, m=2, name='Astigmatism'),
    CartesianAberration(n=2, m=1, name='Coma'),
    CartesianAberration(n=3, m=0, name='Spherical'),
)


class SimulationParameters(Dataclass, kw_only=True):
    kv: t.Annotated[float, Positive] = 200.
    """Accelerating voltage [kV]"""
    max_angle: t.Annotated[float, Positive] = 50.
    """Maximum collection angle at the edge of the detector [mrad]"""
    shape: t.Tuple[t.Annotated[int, Positive], t.Annotated[int, Positive]] = (256, 256)
    """Simulation shape (n_y, n_x)"""
    aperture: t.Annotated[float, NonNegative] = 15.
    """Probe-forming aperture semi-angle [mrad]"""
    aberrations: t.Tuple[AberrationParams, ...] = DEFAULT_ABERRATIONS
    probe_pos: t.Tuple[t.Annotated[float, Finite], t.Annotated[float, Finite]] = (0., 0.)
    """Probe scan position (x, y) [angstrom]"""

    backend: t.Optional[BackendName] = None
    dtype: DTypeName = 'float32'
    debounce: t.Annotated[float, NonNegative] = 0.05
    """Delay before recomputing after a parameter change [s]"""
    lattice_cap: t.Annotated[float, Positive] = 50.
    """Maximum size of the simulated crystal along each axis [angstrom]"""

    def to_aberrations(self) -> t.List[Aberration]:
        return [ab.to_aberration() for ab in self.aberrations]


__all__ = [
    'CartesianAberration', 'PolarAberration', 'AberrationParams', 'aberration_params',
    'DEFAULT_ABERRATIONS', 'SimulationParameters',
]
