"""Physical constants & electron optics"""

from dataclasses import dataclass
import math

from typing_extensions import Self


class _Constants():
    e_rest_energy: float = 5.1099906e5
    """Electron rest energy [eV] or mass [eV/c^2]."""

    hc: float = 1.23984244e4
    """Planck's constant * speed of light [eV-angstrom]"""


C: _Constants = _Constants()


@dataclass(frozen=True)
class Electron:
    energy: float
    """Electron kinetic energy [eV]. Must be positive (checked by `from_kv`, not here)."""

    @classmethod
    def from_kv(cls, kv: float) -> Self:
        """Create an electron accelerated through `kv` kilovolts."""
        if not (math.isfinite(kv) and kv > 0.):
            raise ValueError(f"Accelerating voltage must be positive, instead got {kv} kV")
        return cls(kv * 1e3)

    @property
    def rest_energy(self) -> float:
        """Electron rest energy (m_0c^2) [eV]."""
        return C.e_rest_energy

    @property
    def total_energy(self) -> float:
        """Total electron energy (mc^2) [eV]."""
        return self.energy + C.e_rest_energy

    @property
    def momentum(self) -> float:
        """Electron momentum `pc` [eV]."""
        return math.sqrt(self.energy * (2*C.e_rest_energy + self.energy))

    @property
    def wavelength(self) -> float:
        """Electron wavelength [angstrom]."""
        return C.hc / self.momentum

    @property
    def gamma(self) -> float:
        """Electron Lorentz factor (gamma) [unitless]."""
        return self.energy / C.e_rest_energy + 1.

    @property
    def interaction_param(self) -> float:
        """Electron interaction parameter (sigma) [radians/V-angstrom]"""
        m0_h2 = (C.e_rest_energy / C.hc**2)  # RM/h^2 = RE/(hc)^2 [1/(eV angstrom^2)]
        return 2*math.pi * self.wavelength * (self.gamma * m0_h2)

    def detector_sampling(self, max_angle: float) -> float:
        """
        Real-space sampling [angstrom] required to reach a maximum
        collection angle of `max_angle` (in mrad) at the edge of reciprocal space.
        """
        if not (math.isfinite(max_angle) and max_angle > 0.):
            raise ValueError(f"Max collection angle must be positive, instead got {max_angle} mrad")
        return self.wavelength / (2. * max_angle * 1e-3)


__all__ = [
    'C', 'Electron',
]
