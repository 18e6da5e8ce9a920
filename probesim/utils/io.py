import logging
from pathlib import Path
import typing as t

import numpy
from numpy.typing import NDArray
from matplotlib import pyplot
import tifffile

from .num import Sampling, to_numpy
from .plotting import apply_colormap, ColormapLike

logger = logging.getLogger(__name__)

OutputFormat: t.TypeAlias = t.Literal['npy', 'tiff', 'png']

REAL_OUTPUTS: t.FrozenSet[str] = frozenset(('probe_real_intensity', 'object_phase'))
RECIP_OUTPUTS: t.FrozenSet[str] = frozenset(('probe_recip_intensity', 'pattern_intensity'))


def tiff_write_opts(
    sampling: Sampling, *,
    unit: t.Literal['angstrom'] = 'angstrom',  # other units not yet supported
) -> t.Dict[str, t.Any]:
    corner = sampling.corner

    return {
        # 1/angstrom -> 1/cm
        'resolution': tuple(float(1e8/s) for s in reversed(sampling.sampling)),
        'resolutionunit': 'CENTIMETER',
        'metadata': {
            'axes': 'YX',
            'PhysicalSizeX': float(sampling.sampling[1]),
            'PhysicalSizeXUnit': unit,
            'PhysicalSizeY': float(sampling.sampling[0]),
            'PhysicalSizeYUnit': unit,
            'Plane': {
                'PositionX': [float(corner[1])],
                'PositionXUnit': [unit],
                'PositionY': [float(corner[0])],
                'PositionYUnit': [unit],
            }
        }
    }


def tiff_write_opts_recip(
    sampling: Sampling, *,
    unit: t.Literal['1/angstrom'] = '1/angstrom',  # other units not yet supported
) -> t.Dict[str, t.Any]:
    return {
        'metadata': {
            'axes': 'YX',
            'PhysicalSizeX': float(1/sampling.extent[1]),
            'PhysicalSizeXUnit': unit,
            'PhysicalSizeY': float(1/sampling.extent[0]),
            'PhysicalSizeYUnit': unit,
        }
    }


def write_tiff(path: t.Union[str, Path], data: NDArray[numpy.floating], sampling: Sampling, recip: bool = False):
    opts = tiff_write_opts_recip(sampling) if recip else tiff_write_opts(sampling)
    with tifffile.TiffWriter(path, ome=True) as w:
        w.write(to_numpy(data).astype(numpy.float32), **opts)


def write_png(path: t.Union[str, Path], data: NDArray[numpy.floating], cmap: t.Optional[ColormapLike] = None):
    pyplot.imsave(path, apply_colormap(data, cmap))


def save_outputs(
    results: t.Mapping[str, NDArray[numpy.floating]], sampling: Sampling, out_dir: t.Union[str, Path], *,
    log: bool = False,
    formats: t.Iterable[OutputFormat] = ('npy', 'tiff', 'png'),
    cmap: t.Optional[ColormapLike] = 'magma',
) -> t.List[Path]:
    """
    Write simulation outputs to `out_dir`, one file per quantity and format.

    If `log` is specified, the diffraction pattern is `log1p`-scaled before writing.
    Returns the list of written files.
    """
    out_dir = Path(out_dir).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)
    formats = tuple(formats)

    written = []
    for (name, data) in results.items():
        if name not in REAL_OUTPUTS and name not in RECIP_OUTPUTS:
            raise ValueError(f"Unknown output '{name}'")

        data = to_numpy(data)
        if log and name == 'pattern_intensity':
            data = numpy.log1p(data)

        for fmt in formats:
            path = out_dir / f"{name}.{fmt}"
            if fmt == 'npy':
                numpy.save(path, data)
            elif fmt == 'tiff':
                write_tiff(path, data, sampling, recip=name in RECIP_OUTPUTS)
            elif fmt == 'png':
                write_png(path, data, cmap)
            else:
                raise ValueError(f"Unknown output format '{fmt}'")
            logger.info(f"Wrote '{path}'")
            written.append(path)

    return written


__all__ = [
    'tiff_write_opts', 'tiff_write_opts_recip',
    'write_tiff', 'write_png', 'save_outputs',
]
