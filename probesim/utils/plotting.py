import typing as t

import numpy
from numpy.typing import NDArray
import matplotlib
from matplotlib.colors import Colormap, Normalize

from .num import get_array_module, to_numpy


ColormapLike: t.TypeAlias = t.Union[str, Colormap]


def apply_colormap(
    data: NDArray[numpy.floating], cmap: t.Optional[ColormapLike] = None, *,
    vmin: t.Optional[float] = None, vmax: t.Optional[float] = None,
) -> NDArray[numpy.uint8]:
    """
    Map a real 2D array to RGBA colors (as `uint8`), normalizing to `[vmin, vmax]`.

    `vmin` and `vmax` default to the range of the data, ignoring NaNs. NaN values map to the colormap's 'bad' color.
    """
    xp = get_array_module(data)

    vmin = vmin if vmin is not None else float(xp.nanmin(data))
    vmax = vmax if vmax is not None else float(xp.nanmax(data))
    if not vmax > vmin:
        # constant image
        vmax = vmin + 1.

    norm = Normalize(vmin, vmax, clip=True)
    cmap = matplotlib.colormaps.get_cmap(cmap)

    return cmap(norm(to_numpy(data)), bytes=True)


__all__ = [
    'apply_colormap',
]
