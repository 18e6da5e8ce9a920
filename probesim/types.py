from dataclasses import dataclass
import math
import typing as t

import pane
from pane.converters import Converter, make_converter, ConverterHandlers, ErrorNode
from pane.annotations import ConvertAnnotation
from pane.errors import ParseInterrupt, WrongTypeError
from pane.util import pluralize


BackendName: t.TypeAlias = t.Literal['cuda', 'cupy', 'jax', 'cpu', 'numpy']


class ConfigurationError(ValueError):
    """Requested configuration isn't supported (e.g. an unknown element)."""

    def __init__(self, msg: str, value: t.Any = None):
        super().__init__(msg)
        self.value: t.Any = value


class DegenerateConfigurationError(ValueError):
    """Parameters are valid individually, but produce a degenerate computation (e.g. an empty aperture)."""


class InvalidInputError(ValueError):
    """A user-supplied parameter value was rejected. Previous state is retained."""

    def __init__(self, msg: str, field: str, value: t.Any = None):
        super().__init__(msg)
        self.field: str = field
        self.value: t.Any = value


class NotResolvedError(LookupError):
    """An asynchronous node was read before it ever finished computing."""

    def __init__(self, name: str):
        super().__init__(f"Node '{name}' has not been computed yet")
        self.name: str = name


class Dataclass(pane.PaneBase, kw_only=True, allow_extra=False):
    ...


@dataclass(init=False, frozen=True)
class InRange(ConvertAnnotation):
    """
    Restrict a number to an open or closed range.

    `gt`/`ge` give the lower bound (exclusive/inclusive), `lt`/`le` the upper bound.
    Non-finite values are always rejected.
    """
    gt: t.Optional[float] = None
    ge: t.Optional[float] = None
    lt: t.Optional[float] = None
    le: t.Optional[float] = None

    def __init__(self, *,
                 gt: t.Optional[float] = None, ge: t.Optional[float] = None,
                 lt: t.Optional[float] = None, le: t.Optional[float] = None):
        if gt is not None and ge is not None:
            raise TypeError("'gt' and 'ge' cannot both be specified")
        if lt is not None and le is not None:
            raise TypeError("'lt' and 'le' cannot both be specified")
        object.__setattr__(self, 'gt', gt)
        object.__setattr__(self, 'ge', ge)
        object.__setattr__(self, 'lt', lt)
        object.__setattr__(self, 'le', le)

    def _converter(self, inner_type: t.Any, *,
                   handlers: ConverterHandlers):
        return _RangeConverter(inner_type, handlers, self)

    def describe(self) -> str:
        conds = []
        if self.gt is not None:
            conds.append(f"> {self.gt}")
        if self.ge is not None:
            conds.append(f">= {self.ge}")
        if self.lt is not None:
            conds.append(f"< {self.lt}")
        if self.le is not None:
            conds.append(f"<= {self.le}")
        return " and ".join(conds)

    def check(self, val: float) -> bool:
        if not math.isfinite(val):
            return False
        return (
            (self.gt is None or val > self.gt) and
            (self.ge is None or val >= self.ge) and
            (self.lt is None or val < self.lt) and
            (self.le is None or val <= self.le)
        )


Positive = InRange(gt=0.)
NonNegative = InRange(ge=0.)


class _RangeConverter(Converter[t.Any]):
    def __init__(self, inner_type: t.Any, handlers: ConverterHandlers, range: InRange):
        self.inner = make_converter(inner_type, handlers)
        self.range = range

    def expected(self, plural: bool = False) -> str:
        cond = self.range.describe()
        if not cond:
            return f"finite {pluralize('number', plural)}"
        return f"{pluralize('number', plural)} {cond}"

    def into_data(self, val: t.Any) -> t.Any:
        return self.inner.into_data(val)

    def try_convert(self, val: t.Any) -> t.Any:
        v = self.inner.try_convert(val)
        if not self.range.check(float(v)):
            raise ParseInterrupt()
        return v

    def collect_errors(self, val: t.Any) -> t.Optional[ErrorNode]:
        try:
            v = self.inner.try_convert(val)
        except ParseInterrupt:
            return self.inner.collect_errors(val)
        if not self.range.check(float(v)):
            return WrongTypeError(self.expected(), val)
        return None


__all__ = [
    'BackendName', 'Dataclass', 'InRange', 'Positive', 'NonNegative',
    'ConfigurationError', 'DegenerateConfigurationError',
    'InvalidInputError', 'NotResolvedError',
]
