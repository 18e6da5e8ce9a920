"""
Incremental recomputation graph.

Nodes are either sources (externally set values), synchronous derived nodes
(recomputed lazily on read), or asynchronous derived nodes, which recompute in
the background after a debounce delay and serve their last resolved value while
a recomputation is pending.
"""

import asyncio
from contextlib import contextmanager
import inspect
import logging
import typing as t

from typing_extensions import Self

from .types import NotResolvedError

T = t.TypeVar('T')
logger = logging.getLogger(__name__)

NodeStatus: t.TypeAlias = t.Literal['resolved', 'error']


class NodeUpdate(t.NamedTuple):
    name: str
    status: NodeStatus
    version: int


class NodeSnapshot(t.NamedTuple):
    value: t.Any
    resolved: bool
    """Whether the node has ever resolved successfully"""
    stale: bool
    """Whether `value` is out of date with respect to the node's inputs"""
    error: t.Optional[BaseException]
    version: int


class Subscribable(t.Generic[T]):
    def __init__(self):
        self.subscribers: set[asyncio.Queue[T]] = set()

    async def subscribe(self) -> t.AsyncIterator[T]:
        connection: asyncio.Queue[T] = asyncio.Queue()
        self.subscribers.add(connection)
        try:
            while True:
                yield await connection.get()
        finally:  # called when the consumer is cancelled or closed
            self.subscribers.remove(connection)

    async def message_subscribers(self, msg: T):
        for subscriber in self.subscribers:
            await subscriber.put(msg)


def _running_loop() -> t.Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Debouncer:
    """
    Trailing-edge debounce: `callback` runs once `delay` seconds pass without another call to `trigger`.

    Must be triggered from inside a running event loop.
    """

    def __init__(self, delay: float, callback: t.Callable[[], t.Any]):
        if delay < 0.:
            raise ValueError(f"Debounce delay must be non-negative, instead got {delay}")
        self.delay: float = delay
        self.callback: t.Callable[[], t.Any] = callback
        self._handle: t.Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self):
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        self.callback()


class Node:
    def __init__(self, graph: 'Graph', name: str, deps: t.Sequence['Node'] = ()):
        self.graph: Graph = graph
        self.name: str = name
        self.deps: t.Tuple[Node, ...] = tuple(deps)
        self.dependents: t.List[Node] = []

        for dep in self.deps:
            dep.dependents.append(self)

    def get(self) -> t.Any:
        raise NotImplementedError()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Source(Node):
    def __init__(self, graph: 'Graph', name: str, value: t.Any):
        super().__init__(graph, name)
        self.value: t.Any = value

    def get(self) -> t.Any:
        return self.value

    def set(self, value: t.Any):
        self.value = value
        self.graph._invalidate(self)


class Derived(Node):
    """Synchronous derived node, recomputed on read after any of its inputs change."""

    def __init__(self, graph: 'Graph', name: str, fn: t.Callable[..., t.Any], deps: t.Sequence[Node]):
        for dep in deps:
            if isinstance(dep, AsyncDerived):
                raise TypeError(f"Synchronous node '{name}' can't depend on asynchronous node '{dep.name}'")
        super().__init__(graph, name, deps)
        self.fn: t.Callable[..., t.Any] = fn
        self.dirty: bool = True
        self._value: t.Any = None

    def get(self) -> t.Any:
        if self.dirty:
            self._value = self.fn(*(dep.get() for dep in self.deps))
            self.dirty = False
        return self._value

    def invalidate(self):
        self.dirty = True


class AsyncDerived(Node):
    """
    Asynchronous derived node.

    Each invalidation bumps `version`, cancels any in-flight recomputation, and restarts the
    debounce timer. Results are only accepted if they were computed for the latest version.
    """

    def __init__(self, graph: 'Graph', name: str, fn: t.Callable[..., t.Any], deps: t.Sequence[Node],
                 debounce: float):
        super().__init__(graph, name, deps)
        self.fn: t.Callable[..., t.Any] = fn

        self.version: int = 0
        self._resolved_version: int = -1
        self._value: t.Any = None
        self.resolved: bool = False
        self.error: t.Optional[BaseException] = None

        self._debouncer: Debouncer = Debouncer(debounce, self._start)
        self._task: t.Optional[asyncio.Task] = None
        self._loop: t.Optional[asyncio.AbstractEventLoop] = None
        self._event: t.Optional[asyncio.Event] = None
        self._scheduled: bool = False

    @property
    def fresh(self) -> bool:
        return self._resolved_version == self.version

    def get(self) -> t.Any:
        """
        Return the last resolved value, possibly stale. Schedules a recomputation if necessary.

        Raises `NotResolvedError` if the node has never resolved.
        """
        loop = _running_loop()
        if loop is not None:
            self._ensure_scheduled(loop)
        if not self.resolved:
            raise NotResolvedError(self.name)
        return self._value

    async def wait(self) -> t.Any:
        """Wait for and return the value for the latest version, or raise the error it failed with."""
        loop = asyncio.get_running_loop()
        while True:
            self._ensure_scheduled(loop)
            assert self._event is not None
            await self._event.wait()
            if self.fresh:
                if self.error is not None:
                    raise self.error
                return self._value

    def snapshot(self) -> NodeSnapshot:
        return NodeSnapshot(
            self._value, self.resolved,
            not self.fresh or self.error is not None,
            self.error, self.version
        )

    def invalidate(self):
        self.version += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._event is not None:
            self._event.clear()

        loop = _running_loop()
        if loop is not None and loop is self._loop:
            self._debouncer.trigger()
            self._scheduled = True
        else:
            # no loop to schedule on, defer until the next read
            self._debouncer.cancel()
            self._scheduled = False

    def _ensure_scheduled(self, loop: asyncio.AbstractEventLoop):
        if loop is not self._loop:
            self._loop = loop
            self._event = asyncio.Event()
            self._debouncer.cancel()
            self._task = None
            self._scheduled = False

        if self.fresh:
            self._event.set()  # type: ignore
        elif not self._scheduled:
            self._debouncer.trigger()
            self._scheduled = True

    def _start(self):
        assert self._loop is not None
        self._task = self._loop.create_task(self._recompute(self.version))

    async def _gather(self) -> t.List[t.Any]:
        args = []
        for dep in self.deps:
            if isinstance(dep, AsyncDerived):
                args.append(await dep.wait())
            else:
                args.append(dep.get())
        return args

    async def _recompute(self, version: int):
        logger.debug(f"Recomputing '{self.name}' (version {version})")
        try:
            args = await self._gather()
        except Exception as e:
            if version == self.version:
                logger.warning(f"Node '{self.name}' failed due to an upstream error: {e}")
                await self._finish(version, error=e)
            return

        try:
            result = self.fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            if version == self.version:
                logger.exception(f"Node '{self.name}' failed to compute")
                await self._finish(version, error=e)
            return

        if version != self.version:
            logger.debug(f"Discarding result for '{self.name}' (version {version}, latest {self.version})")
            return

        self._value = result
        self.resolved = True
        await self._finish(version)

    async def _finish(self, version: int, error: t.Optional[BaseException] = None):
        self.error = error
        self._resolved_version = version
        self._scheduled = False
        if self._event is not None:
            self._event.set()
        logger.debug(f"Finished '{self.name}' (version {version}): {'error' if error else 'resolved'}")
        await self.graph.message_subscribers(NodeUpdate(self.name, 'error' if error else 'resolved', version))


class Graph(Subscribable[NodeUpdate]):
    def __init__(self, debounce: float = 0.05):
        super().__init__()
        self.debounce: float = debounce
        self.nodes: t.Dict[str, Node] = {}

        self._batch_depth: int = 0
        self._pending: t.Dict[str, AsyncDerived] = {}

    def __getitem__(self, name: str) -> Node:
        return self.nodes[name]

    def __contains__(self, name: str) -> bool:
        return name in self.nodes

    def _add(self, node: Node) -> Node:
        self.nodes[node.name] = node
        return node

    def _check_name(self, name: str):
        if name in self.nodes:
            raise ValueError(f"Duplicate node name '{name}'")

    def _resolve_deps(self, deps: t.Sequence[t.Union[str, Node]]) -> t.List[Node]:
        nodes = []
        for dep in deps:
            if isinstance(dep, Node):
                nodes.append(dep)
                continue
            try:
                nodes.append(self.nodes[dep])
            except KeyError:
                raise ValueError(f"Unknown node '{dep}'") from None
        return nodes

    def source(self, name: str, value: t.Any) -> Source:
        self._check_name(name)
        return t.cast(Source, self._add(Source(self, name, value)))

    def derived(self, name: str, fn: t.Callable[..., t.Any], *deps: t.Union[str, Node]) -> Derived:
        self._check_name(name)
        return t.cast(Derived, self._add(Derived(self, name, fn, self._resolve_deps(deps))))

    def async_derived(self, name: str, fn: t.Callable[..., t.Any], *deps: t.Union[str, Node],
                      debounce: t.Optional[float] = None) -> AsyncDerived:
        self._check_name(name)
        return t.cast(AsyncDerived, self._add(AsyncDerived(
            self, name, fn, self._resolve_deps(deps),
            self.debounce if debounce is None else debounce
        )))

    def set(self, name: str, value: t.Any):
        node = self.nodes[name]
        if not isinstance(node, Source):
            raise TypeError(f"Node '{name}' is not a source")
        node.set(value)

    def get(self, name: str) -> t.Any:
        return self.nodes[name].get()

    async def wait(self, name: str) -> t.Any:
        node = self.nodes[name]
        if isinstance(node, AsyncDerived):
            return await node.wait()
        return node.get()

    def snapshot(self, name: str) -> NodeSnapshot:
        node = self.nodes[name]
        if isinstance(node, AsyncDerived):
            return node.snapshot()
        return NodeSnapshot(node.get(), True, False, None, 0)

    @contextmanager
    def batch(self) -> t.Iterator[Self]:
        """Apply several source writes at once, invalidating each asynchronous node only once."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                pending = list(self._pending.values())
                self._pending.clear()
                for node in pending:
                    node.invalidate()

    def _invalidate(self, source: Node):
        seen: t.Set[str] = set()
        stack = list(source.dependents)

        while stack:
            node = stack.pop()
            if node.name in seen:
                continue
            seen.add(node.name)

            if isinstance(node, Derived):
                node.invalidate()
            elif isinstance(node, AsyncDerived):
                if self._batch_depth > 0:
                    self._pending[node.name] = node
                else:
                    node.invalidate()
            stack.extend(node.dependents)


__all__ = [
    'Graph', 'Node', 'Source', 'Derived', 'AsyncDerived',
    'Debouncer', 'Subscribable', 'NodeUpdate', 'NodeSnapshot',
]
