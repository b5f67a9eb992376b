from __future__ import annotations

import argparse
import functools
import importlib
import signal
import statistics
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from evoview_constants import (
    ACTION_RESET,
    ACTION_TRAIN_ONCE,
    ACTION_TRAIN_X10,
    ACTION_TRAIN_X100,
    AGENT_SIZE_FRACTION,
    BULK_TRAIN_COUNTS,
    CONTROLS_HINT,
    DEFAULT_FPS,
    DEFAULT_STRATEGY,
    RESOURCE_RADIUS_FRACTION,
    STRATEGY_ACTION_PREFIX,
    TERMINAL_FPS,
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
)
from evoview_rendering import (
    PrimitiveRenderer,
    PygameRenderer as _PygameRenderer,
    TerminalRenderer as _TerminalRenderer,
    build_renderer as _build_renderer,
    resolve_pixel_ratio,
    safe_print,
)

if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_DFL)


TerminalRenderer = _TerminalRenderer
PygameRenderer = _PygameRenderer


def build_renderer(
    renderer_mode: str,
    fps: float,
    width: int = VIEWPORT_WIDTH,
    height: int = VIEWPORT_HEIGHT,
    pixel_ratio: float = 1.0,
    fullscreen: bool = False,
) -> TerminalRenderer | PygameRenderer | None:
    return _build_renderer(
        renderer_mode,
        fps=fps,
        width=width,
        height=height,
        pixel_ratio=pixel_ratio,
        fullscreen=fullscreen,
        strategy_names=[strategy.value for strategy in Strategy],
    )


class Strategy(str, Enum):
    ROULETTE_WHEEL = "roulettewheel"
    RANK = "rank"

    @classmethod
    def parse(cls, value: "Strategy | str") -> "Strategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as error:
            valid = ", ".join(strategy.value for strategy in cls)
            raise ValueError(f"Unknown strategy {value!r}; available: {valid}") from error


# ---------------------------------------------------------------------------
# World snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Agent:
    x: float
    y: float
    heading: float


@dataclass(frozen=True)
class Resource:
    x: float
    y: float


@dataclass(frozen=True)
class Snapshot:
    agents: tuple[Agent, ...] = ()
    resources: tuple[Resource, ...] = ()


def _read(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    raise ValueError(f"World entry has none of {', '.join(names)}: {item!r}")


def coerce_snapshot(raw: Any) -> Snapshot:
    """Turn whatever ``Engine.world()`` returned into an immutable ``Snapshot``.

    Bridged engines hand back ``{"animals": [...], "foods": [...]}`` with a
    ``rotation`` per animal; native ones may use ``agents``/``resources`` and
    ``heading``. Objects exposing the same names as attributes work too.
    """
    if isinstance(raw, Snapshot):
        return raw

    agents = tuple(
        Agent(
            x=float(_read(item, "x")),
            y=float(_read(item, "y")),
            heading=float(_read(item, "heading", "rotation")),
        )
        for item in _read(raw, "agents", "animals")
    )
    resources = tuple(
        Resource(x=float(_read(item, "x")), y=float(_read(item, "y")))
        for item in _read(raw, "resources", "foods")
    )
    return Snapshot(agents=agents, resources=resources)


def to_physical(x: float, y: float, width: float, height: float) -> tuple[float, float]:
    return x * width, y * height


# ---------------------------------------------------------------------------
# Engine handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrainingStatistics:
    """Per-iteration fitness summary an engine may return from ``train()``.

    Engines that only hold raw fitness values build one with
    ``from_fitnesses``; the viewer logs it through ``summary()``.
    """

    min_fitness: float
    max_fitness: float
    avg_fitness: float
    median_fitness: float

    @classmethod
    def from_fitnesses(cls, fitnesses: Iterable[float]) -> "TrainingStatistics":
        values = [float(value) for value in fitnesses]
        if not values:
            raise ValueError("Cannot summarise an empty population")
        return cls(
            min_fitness=min(values),
            max_fitness=max(values),
            avg_fitness=statistics.fmean(values),
            median_fitness=statistics.median(values),
        )

    def summary(self) -> str:
        return (
            f"min={self.min_fitness:.2f}, max={self.max_fitness:.2f}, "
            f"avg={self.avg_fitness:.2f} median={self.median_fitness:.2f}"
        )


@runtime_checkable
class Engine(Protocol):
    def world(self) -> Any: ...

    def step(self) -> None: ...

    def train(self) -> str | TrainingStatistics: ...


EngineFactory = Callable[[], Engine]


def engine_factories_from(source: Any) -> dict[Strategy, EngineFactory]:
    """Accept ``{strategy name: constructor}`` or ``factory(strategy_name)``."""
    if isinstance(source, Mapping):
        factories = {Strategy.parse(name): factory for name, factory in source.items()}
        missing = [strategy.value for strategy in Strategy if strategy not in factories]
        if missing:
            raise ValueError(f"Engine mapping has no constructor for: {', '.join(missing)}")
        return factories
    if callable(source):
        return {strategy: functools.partial(source, strategy.value) for strategy in Strategy}
    raise ValueError(f"Engine source must be a mapping or a callable, got {type(source).__name__}")


def load_engine_factories(target: str) -> dict[Strategy, EngineFactory]:
    module_name, separator, attribute = target.partition(":")
    if not separator or not module_name or not attribute:
        raise ValueError(f"Expected engine as package.module:attribute, got: {target}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as error:
        raise ValueError(f"Cannot import engine module {module_name!r}: {error}") from error
    try:
        source = functools.reduce(getattr, attribute.split("."), module)
    except AttributeError as error:
        raise ValueError(f"Module {module_name!r} has no attribute {attribute!r}") from error
    return engine_factories_from(source)


def release_engine(engine: Any) -> None:
    for name in ("free", "close"):
        method = getattr(engine, name, None)
        if callable(method):
            method()
            return


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class EventLog:
    """Append-only sequence of log entries visible in the UI."""

    def __init__(self) -> None:
        self._entries: list[str] = []
        self._listeners: list[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def append(self, entry: str) -> None:
        text = str(entry)
        self._entries.append(text)
        for listener in self._listeners:
            listener(text)

    @property
    def entries(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def tail(self, count: int) -> list[str]:
        if count <= 0:
            return []
        return self._entries[-count:]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(tuple(self._entries))


class StrategyController:
    def __init__(
        self,
        factories: Mapping[Strategy | str, EngineFactory],
        log: EventLog,
        initial: Strategy | str = DEFAULT_STRATEGY,
    ):
        self._factories = engine_factories_from(factories)
        self.log = log
        self._strategy = Strategy.parse(initial)
        self._engine = self._factories[self._strategy]()

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    def _replace(self, strategy: Strategy) -> Engine:
        engine = self._factories[strategy]()
        previous = self._engine
        self._engine = engine
        self._strategy = strategy
        release_engine(previous)
        return engine

    def select_strategy(self, name: Strategy | str) -> Engine:
        strategy = Strategy.parse(name)
        engine = self._replace(strategy)
        self.log.append(f"Switched to strategy: {strategy.value}")
        return engine

    def reset(self) -> Engine:
        engine = self._replace(self._strategy)
        self.log.append(f"Reset simulation (strategy: {self._strategy.value})")
        return engine


class TrainingDriver:
    def __init__(self, controller: StrategyController, log: EventLog):
        self.controller = controller
        self.log = log

    def train_once(self) -> str:
        result = self.controller.engine.train()
        summary = result.summary() if isinstance(result, TrainingStatistics) else str(result)
        self.log.append(summary)
        return summary

    def train_bulk(self, count: int) -> list[str]:
        if count < 0:
            raise ValueError(f"Training iterations must be non-negative, got {count}")
        return [self.train_once() for _ in range(count)]


BULK_ACTIONS = dict(zip((ACTION_TRAIN_X10, ACTION_TRAIN_X100), BULK_TRAIN_COUNTS))


class HarnessSession:
    def __init__(
        self,
        factories: Mapping[Strategy | str, EngineFactory],
        initial_strategy: Strategy | str = DEFAULT_STRATEGY,
        log: EventLog | None = None,
    ):
        self.log = log if log is not None else EventLog()
        self.controller = StrategyController(factories, self.log, initial=initial_strategy)
        self.trainer = TrainingDriver(self.controller, self.log)

    def handle_action(self, action: str) -> None:
        if action == ACTION_TRAIN_ONCE:
            self.trainer.train_once()
        elif action in BULK_ACTIONS:
            self.trainer.train_bulk(BULK_ACTIONS[action])
        elif action == ACTION_RESET:
            self.controller.reset()
        elif action.startswith(STRATEGY_ACTION_PREFIX):
            self.controller.select_strategy(action[len(STRATEGY_ACTION_PREFIX) :])
        else:
            raise ValueError(f"Unsupported action: {action}")


# ---------------------------------------------------------------------------
# Frame loop
# ---------------------------------------------------------------------------


class FrameLoop:
    def __init__(self, controller: StrategyController, renderer: PrimitiveRenderer):
        self.controller = controller
        self.renderer = renderer
        self.frames = 0

    def tick(self) -> Snapshot:
        # One handle per frame, so a swap only lands between frames.
        engine = self.controller.engine
        context = self.renderer.context

        self.renderer.clear()
        snapshot = coerce_snapshot(engine.world())
        engine.step()

        width, height = context.width, context.height
        agent_size = AGENT_SIZE_FRACTION * width
        resource_radius = RESOURCE_RADIUS_FRACTION * width

        for agent in snapshot.agents:
            x, y = to_physical(agent.x, agent.y, width, height)
            self.renderer.draw_agent(x, y, agent_size, agent.heading)

        for resource in snapshot.resources:
            x, y = to_physical(resource.x, resource.y, width, height)
            self.renderer.draw_resource(x, y, resource_radius)

        self.frames += 1
        return snapshot

    def run(self, host, session: HarnessSession) -> int:
        """Drive frames until the host asks to stop; user actions run between frames."""
        start = self.frames
        while not host.should_stop():
            host.poll_events()
            for action in host.consume_actions():
                session.handle_action(action)
            host.set_active_strategy(self.controller.strategy.value)
            self.tick()
            host.present(session.log.entries)
            host.wait_for_next_frame()
        return self.frames - start


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def print_run_header(mode_label: str, strategy: Strategy | str) -> None:
    name = Strategy.parse(strategy).value
    safe_print("=" * 64)
    safe_print(f"evoview | Renderer: {mode_label} | Strategy: {name}")
    safe_print(f"Controls: {CONTROLS_HINT}")
    safe_print("=" * 64)


def _pretrain(session: HarnessSession, count: int) -> None:
    if count > 0:
        safe_print(f"Pre-training {count} iterations...")
        session.trainer.train_bulk(count)


def run_viewer(
    factories: Mapping[Strategy | str, EngineFactory],
    strategy: Strategy | str = DEFAULT_STRATEGY,
    renderer_mode: str = "pygame",
    fps: float = DEFAULT_FPS,
    pixel_ratio: float | None = None,
    width: int = VIEWPORT_WIDTH,
    height: int = VIEWPORT_HEIGHT,
    pretrain: int = 0,
    fullscreen: bool = False,
) -> EventLog:
    session = HarnessSession(factories, initial_strategy=strategy)
    # The terminal renderer redraws the whole screen, so it shows the log itself.
    if renderer_mode != "terminal":
        session.log.subscribe(lambda entry: safe_print(f"[log] {entry}"))

    try:
        renderer = build_renderer(
            renderer_mode,
            fps=fps,
            width=width,
            height=height,
            pixel_ratio=resolve_pixel_ratio(pixel_ratio),
            fullscreen=fullscreen,
        )
    except RuntimeError as error:
        raise SystemExit(str(error)) from error

    print_run_header(renderer_mode, session.controller.strategy)
    if renderer is None:
        _pretrain(session, pretrain)
        safe_print(f"Done: {len(session.log)} log entries.")
        return session.log

    loop = FrameLoop(session.controller, renderer.renderer)
    try:
        _pretrain(session, pretrain)
        loop.run(renderer, session)
    except KeyboardInterrupt:
        safe_print("\nViewer interrupted.")
    finally:
        renderer.close()
    return session.log


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live viewer and training console for evolutionary simulations.")
    parser.add_argument(
        "--engine",
        required=True,
        help="Engine constructors as package.module:attribute (mapping of strategy name to constructor, or factory(name)).",
    )
    parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in Strategy],
        default=DEFAULT_STRATEGY,
        help=f"Strategy variant to start with (default: {DEFAULT_STRATEGY}).",
    )
    parser.add_argument(
        "--renderer",
        choices=["none", "terminal", "pygame"],
        default="pygame",
        help="Renderer to use: none (train only), terminal, or pygame (default: pygame).",
    )
    parser.add_argument(
        "--fps",
        type=float,
        default=None,
        help=f"Frame cap (default: {DEFAULT_FPS:g} for pygame, {TERMINAL_FPS:g} for terminal).",
    )
    parser.add_argument(
        "--pixel-ratio",
        type=float,
        default=None,
        help="Physical pixels per logical pixel (default: $EVOVIEW_PIXEL_RATIO or 1.0).",
    )
    parser.add_argument("--width", type=int, default=VIEWPORT_WIDTH, help=f"Viewport width (default: {VIEWPORT_WIDTH}).")
    parser.add_argument("--height", type=int, default=VIEWPORT_HEIGHT, help=f"Viewport height (default: {VIEWPORT_HEIGHT}).")
    parser.add_argument(
        "--train",
        type=int,
        default=0,
        help="Training iterations to run before the viewer opens (default: 0).",
    )
    parser.add_argument("--fullscreen", action="store_true", help="Start pygame renderer in fullscreen mode.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        factories = load_engine_factories(args.engine)
    except ValueError as error:
        raise SystemExit(str(error)) from error

    fps = args.fps
    if fps is None:
        fps = TERMINAL_FPS if args.renderer == "terminal" else DEFAULT_FPS

    run_viewer(
        factories,
        strategy=args.strategy,
        renderer_mode=args.renderer,
        fps=fps,
        pixel_ratio=args.pixel_ratio,
        width=max(1, args.width),
        height=max(1, args.height),
        pretrain=max(0, args.train),
        fullscreen=args.fullscreen,
    )


if __name__ == "__main__":
    main()
