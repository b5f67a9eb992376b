from __future__ import annotations

import evoview_logic as core
import evoview_rendering as rendering
from evoview_constants import (
    AGENT_SIZE_FRACTION,
    DEFAULT_FPS,
    DEFAULT_STRATEGY,
    RESOURCE_RADIUS_FRACTION,
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
)


def safe_print(*args, **kwargs) -> None:
    return core.safe_print(*args, **kwargs)


Strategy = core.Strategy
Agent = core.Agent
Resource = core.Resource
Snapshot = core.Snapshot
Engine = core.Engine
TrainingStatistics = core.TrainingStatistics
EventLog = core.EventLog
StrategyController = core.StrategyController
TrainingDriver = core.TrainingDriver
HarnessSession = core.HarnessSession
FrameLoop = core.FrameLoop
TerminalRenderer = core.TerminalRenderer
PygameRenderer = core.PygameRenderer

CanvasSurface = rendering.CanvasSurface
PrimitiveRenderer = rendering.PrimitiveRenderer
PygameCanvas = rendering.PygameCanvas
TerminalCanvas = rendering.TerminalCanvas

coerce_snapshot = core.coerce_snapshot
to_physical = core.to_physical
engine_factories_from = core.engine_factories_from
load_engine_factories = core.load_engine_factories
release_engine = core.release_engine
print_run_header = core.print_run_header
build_renderer = core.build_renderer
run_viewer = core.run_viewer
parse_args = core.parse_args

configure_surface = rendering.configure_surface
resolve_pixel_ratio = rendering.resolve_pixel_ratio
agent_vertices = rendering.agent_vertices
visible_log_lines = rendering.visible_log_lines


def run(argv: list[str] | None = None) -> None:
    core.main(argv)


if __name__ == "__main__":
    run()
