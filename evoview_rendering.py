from __future__ import annotations

import math
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from evoview_constants import (
    ACTION_RESET,
    ACTION_TRAIN_ONCE,
    ACTION_TRAIN_X10,
    ACTION_TRAIN_X100,
    AGENT_BASE_SCALE,
    AGENT_COLOR,
    BACKGROUND_COLOR,
    CONTROLS_HINT,
    CULL_MARGIN_FACTOR,
    DEFAULT_PIXEL_RATIO,
    LOG_PANEL_HEIGHT,
    PIXEL_RATIO_ENV_VAR,
    RESOURCE_COLOR,
    SIDEBAR_WIDTH,
    STRATEGY_ACTION_PREFIX,
    TERMINAL_COLUMNS,
    TERMINAL_LOG_LINES,
    TERMINAL_ROWS,
    VIEWPORT_COLOR,
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
)

Color = tuple[int, int, int]
Point = tuple[float, float]


def safe_print(*args, **kwargs) -> None:
    try:
        print(*args, **kwargs)
    except BrokenPipeError:
        raise SystemExit(0)


def _require_pygame():
    try:
        import pygame
    except ImportError as error:
        raise RuntimeError(
            "pygame is required for GUI rendering. Install it with: pip install pygame"
        ) from error
    return pygame


# ---------------------------------------------------------------------------
# Surface adapter
# ---------------------------------------------------------------------------


@dataclass
class CanvasSurface:
    """Drawing surface with a backing buffer size and a displayed size.

    ``width``/``height`` are the backing buffer in physical pixels, the
    ``display_*`` pair is the layout size the host shows it at. Until
    :func:`configure_surface` runs both pairs hold the logical size.
    """

    width: int
    height: int
    display_width: int = 0
    display_height: int = 0
    pixel_ratio: float = DEFAULT_PIXEL_RATIO
    configured: bool = False

    def __post_init__(self) -> None:
        if not self.display_width:
            self.display_width = self.width
        if not self.display_height:
            self.display_height = self.height

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def display_size(self) -> tuple[int, int]:
        return self.display_width, self.display_height


def _parse_pixel_ratio(raw: object) -> float:
    try:
        ratio = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_PIXEL_RATIO
    if not math.isfinite(ratio) or ratio < 1.0:
        return DEFAULT_PIXEL_RATIO
    return ratio


def resolve_pixel_ratio(explicit: float | str | None = None, environ: Mapping[str, str] | None = None) -> float:
    """Pick the device pixel ratio: explicit value, then environment, then 1.0."""
    if explicit is not None:
        return _parse_pixel_ratio(explicit)
    env = os.environ if environ is None else environ
    raw = env.get(PIXEL_RATIO_ENV_VAR)
    if raw is None or not raw.strip():
        return DEFAULT_PIXEL_RATIO
    return _parse_pixel_ratio(raw)


def configure_surface(surface: CanvasSurface, pixel_ratio: float | None = None) -> CanvasSurface:
    if surface.configured:
        raise RuntimeError("Surface is already configured; the backing buffer is sized once at startup.")

    ratio = _parse_pixel_ratio(pixel_ratio) if pixel_ratio is not None else DEFAULT_PIXEL_RATIO
    logical_width, logical_height = surface.width, surface.height

    surface.width = int(round(logical_width * ratio))
    surface.height = int(round(logical_height * ratio))
    surface.display_width = logical_width
    surface.display_height = logical_height
    surface.pixel_ratio = ratio
    surface.configured = True
    return surface


# ---------------------------------------------------------------------------
# Drawing contexts
# ---------------------------------------------------------------------------


class DrawingContext(Protocol):
    width: int
    height: int

    def clear(self) -> None: ...

    def fill_polygon(self, points: Sequence[Point], color: Color) -> None: ...

    def fill_circle(self, center: Point, radius: float, color: Color) -> None: ...


class PygameCanvas:
    def __init__(self, target, background: Color = VIEWPORT_COLOR):
        self.pygame = _require_pygame()
        self.target = target
        self.background = background

    @property
    def width(self) -> int:
        return self.target.get_width()

    @property
    def height(self) -> int:
        return self.target.get_height()

    def clear(self) -> None:
        self.target.fill(self.background)

    def fill_polygon(self, points: Sequence[Point], color: Color) -> None:
        self.pygame.draw.polygon(self.target, color, list(points))

    def fill_circle(self, center: Point, radius: float, color: Color) -> None:
        self.pygame.draw.circle(self.target, color, center, radius)


def _inside_convex(px: float, py: float, points: Sequence[Point]) -> bool:
    sign = 0
    count = len(points)
    for idx in range(count):
        ax, ay = points[idx]
        bx, by = points[(idx + 1) % count]
        cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
        if cross == 0:
            continue
        current = 1 if cross > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return True


class TerminalCanvas:
    """Character-grid rasteriser sharing the pixel coordinate space of the viewport."""

    def __init__(
        self,
        width: int,
        height: int,
        columns: int = TERMINAL_COLUMNS,
        rows: int = TERMINAL_ROWS,
        glyphs: Mapping[Color, str] | None = None,
    ):
        self.width = width
        self.height = height
        self.columns = max(1, columns)
        self.rows = max(1, rows)
        self.glyphs = dict(glyphs) if glyphs is not None else {AGENT_COLOR: "^", RESOURCE_COLOR: "o"}
        self.cells: list[list[str]] = []
        self.clear()

    def clear(self) -> None:
        self.cells = [[" "] * self.columns for _ in range(self.rows)]

    def _cell_for(self, x: float, y: float) -> tuple[int, int]:
        col = int(x * self.columns / self.width)
        row = int(y * self.rows / self.height)
        return min(self.columns - 1, max(0, col)), min(self.rows - 1, max(0, row))

    def _cell_center(self, col: int, row: int) -> Point:
        return (col + 0.5) * self.width / self.columns, (row + 0.5) * self.height / self.rows

    def _fill_cells(self, bounds: tuple[float, float, float, float], hit, fallback: Point, glyph: str) -> None:
        min_col, min_row = self._cell_for(bounds[0], bounds[1])
        max_col, max_row = self._cell_for(bounds[2], bounds[3])
        filled = False
        for row in range(min_row, max_row + 1):
            for col in range(min_col, max_col + 1):
                cx, cy = self._cell_center(col, row)
                if hit(cx, cy):
                    self.cells[row][col] = glyph
                    filled = True
        # Glyphs smaller than a cell still show up as one character.
        if not filled:
            col, row = self._cell_for(*fallback)
            self.cells[row][col] = glyph

    def fill_polygon(self, points: Sequence[Point], color: Color) -> None:
        glyph = self.glyphs.get(tuple(color), "*")
        xs = [point[0] for point in points]
        ys = [point[1] for point in points]
        centroid = (sum(xs) / len(xs), sum(ys) / len(ys))
        self._fill_cells(
            (min(xs), min(ys), max(xs), max(ys)),
            lambda cx, cy: _inside_convex(cx, cy, points),
            centroid,
            glyph,
        )

    def fill_circle(self, center: Point, radius: float, color: Color) -> None:
        glyph = self.glyphs.get(tuple(color), "*")
        x, y = center
        self._fill_cells(
            (x - radius, y - radius, x + radius, y + radius),
            lambda cx, cy: (cx - x) ** 2 + (cy - y) ** 2 <= radius * radius,
            center,
            glyph,
        )

    def render_lines(self) -> list[str]:
        return ["".join(row) for row in self.cells]


# ---------------------------------------------------------------------------
# Primitive renderer
# ---------------------------------------------------------------------------


def agent_vertices(x: float, y: float, size: float, heading: float) -> list[Point]:
    """Triangle for an agent; heading 0 points the tip along +y."""
    base = size * AGENT_BASE_SCALE
    left = heading + 2.0 / 3.0 * math.pi
    right = heading + 4.0 / 3.0 * math.pi
    return [
        (x - math.sin(heading) * size, y + math.cos(heading) * size),
        (x - math.sin(left) * base, y + math.cos(left) * base),
        (x - math.sin(right) * base, y + math.cos(right) * base),
    ]


class PrimitiveRenderer:
    def __init__(self, context: DrawingContext, agent_color: Color = AGENT_COLOR, resource_color: Color = RESOURCE_COLOR):
        self.context = context
        self.agent_color = agent_color
        self.resource_color = resource_color

    def is_culled(self, x: float, y: float, margin: float) -> bool:
        return (
            x - margin < 0
            or x + margin > self.context.width
            or y - margin < 0
            or y + margin > self.context.height
        )

    def clear(self) -> None:
        self.context.clear()

    def draw_agent(self, x: float, y: float, size: float, heading: float) -> bool:
        if self.is_culled(x, y, size * CULL_MARGIN_FACTOR):
            return False
        self.context.fill_polygon(agent_vertices(x, y, size, heading), self.agent_color)
        return True

    def draw_resource(self, x: float, y: float, radius: float) -> bool:
        if self.is_culled(x, y, radius * CULL_MARGIN_FACTOR):
            return False
        self.context.fill_circle((x, y), radius, self.resource_color)
        return True


def visible_log_lines(entries: Sequence[str], max_lines: int) -> list[str]:
    """Newest ``max_lines`` entries, oldest first, so the view stays scrolled to the end."""
    if max_lines <= 0:
        return []
    return list(entries[-max_lines:])


# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------


class TerminalRenderer:
    RESET = "\033[0m"
    AGENT = "\033[96m"
    RESOURCE = "\033[92m"
    MUTED = "\033[90m"

    def __init__(
        self,
        fps: float,
        width: int = VIEWPORT_WIDTH,
        height: int = VIEWPORT_HEIGHT,
        pixel_ratio: float = DEFAULT_PIXEL_RATIO,
        log_lines: int = TERMINAL_LOG_LINES,
    ):
        self.fps = max(1.0, fps)
        self.frame_delay = 1.0 / self.fps
        self._last_frame = 0.0
        self.log_lines = log_lines
        self.active_strategy = ""

        self.surface = configure_surface(CanvasSurface(width, height), pixel_ratio)
        self.canvas = TerminalCanvas(self.surface.width, self.surface.height)
        self.renderer = PrimitiveRenderer(self.canvas)

    def _colorize(self, line: str) -> str:
        return line.replace("^", f"{self.AGENT}^{self.RESET}").replace("o", f"{self.RESOURCE}o{self.RESET}")

    def set_active_strategy(self, name: str) -> None:
        self.active_strategy = name

    def poll_events(self) -> None:
        return None

    def consume_actions(self) -> list[str]:
        return []

    def present(self, log_entries: Sequence[str]) -> None:
        horizontal = "+" + ("-" * self.canvas.columns) + "+"
        lines = [
            "\033[H\033[2J=== evoview (terminal) ===",
            f"Strategy: {self.active_strategy} | Log entries: {len(log_entries)}",
            horizontal,
        ]
        lines.extend(f"|{self._colorize(row)}|" for row in self.canvas.render_lines())
        lines.append(horizontal)
        lines.extend(f"{self.MUTED}{entry}{self.RESET}" for entry in visible_log_lines(log_entries, self.log_lines))
        safe_print("\n".join(lines), end="", flush=True)

    def wait_for_next_frame(self) -> None:
        now = time.monotonic()
        remaining = self.frame_delay - (now - self._last_frame)
        if remaining > 0:
            time.sleep(remaining)
            now += remaining
        self._last_frame = now

    def should_stop(self) -> bool:
        return False

    def close(self) -> None:
        safe_print("")


class PygameRenderer:
    def __init__(
        self,
        fps: float,
        width: int = VIEWPORT_WIDTH,
        height: int = VIEWPORT_HEIGHT,
        pixel_ratio: float = DEFAULT_PIXEL_RATIO,
        fullscreen: bool = False,
        strategy_names: Sequence[str] = (),
    ):
        pygame = _require_pygame()

        self.pygame = pygame
        self.fps = max(1.0, fps)
        self.strategy_names = list(strategy_names)
        self.active_strategy = ""
        self.pending_actions: list[str] = []
        self.button_rects: list[tuple[str, object]] = []
        self.hidden = False
        self._should_stop = False

        self.surface = configure_surface(CanvasSurface(width, height), pixel_ratio)

        pygame.init()
        pygame.display.set_caption("evoview")
        self.margin = 20
        window_size = (
            self.surface.display_width + SIDEBAR_WIDTH + self.margin * 3,
            max(self.surface.display_height, LOG_PANEL_HEIGHT + 200) + self.margin * 2,
        )
        if fullscreen:
            info = pygame.display.Info()
            self.screen = pygame.display.set_mode((info.current_w, info.current_h), pygame.FULLSCREEN)
        else:
            self.screen = pygame.display.set_mode(window_size)

        self.backing = pygame.Surface(self.surface.size, 0, 32)
        self.canvas = PygameCanvas(self.backing)
        self.renderer = PrimitiveRenderer(self.canvas)

        self.clock = pygame.time.Clock()
        self.font = pygame.font.SysFont("DejaVu Sans", 19)
        self.small_font = pygame.font.SysFont("DejaVu Sans", 14)

        self.colors = {
            "bg": BACKGROUND_COLOR,
            "panel": (20, 23, 31),
            "border": (70, 80, 100),
            "button": (54, 62, 79),
            "button_active": (77, 109, 179),
            "text": (236, 239, 244),
            "muted": (165, 172, 186),
        }

        self.key_actions = {
            pygame.K_t: ACTION_TRAIN_ONCE,
            pygame.K_y: ACTION_TRAIN_X10,
            pygame.K_u: ACTION_TRAIN_X100,
            pygame.K_r: ACTION_RESET,
        }
        number_keys = [pygame.K_1, pygame.K_2, pygame.K_3, pygame.K_4, pygame.K_5, pygame.K_6, pygame.K_7, pygame.K_8, pygame.K_9]
        for key, name in zip(number_keys, self.strategy_names):
            self.key_actions[key] = f"{STRATEGY_ACTION_PREFIX}{name}"

        self.hidden_events = {pygame.WINDOWMINIMIZED, pygame.WINDOWHIDDEN}
        self.shown_events = {pygame.WINDOWRESTORED, pygame.WINDOWSHOWN, pygame.WINDOWEXPOSED, pygame.WINDOWMAXIMIZED}

    def _draw_text(self, text: str, x: int, y: int, color: tuple[int, int, int], small: bool = False) -> None:
        font = self.small_font if small else self.font
        surface = font.render(text, True, color)
        self.screen.blit(surface, (x, y))

    def _draw_button(self, rect, label: str, active: bool = False) -> None:
        fill = self.colors["button_active"] if active else self.colors["button"]
        self.pygame.draw.rect(self.screen, fill, rect, border_radius=6)
        self.pygame.draw.rect(self.screen, self.colors["border"], rect, width=1, border_radius=6)
        self._draw_text(label, rect.x + 10, rect.y + 7, self.colors["text"], small=True)

    def _draw_button_row(self, buttons: list[tuple[str, str, bool]], x: int, y: int) -> int:
        button_w = 92
        button_h = 30
        gap = 8
        max_columns = max(1, (SIDEBAR_WIDTH - 24) // (button_w + gap))

        for idx, (action, label, active) in enumerate(buttons):
            row = idx // max_columns
            col = idx % max_columns
            rect = self.pygame.Rect(x + col * (button_w + gap), y + row * (button_h + gap), button_w, button_h)
            self._draw_button(rect, label, active=active)
            self.button_rects.append((action, rect))

        rows = (len(buttons) + max_columns - 1) // max_columns
        return y + rows * (button_h + gap)

    def _draw_controls(self, x: int, y: int) -> int:
        self.button_rects = []
        self._draw_text("Training", x, y, self.colors["text"])
        y += 24
        y = self._draw_button_row(
            [
                (ACTION_TRAIN_ONCE, "Train", False),
                (ACTION_TRAIN_X10, "Train x10", False),
                (ACTION_TRAIN_X100, "Train x100", False),
                (ACTION_RESET, "Reset", False),
            ],
            x,
            y,
        )
        y += 6
        self._draw_text("Strategy", x, y, self.colors["text"])
        y += 24
        y = self._draw_button_row(
            [(f"{STRATEGY_ACTION_PREFIX}{name}", name, name == self.active_strategy) for name in self.strategy_names],
            x,
            y,
        )
        self._draw_text(CONTROLS_HINT, x, y, self.colors["muted"], small=True)
        return y + 24

    def _draw_log_panel(self, x: int, y: int, width: int, height: int, log_entries: Sequence[str]) -> None:
        self._draw_text("Log", x, y, self.colors["text"])
        y += 24
        rect = self.pygame.Rect(x, y, width, height)
        self.pygame.draw.rect(self.screen, (17, 20, 28), rect, border_radius=6)
        self.pygame.draw.rect(self.screen, self.colors["border"], rect, width=1, border_radius=6)

        line_height = self.small_font.get_linesize()
        capacity = max(1, (height - 16) // line_height)
        previous_clip = self.screen.get_clip()
        self.screen.set_clip(rect.inflate(-8, -8))
        line_y = y + 8
        for entry in visible_log_lines(log_entries, capacity):
            self._draw_text(entry, x + 8, line_y, self.colors["muted"], small=True)
            line_y += line_height
        self.screen.set_clip(previous_clip)

    def _handle_event(self, event) -> None:
        if event.type == self.pygame.QUIT:
            self._should_stop = True
            return
        if event.type in self.hidden_events:
            self.hidden = True
            return
        if event.type in self.shown_events:
            self.hidden = False
            return
        if event.type == self.pygame.KEYDOWN:
            if event.key == self.pygame.K_ESCAPE:
                self._should_stop = True
                return
            action = self.key_actions.get(event.key)
            if action is not None:
                self.pending_actions.append(action)
            return
        if event.type == self.pygame.MOUSEBUTTONDOWN and event.button == 1:
            mx, my = event.pos
            for action, rect in self.button_rects:
                if rect.collidepoint(mx, my):
                    self.pending_actions.append(action)
                    break

    def poll_events(self) -> None:
        for event in self.pygame.event.get():
            self._handle_event(event)

    def consume_actions(self) -> list[str]:
        actions = self.pending_actions
        self.pending_actions = []
        return actions

    def set_active_strategy(self, name: str) -> None:
        self.active_strategy = name

    def present(self, log_entries: Sequence[str]) -> None:
        self.screen.fill(self.colors["bg"])

        viewport = self.backing
        if self.surface.size != self.surface.display_size:
            viewport = self.pygame.transform.smoothscale(self.backing, self.surface.display_size)
        self.screen.blit(viewport, (self.margin, self.margin))
        viewport_rect = self.pygame.Rect(self.margin, self.margin, *self.surface.display_size)
        self.pygame.draw.rect(self.screen, self.colors["border"], viewport_rect, width=2)

        sidebar_x = self.margin * 2 + self.surface.display_width
        sidebar_rect = self.pygame.Rect(sidebar_x, self.margin, SIDEBAR_WIDTH, self.screen.get_height() - self.margin * 2)
        self.pygame.draw.rect(self.screen, self.colors["panel"], sidebar_rect, border_radius=6)
        self.pygame.draw.rect(self.screen, self.colors["border"], sidebar_rect, width=1, border_radius=6)

        panel_x = sidebar_x + 12
        panel_y = self._draw_controls(panel_x, self.margin + 12)
        log_height = min(LOG_PANEL_HEIGHT, sidebar_rect.bottom - panel_y - 40)
        self._draw_log_panel(panel_x, panel_y, SIDEBAR_WIDTH - 24, max(40, log_height), log_entries)

        self.pygame.display.flip()

    def wait_for_next_frame(self) -> None:
        # A hidden window renders nothing until the compositor shows it again.
        while self.hidden and not self._should_stop:
            self._handle_event(self.pygame.event.wait())
        self.clock.tick(self.fps)

    def should_stop(self) -> bool:
        return self._should_stop

    def close(self) -> None:
        self.pygame.quit()


def build_renderer(
    renderer_mode: str,
    fps: float,
    width: int = VIEWPORT_WIDTH,
    height: int = VIEWPORT_HEIGHT,
    pixel_ratio: float = DEFAULT_PIXEL_RATIO,
    fullscreen: bool = False,
    strategy_names: Sequence[str] = (),
) -> TerminalRenderer | PygameRenderer | None:
    if renderer_mode == "none":
        return None
    if renderer_mode == "terminal":
        return TerminalRenderer(fps=fps, width=width, height=height, pixel_ratio=pixel_ratio)
    if renderer_mode == "pygame":
        return PygameRenderer(
            fps=fps,
            width=width,
            height=height,
            pixel_ratio=pixel_ratio,
            fullscreen=fullscreen,
            strategy_names=strategy_names,
        )
    raise ValueError(f"Unsupported renderer mode: {renderer_mode}")
