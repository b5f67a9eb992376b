import contextlib
import importlib.util
import io
import math
import os
import pathlib
import sys
import unittest
from unittest import mock


ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import evoview_rendering as rendering
import main

HAS_PYGAME = importlib.util.find_spec("pygame") is not None


class CountingContext:
    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.fills = 0

    def clear(self) -> None:
        return None

    def fill_polygon(self, points, color) -> None:
        self.fills += 1

    def fill_circle(self, center, radius, color) -> None:
        self.fills += 1


class TestSurfaceAdapter(unittest.TestCase):
    def test_backing_buffer_scaled_by_density(self) -> None:
        surface = main.configure_surface(main.CanvasSurface(800, 600), 2.0)
        self.assertEqual(surface.size, (1600, 1200))
        self.assertEqual(surface.display_size, (800, 600))
        self.assertEqual(surface.pixel_ratio, 2.0)
        self.assertTrue(surface.configured)

    def test_unconfigured_surface_reports_logical_size(self) -> None:
        surface = main.CanvasSurface(320, 240)
        self.assertEqual(surface.size, surface.display_size)
        self.assertFalse(surface.configured)

    def test_missing_density_keeps_logical_size(self) -> None:
        surface = main.configure_surface(main.CanvasSurface(800, 600))
        self.assertEqual(surface.size, (800, 600))
        self.assertEqual(surface.display_size, (800, 600))

    def test_invalid_density_falls_back_to_one(self) -> None:
        surface = main.configure_surface(main.CanvasSurface(800, 600), 0.5)
        self.assertEqual(surface.pixel_ratio, 1.0)
        self.assertEqual(surface.size, (800, 600))

    def test_resize_happens_once(self) -> None:
        surface = main.configure_surface(main.CanvasSurface(800, 600), 2.0)
        with self.assertRaises(RuntimeError):
            main.configure_surface(surface, 2.0)
        self.assertEqual(surface.size, (1600, 1200))


class TestResolvePixelRatio(unittest.TestCase):
    def test_explicit_value_wins(self) -> None:
        self.assertEqual(main.resolve_pixel_ratio(2.0, environ={"EVOVIEW_PIXEL_RATIO": "3"}), 2.0)

    def test_environment_value_used(self) -> None:
        self.assertEqual(main.resolve_pixel_ratio(environ={"EVOVIEW_PIXEL_RATIO": "1.5"}), 1.5)

    def test_unknown_density_defaults_to_one(self) -> None:
        self.assertEqual(main.resolve_pixel_ratio(environ={}), 1.0)
        self.assertEqual(main.resolve_pixel_ratio(environ={"EVOVIEW_PIXEL_RATIO": "  "}), 1.0)

    def test_unreadable_density_defaults_to_one(self) -> None:
        self.assertEqual(main.resolve_pixel_ratio("retina", environ={}), 1.0)
        self.assertEqual(main.resolve_pixel_ratio(environ={"EVOVIEW_PIXEL_RATIO": "nan"}), 1.0)
        self.assertEqual(main.resolve_pixel_ratio(environ={"EVOVIEW_PIXEL_RATIO": "inf"}), 1.0)
        self.assertEqual(main.resolve_pixel_ratio(0.75, environ={}), 1.0)

    def test_reads_process_environment_by_default(self) -> None:
        with mock.patch.dict(os.environ, {"EVOVIEW_PIXEL_RATIO": "2"}):
            self.assertEqual(main.resolve_pixel_ratio(), 2.0)


class TestAgentGlyph(unittest.TestCase):
    def test_heading_zero_points_tip_along_positive_y(self) -> None:
        tip, left, right = main.agent_vertices(100.0, 100.0, 10.0, 0.0)
        self.assertEqual(tip, (100.0, 110.0))
        self.assertAlmostEqual(left[0], 100.0 - math.sqrt(3) / 2 * 15.0)
        self.assertAlmostEqual(left[1], 92.5)
        self.assertAlmostEqual(right[0], 100.0 + math.sqrt(3) / 2 * 15.0)
        self.assertAlmostEqual(right[1], 92.5)

    def test_quarter_turn_rotates_tip(self) -> None:
        tip, _, _ = main.agent_vertices(50.0, 50.0, 4.0, math.pi / 2)
        self.assertAlmostEqual(tip[0], 46.0)
        self.assertAlmostEqual(tip[1], 50.0)

    def test_base_vertices_sit_further_out_than_tip(self) -> None:
        x, y, size = 10.0, 20.0, 2.0
        tip, left, right = main.agent_vertices(x, y, size, 1.0)
        self.assertAlmostEqual(math.dist((x, y), tip), size)
        self.assertAlmostEqual(math.dist((x, y), left), size * 1.5)
        self.assertAlmostEqual(math.dist((x, y), right), size * 1.5)


class TestCulling(unittest.TestCase):
    def setUp(self) -> None:
        self.context = CountingContext(400, 300)
        self.renderer = main.PrimitiveRenderer(self.context)

    def test_corner_draw_is_skipped(self) -> None:
        self.assertFalse(self.renderer.draw_agent(0.0, 0.0, 1.0, 0.0))
        self.assertFalse(self.renderer.draw_resource(0.0, 0.0, 1.0))
        self.assertEqual(self.context.fills, 0)

    def test_center_draw_is_kept_below_quarter_size(self) -> None:
        self.assertTrue(self.renderer.draw_agent(200.0, 150.0, 74.0, 0.3))
        self.assertTrue(self.renderer.draw_resource(200.0, 150.0, 74.0))
        self.assertEqual(self.context.fills, 2)

    def test_each_edge_culls(self) -> None:
        for x, y in [(5.0, 150.0), (395.0, 150.0), (200.0, 5.0), (200.0, 295.0)]:
            self.assertFalse(self.renderer.draw_agent(x, y, 10.0, 0.0), (x, y))
        self.assertEqual(self.context.fills, 0)

    def test_margin_touching_edge_is_drawn(self) -> None:
        self.assertTrue(self.renderer.draw_resource(20.0, 20.0, 10.0))
        self.assertTrue(self.renderer.draw_resource(380.0, 280.0, 10.0))


class TestTerminalCanvas(unittest.TestCase):
    def test_circle_marks_cells(self) -> None:
        canvas = main.TerminalCanvas(80, 30, columns=80, rows=30)
        canvas.fill_circle((10.5, 5.5), 2.0, rendering.RESOURCE_COLOR)
        lines = canvas.render_lines()
        self.assertEqual(lines[5][10], "o")
        self.assertEqual(lines[5][12], "o")
        self.assertEqual(lines[0], " " * 80)

    def test_tiny_glyph_still_marks_one_cell(self) -> None:
        canvas = main.TerminalCanvas(80, 30, columns=80, rows=30)
        canvas.fill_circle((20.2, 3.2), 0.1, rendering.RESOURCE_COLOR)
        self.assertEqual(canvas.cells[3][20], "o")
        self.assertEqual(sum(row.count("o") for row in canvas.render_lines()), 1)

    def test_triangle_marks_interior(self) -> None:
        canvas = main.TerminalCanvas(80, 30, columns=80, rows=30)
        canvas.fill_polygon(main.agent_vertices(40.0, 15.0, 3.0, 0.0), rendering.AGENT_COLOR)
        self.assertEqual(canvas.cells[14][40], "^")
        self.assertEqual(canvas.cells[25][40], " ")

    def test_unknown_color_uses_fallback_glyph(self) -> None:
        canvas = main.TerminalCanvas(80, 30, columns=80, rows=30)
        canvas.fill_circle((40.5, 15.5), 0.4, (1, 2, 3))
        self.assertEqual(canvas.cells[15][40], "*")

    def test_clear_resets_cells(self) -> None:
        canvas = main.TerminalCanvas(80, 30, columns=80, rows=30)
        canvas.fill_circle((40.5, 15.5), 3.0, rendering.RESOURCE_COLOR)
        canvas.clear()
        self.assertTrue(all(line == " " * 80 for line in canvas.render_lines()))

    def test_scales_pixel_space_to_grid(self) -> None:
        canvas = main.TerminalCanvas(1600, 1200, columns=40, rows=30)
        canvas.fill_circle((800.0, 600.0), 1.0, rendering.RESOURCE_COLOR)
        self.assertEqual(canvas.cells[15][20], "o")


class TestLogView(unittest.TestCase):
    def test_visible_lines_follow_newest_entry(self) -> None:
        entries = tuple(f"entry {idx}" for idx in range(10))
        self.assertEqual(main.visible_log_lines(entries, 3), ["entry 7", "entry 8", "entry 9"])
        self.assertEqual(main.visible_log_lines(entries, 20), list(entries))
        self.assertEqual(main.visible_log_lines(entries, 0), [])


class TestRendererSelection(unittest.TestCase):
    def test_build_renderer_none_returns_none(self) -> None:
        self.assertIsNone(main.build_renderer("none", fps=20.0))

    def test_build_renderer_terminal_returns_terminal_renderer(self) -> None:
        renderer = main.build_renderer("terminal", fps=20.0, pixel_ratio=2.0)
        self.assertIsInstance(renderer, main.TerminalRenderer)
        self.assertEqual(renderer.surface.size, (main.VIEWPORT_WIDTH * 2, main.VIEWPORT_HEIGHT * 2))

    def test_build_renderer_unknown_mode(self) -> None:
        with self.assertRaises(ValueError):
            main.build_renderer("opengl", fps=20.0)


class TestTerminalRenderer(unittest.TestCase):
    def test_present_prints_grid_and_log_tail(self) -> None:
        renderer = main.TerminalRenderer(fps=10.0, width=800, height=600, log_lines=2)
        renderer.set_active_strategy("rank")
        renderer.renderer.draw_resource(400.0, 300.0, 20.0)

        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            renderer.present(("first", "second", "third"))

        output = buffer.getvalue()
        self.assertIn("Strategy: rank | Log entries: 3", output)
        self.assertIn("o", output)
        self.assertIn("third", output)
        self.assertNotIn("first", output)

    def test_wait_sleeps_for_remaining_frame_time(self) -> None:
        renderer = main.TerminalRenderer(fps=10.0)
        with (
            mock.patch.object(rendering.time, "monotonic", return_value=0.04),
            mock.patch.object(rendering.time, "sleep") as sleep,
        ):
            renderer.wait_for_next_frame()
        sleep.assert_called_once()
        self.assertAlmostEqual(sleep.call_args[0][0], 0.06)

    def test_terminal_host_has_no_input(self) -> None:
        renderer = main.TerminalRenderer(fps=10.0)
        renderer.poll_events()
        self.assertEqual(renderer.consume_actions(), [])
        self.assertFalse(renderer.should_stop())


@unittest.skipUnless(HAS_PYGAME, "pygame is not installed")
class TestPygameCanvas(unittest.TestCase):
    def test_fills_land_on_target_surface(self) -> None:
        import pygame

        target = pygame.Surface((60, 60), 0, 32)
        canvas = main.PygameCanvas(target)
        canvas.clear()
        self.assertEqual(tuple(target.get_at((1, 1)))[:3], rendering.VIEWPORT_COLOR)

        renderer = main.PrimitiveRenderer(canvas)
        self.assertTrue(renderer.draw_resource(30.0, 30.0, 5.0))
        self.assertEqual(tuple(target.get_at((30, 30)))[:3], rendering.RESOURCE_COLOR)

        canvas.clear()
        self.assertTrue(renderer.draw_agent(30.0, 30.0, 6.0, 0.0))
        self.assertEqual(tuple(target.get_at((30, 30)))[:3], rendering.AGENT_COLOR)
        self.assertEqual((canvas.width, canvas.height), (60, 60))


@unittest.skipUnless(HAS_PYGAME, "pygame is not installed")
class TestPygameRenderer(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch.dict(os.environ, {"SDL_VIDEODRIVER": "dummy", "SDL_AUDIODRIVER": "dummy"})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.renderer = main.PygameRenderer(
            fps=30.0,
            width=200,
            height=150,
            pixel_ratio=2.0,
            strategy_names=["roulettewheel", "rank"],
        )
        self.addCleanup(self.renderer.close)
        self.pygame = self.renderer.pygame
        self.pygame.event.clear()

    def test_backing_buffer_is_density_corrected(self) -> None:
        self.assertEqual(self.renderer.backing.get_size(), (400, 300))
        self.assertEqual(self.renderer.surface.display_size, (200, 150))
        self.assertEqual((self.renderer.canvas.width, self.renderer.canvas.height), (400, 300))

    def test_keys_become_actions(self) -> None:
        self.pygame.event.post(self.pygame.event.Event(self.pygame.KEYDOWN, key=self.pygame.K_t))
        self.pygame.event.post(self.pygame.event.Event(self.pygame.KEYDOWN, key=self.pygame.K_u))
        self.pygame.event.post(self.pygame.event.Event(self.pygame.KEYDOWN, key=self.pygame.K_2))
        self.renderer.poll_events()
        self.assertEqual(self.renderer.consume_actions(), ["train_once", "train_x100", "strategy:rank"])
        self.assertEqual(self.renderer.consume_actions(), [])

    def test_button_click_becomes_action(self) -> None:
        self.renderer.set_active_strategy("rank")
        self.renderer.present(("hello",))
        action, rect = next(item for item in self.renderer.button_rects if item[0] == "reset")
        self.pygame.event.post(self.pygame.event.Event(self.pygame.MOUSEBUTTONDOWN, pos=rect.center, button=1))
        self.renderer.poll_events()
        self.assertEqual(self.renderer.consume_actions(), [action])

    def test_quit_and_escape_stop(self) -> None:
        self.pygame.event.post(self.pygame.event.Event(self.pygame.KEYDOWN, key=self.pygame.K_ESCAPE))
        self.renderer.poll_events()
        self.assertTrue(self.renderer.should_stop())

    def test_hidden_window_waits_for_restore(self) -> None:
        self.pygame.event.post(self.pygame.event.Event(self.pygame.WINDOWMINIMIZED))
        self.renderer.poll_events()
        self.assertTrue(self.renderer.hidden)

        self.pygame.event.post(self.pygame.event.Event(self.pygame.WINDOWRESTORED))
        self.renderer.wait_for_next_frame()
        self.assertFalse(self.renderer.hidden)


if __name__ == "__main__":
    unittest.main(verbosity=2)
