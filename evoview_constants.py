VIEWPORT_WIDTH = 800
VIEWPORT_HEIGHT = 600

DEFAULT_PIXEL_RATIO = 1.0
PIXEL_RATIO_ENV_VAR = "EVOVIEW_PIXEL_RATIO"

DEFAULT_FPS = 60.0
TERMINAL_FPS = 10.0

# Glyph sizes are fractions of the surface width.
AGENT_SIZE_FRACTION = 0.01
RESOURCE_RADIUS_FRACTION = AGENT_SIZE_FRACTION / 2.0
AGENT_BASE_SCALE = 1.5
CULL_MARGIN_FACTOR = 2.0

DEFAULT_STRATEGY = "roulettewheel"
BULK_TRAIN_COUNTS = (10, 100)

ACTION_TRAIN_ONCE = "train_once"
ACTION_TRAIN_X10 = "train_x10"
ACTION_TRAIN_X100 = "train_x100"
ACTION_RESET = "reset"
STRATEGY_ACTION_PREFIX = "strategy:"
CONTROLS_HINT = "T train | Y train x10 | U train x100 | R reset | 1-9 strategy | Esc quit"

BACKGROUND_COLOR = (16, 18, 23)
VIEWPORT_COLOR = (236, 239, 244)
AGENT_COLOR = (32, 36, 48)
RESOURCE_COLOR = (82, 184, 118)

SIDEBAR_WIDTH = 320
LOG_PANEL_HEIGHT = 300

TERMINAL_COLUMNS = 80
TERMINAL_ROWS = 30
TERMINAL_LOG_LINES = 5
