import asyncio
import io
import logging
import math
import os
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from territory_config import CANVAS_SIZE, MAP_BACKGROUND_TIMEOUT, MAP_SIZE
from territory_geometry import Point, PlacedBase, faction_hulls, place_bases
from territory_models import FACTION_NAMES, NEUTRAL, TYPE_HQ, TYPE_POI, Base

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

MAP_FILENAME = "territory-map.png"


class RenderError(RuntimeError):
    pass


# =========================================================
# COLORS / STYLE
# =========================================================
BACKGROUND_FILL: RGB = (26, 26, 26)
WHITE: RGB = (255, 255, 255)
BLACK: RGB = (0, 0, 0)

FACTION_COLORS: Dict[str, RGB] = {
    "US": (52, 152, 219),
    "USSR": (231, 76, 60),
    "FIA": (46, 204, 113),
    NEUTRAL: (149, 165, 166),
}

BORDER_COLORS: Dict[str, RGB] = {
    "US": (41, 128, 185),
    "USSR": (192, 57, 43),
    "FIA": (39, 174, 96),
    NEUTRAL: (127, 140, 141),
}

BORDER_WIDTH = 4
BORDER_DASH = (10.0, 5.0)
BORDER_ALPHA = 0.7

MARKER_OUTLINE_WIDTH = 2
HQ_STAR = (5, 20, 10)  # points, outer radius, inner radius
POI_DIAMOND = 16
FOB_RADIUS = 10

LABEL_FONT_SIZE = 14
LABEL_OFFSET = 25
LABEL_STROKE = 2

LEGEND_X = 80
LEGEND_HEIGHT = 180
LEGEND_PANEL = (-60, -10, 450, 170)  # dx, dy, width, height relative to legend origin
LEGEND_ALPHA = 0.7


# =========================================================
# FONT LOADER
# =========================================================
def load_font(size: int, bold: bool = False) -> ImageFont.ImageFont:
    names = ["NotoSans-Bold.ttf", "DejaVuSans-Bold.ttf"] if bold else ["NotoSans-Regular.ttf", "DejaVuSans.ttf"]
    candidates = []
    for name in names:
        candidates.append(os.path.join("fonts", name))
        candidates.append(name)
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except Exception:
            continue
    return ImageFont.load_default()


# =========================================================
# SHAPE PRIMITIVES
# =========================================================
def star_points(cx: float, cy: float, points: int, outer_radius: float, inner_radius: float) -> List[Point]:
    # First vertex points straight up
    out: List[Point] = []
    for i in range(points * 2):
        radius = outer_radius if i % 2 == 0 else inner_radius
        angle = (i * math.pi) / points - math.pi / 2
        out.append((cx + math.cos(angle) * radius, cy + math.sin(angle) * radius))
    return out


def diamond_points(cx: float, cy: float, size: float) -> List[Point]:
    return [(cx, cy - size), (cx + size, cy), (cx, cy + size), (cx - size, cy)]


def dashed_segments(points: Sequence[Point], dash: Tuple[float, float] = BORDER_DASH) -> List[Tuple[Point, Point]]:
    """
    Split the closed polygon ``points`` into the "on" pieces of a dash pattern.
    The pattern phase carries over from one edge to the next.
    """
    on_len, off_len = dash
    period = on_len + off_len
    segments: List[Tuple[Point, Point]] = []
    if len(points) < 2 or on_len <= 0:
        return segments

    phase = 0.0
    closed = list(points) + [points[0]]
    for (x0, y0), (x1, y1) in zip(closed, closed[1:]):
        length = math.hypot(x1 - x0, y1 - y0)
        if length == 0:
            continue
        ux, uy = (x1 - x0) / length, (y1 - y0) / length
        pos = 0.0
        while pos < length:
            if phase < on_len:
                step = min(on_len - phase, length - pos)
                start = (x0 + ux * pos, y0 + uy * pos)
                end = (x0 + ux * (pos + step), y0 + uy * (pos + step))
                segments.append((start, end))
            else:
                step = min(period - phase, length - pos)
            pos += step
            phase = (phase + step) % period
    return segments


def draw_dashed_polygon(
    draw: ImageDraw.ImageDraw,
    points: Sequence[Point],
    color: RGB,
    width: int = BORDER_WIDTH,
    alpha: float = BORDER_ALPHA,
    dash: Tuple[float, float] = BORDER_DASH,
) -> None:
    fill = (color[0], color[1], color[2], int(round(255 * alpha)))
    for start, end in dashed_segments(points, dash):
        draw.line([start, end], fill=fill, width=width)


def draw_star(draw: ImageDraw.ImageDraw, cx: float, cy: float, points: int, outer: float, inner: float, fill: RGB) -> None:
    draw.polygon(star_points(cx, cy, points, outer, inner), fill=fill, outline=WHITE, width=MARKER_OUTLINE_WIDTH)


def draw_diamond(draw: ImageDraw.ImageDraw, cx: float, cy: float, size: float, fill: RGB) -> None:
    draw.polygon(diamond_points(cx, cy, size), fill=fill, outline=WHITE, width=MARKER_OUTLINE_WIDTH)


def draw_circle(draw: ImageDraw.ImageDraw, cx: float, cy: float, radius: float, fill: RGB, outline: Optional[RGB] = WHITE) -> None:
    draw.ellipse(
        [cx - radius, cy - radius, cx + radius, cy + radius],
        fill=fill,
        outline=outline,
        width=MARKER_OUTLINE_WIDTH if outline else 0,
    )


def draw_marker(draw: ImageDraw.ImageDraw, base: Base, cx: float, cy: float) -> None:
    fill = FACTION_COLORS.get(base.owner, FACTION_COLORS[NEUTRAL])
    if base.type == TYPE_HQ:
        draw_star(draw, cx, cy, *HQ_STAR, fill=fill)
    elif base.type == TYPE_POI:
        draw_diamond(draw, cx, cy, POI_DIAMOND, fill=fill)
    else:
        # FOB and any unrecognized type
        draw_circle(draw, cx, cy, FOB_RADIUS, fill=fill)


def draw_label(draw: ImageDraw.ImageDraw, text: str, cx: float, baseline_y: float, font: ImageFont.ImageFont) -> None:
    tw = draw.textlength(text, font=font)
    pos = (cx - tw / 2, baseline_y - LABEL_FONT_SIZE)
    # outline pass, then fill pass
    draw.text(pos, text, font=font, fill=BLACK, stroke_width=LABEL_STROKE, stroke_fill=BLACK)
    draw.text(pos, text, font=font, fill=WHITE)


# =========================================================
# BACKGROUND
# =========================================================
def load_background(path: Optional[str], canvas_size: int = CANVAS_SIZE) -> Optional[Image.Image]:
    if not path or not os.path.exists(path):
        return None
    try:
        with Image.open(path) as img:
            return img.convert("RGBA").resize((canvas_size, canvas_size))
    except Exception:
        logger.exception("Error loading map background: %s", path)
        return None


# =========================================================
# LAYERS
# =========================================================
def draw_borders(canvas: Image.Image, placed: Sequence[PlacedBase]) -> Dict[str, List[Point]]:
    hulls = faction_hulls(placed)
    if not hulls:
        return hulls
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    odraw = ImageDraw.Draw(overlay)
    for faction, hull in hulls.items():
        draw_dashed_polygon(odraw, hull, BORDER_COLORS[faction])
    canvas.alpha_composite(overlay)
    return hulls


def draw_bases(canvas: Image.Image, placed: Sequence[PlacedBase]) -> None:
    draw = ImageDraw.Draw(canvas)
    font = load_font(LABEL_FONT_SIZE, bold=True)
    for p in placed:
        draw_marker(draw, p.base, p.cx, p.cy)
        draw_label(draw, p.base.display_name, p.cx, p.cy - LABEL_OFFSET, font)


def draw_legend(canvas: Image.Image) -> None:
    lx = LEGEND_X
    ly = canvas.size[1] - LEGEND_HEIGHT

    dx, dy, pw, ph = LEGEND_PANEL
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(overlay).rectangle(
        [lx + dx, ly + dy, lx + dx + pw, ly + dy + ph],
        fill=(0, 0, 0, int(round(255 * LEGEND_ALPHA))),
    )
    canvas.alpha_composite(overlay)

    draw = ImageDraw.Draw(canvas)
    font_title = load_font(16, bold=True)
    font_entry = load_font(14)

    draw.text((lx - 10, ly - 4), "FACTIONS", font=font_title, fill=WHITE)
    y_off = 35
    for key, name in FACTION_NAMES.items():
        draw_circle(draw, lx + 10, ly + y_off, 8, fill=FACTION_COLORS[key], outline=None)
        draw.text((lx + 30, ly + y_off - 9), name, font=font_entry, fill=WHITE)
        y_off += 30

    sample = FACTION_COLORS["US"]
    draw.text((lx + 240, ly - 4), "TYPES", font=font_title, fill=WHITE)
    draw_star(draw, lx + 260, ly + 35, 5, 15, 7, fill=sample)
    draw.text((lx + 285, ly + 26), "HQ", font=font_entry, fill=WHITE)
    draw_diamond(draw, lx + 260, ly + 65, 12, fill=sample)
    draw.text((lx + 285, ly + 56), "POI", font=font_entry, fill=WHITE)
    draw_circle(draw, lx + 260, ly + 95, 8, fill=sample)
    draw.text((lx + 285, ly + 86), "FOB", font=font_entry, fill=WHITE)


# =========================================================
# RENDER
# =========================================================
def render_png(
    bases: Sequence[Base],
    background: Optional[Image.Image] = None,
    map_size: float = MAP_SIZE,
    canvas_size: int = CANVAS_SIZE,
) -> Tuple[str, bytes]:
    try:
        img = Image.new("RGBA", (canvas_size, canvas_size), BACKGROUND_FILL + (255,))
    except Exception as e:
        raise RenderError(f"Could not create {canvas_size}x{canvas_size} canvas") from e

    if background is not None:
        if background.size != img.size:
            background = background.resize(img.size)
        img.paste(background.convert("RGBA"), (0, 0))

    placed = place_bases(bases, map_size, canvas_size)
    draw_borders(img, placed)
    draw_bases(img, placed)
    draw_legend(img)

    buf = io.BytesIO()
    try:
        img.convert("RGB").save(buf, format="PNG")
    except Exception as e:
        raise RenderError("Could not encode territory map") from e
    return MAP_FILENAME, buf.getvalue()


async def render_map(
    bases: Sequence[Base],
    background_path: Optional[str],
    map_size: float = MAP_SIZE,
    canvas_size: int = CANVAS_SIZE,
    background_timeout: float = MAP_BACKGROUND_TIMEOUT,
) -> Tuple[str, bytes]:
    """Render off the event loop; a slow background read falls back to the flat fill."""
    background = None
    if background_path:
        try:
            background = await asyncio.wait_for(
                asyncio.to_thread(load_background, background_path, canvas_size),
                timeout=background_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Map background load timed out after %.1fs, using flat fill", background_timeout)
    return await asyncio.to_thread(render_png, list(bases), background, map_size, canvas_size)
