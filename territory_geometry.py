import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from territory_models import PLAYABLE_FACTIONS, TYPE_HQ, Base

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


# =========================================================
# CONVEX HULL (GRAHAM SCAN / MONOTONE CHAIN)
# =========================================================
def cross(o: Point, a: Point, b: Point) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[Point]) -> List[Point]:
    """
    Counter-clockwise hull of ``points`` (in a y-up frame), without repeating
    the first vertex at the end.

    Fewer than 3 points are returned unchanged; callers must not draw those.
    Points lying exactly on a hull edge are dropped (cross <= 0 pops).
    """
    if len(points) < 3:
        return list(points)

    pts = sorted(points, key=lambda p: (p[0], p[1]))

    lower: List[Point] = []
    for p in pts:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[Point] = []
    for p in reversed(pts):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    return lower[:-1] + upper[:-1]


# =========================================================
# WORLD -> CANVAS
# Z grows north in the world; image origin is top-left, so Z is flipped.
# =========================================================
@dataclass(frozen=True)
class PlacedBase:
    base: Base
    cx: float
    cy: float


@dataclass(frozen=True)
class Bounds:
    min_x: float
    max_x: float
    min_z: float
    max_z: float


def world_to_canvas(x: float, z: float, map_size: float, canvas_size: float) -> Point:
    if map_size <= 0:
        raise ValueError("map_size must be positive")
    scale = canvas_size / map_size
    return x * scale, (map_size - z) * scale


def coordinate_bounds(bases: Sequence[Base]) -> Optional[Bounds]:
    positioned = [b for b in bases if b.has_position]
    if not positioned:
        return None
    xs = [b.x for b in positioned]
    zs = [b.z for b in positioned]
    return Bounds(min(xs), max(xs), min(zs), max(zs))


def place_bases(bases: Sequence[Base], map_size: float, canvas_size: float) -> List[PlacedBase]:
    bounds = coordinate_bounds(bases)
    if bounds:
        logger.info(
            "Map coordinate ranges: X: %s to %s, Z: %s to %s",
            bounds.min_x, bounds.max_x, bounds.min_z, bounds.max_z,
        )
    else:
        logger.info("Map coordinate ranges: no positioned bases")

    placed: List[PlacedBase] = []
    for b in bases:
        if not b.has_position:
            continue
        cx, cy = world_to_canvas(b.x, b.z, map_size, canvas_size)
        placed.append(PlacedBase(b, cx, cy))
    return placed


def is_hull_eligible(base: Base) -> bool:
    return base.faction in PLAYABLE_FACTIONS and base.type != TYPE_HQ


def faction_hull_points(placed: Sequence[PlacedBase]) -> Dict[str, List[Point]]:
    points: Dict[str, List[Point]] = {f: [] for f in PLAYABLE_FACTIONS}
    for p in placed:
        if is_hull_eligible(p.base):
            points[p.base.faction].append((p.cx, p.cy))
    return points


def faction_hulls(placed: Sequence[PlacedBase]) -> Dict[str, List[Point]]:
    """Drawable hulls per faction; factions with a degenerate hull are left out."""
    hulls: Dict[str, List[Point]] = {}
    for faction, pts in faction_hull_points(placed).items():
        if len(pts) < 3:
            continue
        hull = convex_hull(pts)
        if len(hull) < 3:
            continue
        hulls[faction] = hull
    return hulls
