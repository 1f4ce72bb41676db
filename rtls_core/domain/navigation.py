"""
Turn-by-Turn Navigation.

Straight-line routing: the route is evenly spaced waypoints from the
seeker to the docket estimate, with no obstacle model. Each update yields
one instruction: turn (when the heading is off by more than the turn
threshold), move forward, or found.

Angles use the maths convention: bearing 0 deg along +x, counter-clockwise
positive. A positive heading correction is therefore a left turn.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

Point = Tuple[float, float, float]


class InstructionType(str, Enum):
    TURN = "turn"
    MOVE = "move"
    FOUND = "found"


@dataclass
class NavigationConfig:
    """
    Configuration for navigation mode.

    Attributes:
        num_waypoints: Waypoints between seeker and target (target included)
        turn_threshold_deg: Heading error above which a turn is issued
        found_distance_m: Distance to target reported as found
    """

    num_waypoints: int = 10
    turn_threshold_deg: float = 15.0
    found_distance_m: float = 0.5

    def __post_init__(self):
        """Validate configuration."""
        if self.num_waypoints < 1:
            raise ValueError(f"Need at least one waypoint: {self.num_waypoints}")
        if not 0 < self.turn_threshold_deg < 180:
            raise ValueError(f"Turn threshold must be in (0, 180): {self.turn_threshold_deg}")


@dataclass
class NavigationInstruction:
    """Single navigation step for the operator."""

    kind: InstructionType
    message: str
    voice_prompt: str
    direction: Optional[str] = None
    angle_deg: Optional[float] = None
    distance_m: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'type': self.kind.value,
            'direction': self.direction,
            'angle': self.angle_deg,
            'distance': self.distance_m,
            'message': self.message,
            'voice_prompt': self.voice_prompt,
        }


def plan_route(start: Sequence[float], target: Sequence[float], num_waypoints: int = 10) -> List[Point]:
    """Evenly spaced waypoints from start (excluded) to target (included)."""
    route = []
    for i in range(1, num_waypoints + 1):
        t = i / num_waypoints
        route.append(tuple(float(s + (e - s) * t) for s, e in zip(start, target)))
    return route


def bearing_deg(origin: Sequence[float], target: Sequence[float]) -> float:
    """Horizontal bearing from origin to target (deg, CCW from +x)."""
    return math.degrees(math.atan2(target[1] - origin[1], target[0] - origin[0]))


def elevation_deg(origin: Sequence[float], target: Sequence[float]) -> float:
    """Elevation angle from origin to target (deg, positive up)."""
    horizontal = math.hypot(target[0] - origin[0], target[1] - origin[1])
    return math.degrees(math.atan2(target[2] - origin[2], horizontal))


def wrap_angle_deg(angle: float) -> float:
    """Wrap to (-180, 180]."""
    wrapped = (angle + 180.0) % 360.0 - 180.0
    return 180.0 if wrapped == -180.0 else wrapped


def next_instruction(
    seeker: Sequence[float],
    heading_deg: float,
    target: Sequence[float],
    config: Optional[NavigationConfig] = None,
) -> Tuple[NavigationInstruction, List[Point]]:
    """
    Next instruction for a seeker at `seeker` facing `heading_deg`.

    Returns:
        (instruction, route) where route is the freshly planned waypoints
    """
    cfg = config or NavigationConfig()
    route = plan_route(seeker, target, cfg.num_waypoints)
    remaining = math.dist(seeker, target)

    if remaining < cfg.found_distance_m:
        return NavigationInstruction(
            kind=InstructionType.FOUND,
            message="Docket found! Look around you.",
            voice_prompt="You have reached the docket. It should be within arm's reach.",
            distance_m=remaining,
        ), route

    correction = wrap_angle_deg(bearing_deg(seeker, route[0]) - heading_deg)

    if abs(correction) > cfg.turn_threshold_deg:
        direction = 'left' if correction > 0 else 'right'
        angle = abs(correction)
        return NavigationInstruction(
            kind=InstructionType.TURN,
            message=f"Turn {direction} {round(angle)}°",
            voice_prompt=f"Turn {direction} {round(angle)} degrees",
            direction=direction,
            angle_deg=angle,
        ), route

    return NavigationInstruction(
        kind=InstructionType.MOVE,
        message=f"Move forward {remaining:.1f}m",
        voice_prompt=f"Walk forward {round(remaining)} meters",
        direction='forward',
        distance_m=remaining,
    ), route
