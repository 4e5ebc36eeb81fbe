"""
Message Schema for robot commands.

Defines the payloads the panel sends over the bridge and parses the raw
form values an operator enters into them.
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from .errors import InputError

logger = logging.getLogger(__name__)

JOINT_COUNT = 6
STROKE_MIN = 0
STROKE_MAX = 700
SUCCESS_MARKER = "✅"


def parse_joint_value(raw: Any) -> float:
    """Parse one joint field, defaulting to 0 when it is not a finite number."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def parse_stroke(raw: Any) -> int:
    """Parse a gripper stroke and clamp it into the slider range."""
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        raise InputError(f"Invalid gripper stroke: {raw!r}")
    return max(STROKE_MIN, min(STROKE_MAX, value))


@dataclass(frozen=True)
class MoveCommand:
    """
    Joint-space move request.

    Attributes:
        positions: Target joint positions in degrees (6 values)
        velocity: Joint velocity (deg/s)
        acceleration: Joint acceleration (deg/s^2)
    """
    positions: Tuple[float, ...]
    velocity: float
    acceleration: float

    @classmethod
    def from_inputs(
        cls,
        joints: Sequence[Any],
        velocity: float,
        acceleration: float,
    ) -> 'MoveCommand':
        """Build from raw form values. No joint-limit validation is applied."""
        if len(joints) != JOINT_COUNT:
            raise InputError(f"Expected {JOINT_COUNT} joint values, got {len(joints)}")
        return cls(
            positions=tuple(parse_joint_value(j) for j in joints),
            velocity=float(velocity),
            acceleration=float(acceleration),
        )

    def to_request(self) -> Dict[str, Any]:
        """Service request arguments for the move_joint service."""
        return {
            "pos": list(self.positions),
            "vel": self.velocity,
            "acc": self.acceleration,
        }


@dataclass(frozen=True)
class GripperCommand:
    """Gripper stroke command: 0 (fully open) to 700 (fully closed)."""
    stroke: int

    @classmethod
    def from_input(cls, raw: Any) -> 'GripperCommand':
        return cls(stroke=parse_stroke(raw))

    def to_message(self) -> Dict[str, int]:
        return {"data": self.stroke}


@dataclass(frozen=True)
class ScriptSubmission:
    """Opaque script payload for the robot-side runtime."""
    text: str

    @classmethod
    def from_input(cls, text: Any) -> 'ScriptSubmission':
        if text is None or not str(text).strip():
            raise InputError("No code to execute")
        return cls(text=str(text))

    def to_message(self) -> Dict[str, str]:
        return {"data": self.text}


@dataclass(frozen=True)
class ResultEvent:
    """Script result as reported by the robot-side runtime."""
    text: str
    classification: str

    @classmethod
    def from_payload(cls, payload: Any) -> 'ResultEvent':
        """Classify by the leading success marker; anything else is an error."""
        text = "" if payload is None else str(payload)
        classification = "success" if text.startswith(SUCCESS_MARKER) else "error"
        return cls(text=text, classification=classification)

    @property
    def success(self) -> bool:
        return self.classification == "success"
