from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in world units, y growing downwards like screen space."""

    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def inset(self, margin: float) -> "Rect":
        # An inset larger than half the size collapses to the centre line.
        dx = min(margin, self.width * 0.5)
        dy = min(margin, self.height * 0.5)
        return Rect(self.x + dx, self.y + dy, self.width - 2.0 * dx, self.height - 2.0 * dy)

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom
