"""Small scheduling helpers shared by the trainer and the reservoir."""

from __future__ import annotations


class ParamValMapper:
    """Maps a position in ``[from_, to]`` onto ``[from2, to2]`` along a saturating curve.

    Positions outside the source interval map to ``default``. With ``slope``
    in ``[1e-15, 1e15]`` the curve is ``slope*x / (1 + slope*x)`` normalised to
    end at 1, otherwise it is linear.
    """

    def __init__(
        self,
        from_: float,
        to: float,
        from2: float,
        to2: float,
        default: float,
        slope: float = 0.0,
    ) -> None:
        if to == from_:
            raise ValueError("Source interval must not be empty")
        self.from_ = float(from_)
        self.to = float(to)
        self.from2 = float(from2)
        self.to2 = float(to2)
        self.default = float(default)
        self.slope = float(slope)

    def _transform(self, x: float) -> float:
        if 1e-15 <= self.slope <= 1e15:
            return self.slope * x / (1.0 + self.slope * x)
        return x

    def map(self, position: float) -> float:
        normalized = (position - self.from_) / (self.to - self.from_)
        if normalized < 0.0 or normalized > 1.0:
            return self.default
        return self._transform(normalized) / self._transform(1.0) * (self.to2 - self.from2) + self.from2


class CyclingCounter:
    """Integer counter cycling through ``start, start+step, ..., stop``."""

    def __init__(self, start: int, stop: int, step: int = 1) -> None:
        if step <= 0:
            raise ValueError(f"step must be positive, got {step}")
        if stop < start:
            raise ValueError(f"stop ({stop}) must not be lower than start ({start})")
        self.start = start
        self.stop = stop
        self.step = step
        self.reset()

    def reset(self) -> None:
        self.current = self.start - self.step

    def next(self) -> int:
        self.current += self.step
        if self.current > self.stop:
            self.current = self.start
        return self.current


__all__ = ["ParamValMapper", "CyclingCounter"]
