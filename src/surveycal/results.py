"""Result container shared by the calibration solvers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


@dataclass
class CalibrationResult:
    """Outcome of a successful calibration.

    Solvers raise instead of returning a partial result, so ``g`` is always
    finite and, for bounded methods, inside ``bounds``.
    """
    g: np.ndarray
    method: str
    iterations: int
    max_error: float
    bounds: Optional[Tuple[float, float]] = None
    lambda_: Optional[float] = None
    strategy: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)

    def weights(self, d: np.ndarray) -> np.ndarray:
        """Calibrated weights d * g."""
        return np.asarray(d, dtype=float) * self.g

    @property
    def weight_range(self) -> float:
        return float(self.g.max() - self.g.min())

    def summary(self) -> str:
        lines = [
            f"Calibration Result:",
            f"  Method: {self.method}",
            f"  Iterations: {self.iterations}",
            f"  Max error: {self.max_error:.2e}",
            f"  Ratio range: [{self.g.min():.4f}, {self.g.max():.4f}]",
        ]
        if self.bounds is not None:
            lines.append(f"  Bounds: L={self.bounds[0]:.4f}, U={self.bounds[1]:.4f}")
        if self.lambda_ is not None:
            lines.append(f"  Lambda: {self.lambda_:.4g}")
        return "\n".join(lines)
