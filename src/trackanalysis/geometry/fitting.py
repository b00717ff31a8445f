"""
Incremental point-set fitters for path segmentation.

A single ``GeometricFit`` keeps running moment sums (x, y, z = x^2 + y^2 and their
products) about a local origin, so points can be added or removed in O(1) and two
fits over disjoint points can be joined without rescanning. The fit ``kind`` decides
which model the sums are interpreted as:

* ``SPOT``  - a stationary point (the mean),
* ``LINE``  - a total-least-squares straight line ``a*y + b*x + c = 0`` with a^2 + b^2 = 1,
* ``ARC``   - a Hyper algebraic circle fit (Al-Sharadqah & Chernov, 2009).

Probabilities are chi-square survival values of the unexplained variance under
isotropic Gaussian noise of a supplied variance.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy import linalg, stats


class FitKind(Enum):
    SPOT = "spot"
    LINE = "line"
    ARC = "arc"


@dataclass(frozen=True)
class SpotParams:
    x0: float
    y0: float
    mean_variance: float


@dataclass(frozen=True)
class LineParams:
    a: float
    b: float
    c: float
    unfit_variance: float
    total_variance: float


@dataclass(frozen=True)
class ArcParams:
    x0: float
    y0: float
    radius: float
    mse: float


_NAN_SPOT = SpotParams(math.nan, math.nan, math.nan)
_NAN_LINE = LineParams(math.nan, math.nan, math.nan, math.nan, math.nan)
_NAN_ARC = ArcParams(math.nan, math.nan, math.inf, math.inf)


class GeometricFit:
    def __init__(self, kind: FitKind = FitKind.SPOT) -> None:
        self.kind = kind
        self.reset()

    def reset(self) -> "GeometricFit":
        self.ox = 0.0
        self.oy = 0.0
        self.sx = 0.0
        self.sy = 0.0
        self.sxx = 0.0
        self.syy = 0.0
        self.sxy = 0.0
        self.sxz = 0.0
        self.syz = 0.0
        self.szz = 0.0
        self.n = 0
        self.spot: SpotParams = _NAN_SPOT
        self.line: LineParams = _NAN_LINE
        self.arc: ArcParams = _NAN_ARC
        return self

    def copy(self, kind: Optional[FitKind] = None) -> "GeometricFit":
        other = GeometricFit(self.kind if kind is None else kind)
        other.ox, other.oy = self.ox, self.oy
        other.sx, other.sy = self.sx, self.sy
        other.sxx, other.syy, other.sxy = self.sxx, self.syy, self.sxy
        other.sxz, other.syz, other.szz = self.sxz, self.syz, self.szz
        other.n = self.n
        other.spot, other.line, other.arc = self.spot, self.line, self.arc
        return other

    def with_kind(self, kind: FitKind) -> "GeometricFit":
        """Copy of the sums interpreted as ``kind``, already fitted."""
        return self.copy(kind).fit()

    def __len__(self) -> int:
        return self.n

    # Running sums

    def _accumulate(self, x: float, y: float, sign: float) -> None:
        x -= self.ox
        y -= self.oy
        z = x * x + y * y
        self.sx += sign * x
        self.sy += sign * y
        self.sxx += sign * x * x
        self.syy += sign * y * y
        self.sxy += sign * x * y
        self.sxz += sign * x * z
        self.syz += sign * y * z
        self.szz += sign * z * z

    def add(self, x: float, y: float) -> None:
        if self.n == 0:
            kind = self.kind
            self.reset()
            self.kind = kind
            self.ox = float(x)
            self.oy = float(y)
            self.n = 1
            return
        self._accumulate(float(x), float(y), 1.0)
        self.n += 1

    def remove(self, x: float, y: float) -> None:
        if self.n <= 1:
            kind = self.kind
            self.reset()
            self.kind = kind
            return
        self._accumulate(float(x), float(y), -1.0)
        self.n -= 1

    def move_origin(self, dx: float, dy: float) -> None:
        """Re-express every sum about the origin shifted by (dx, dy)."""
        X = float(dx)
        Y = float(dy)
        Z = X * X + Y * Y
        n = self.n
        sx, sy, sxx, syy, sxy, sxz, syz = self.sx, self.sy, self.sxx, self.syy, self.sxy, self.sxz, self.syz
        self.szz += (
            -4.0 * (X * sxz + Y * syz)
            + (4.0 * X * X + 2.0 * Z) * sxx
            + (4.0 * Y * Y + 2.0 * Z) * syy
            + 8.0 * X * Y * sxy
            - 4.0 * Z * (X * sx + Y * sy)
            + n * Z * Z
        )
        self.syz += -Y * (3.0 * syy + sxx + n * Z) + 2.0 * X * (Y * sx - sxy) + (2.0 * Y * Y + Z) * sy
        self.sxz += -X * (3.0 * sxx + syy + n * Z) + 2.0 * Y * (X * sy - sxy) + (2.0 * X * X + Z) * sx
        self.sxy += n * X * Y - Y * sx - X * sy
        self.syy += n * Y * Y - 2.0 * Y * sy
        self.sxx += n * X * X - 2.0 * X * sx
        self.sy -= n * Y
        self.sx -= n * X
        self.ox += X
        self.oy += Y

    def join(self, other: "GeometricFit") -> "GeometricFit":
        """Absorb the points of a fit over a disjoint point set."""
        if other.n == 0:
            return self
        if self.n == 0:
            kind = self.kind
            theirs = other.copy(kind)
            self.__dict__.update(theirs.__dict__)
            return self
        moved = other.copy()
        if moved.ox != self.ox or moved.oy != self.oy:
            moved.move_origin(self.ox - moved.ox, self.oy - moved.oy)
        self.sx += moved.sx
        self.sy += moved.sy
        self.sxx += moved.sxx
        self.syy += moved.syy
        self.sxy += moved.sxy
        self.sxz += moved.sxz
        self.syz += moved.syz
        self.szz += moved.szz
        self.n += moved.n
        return self

    def centered_scatter(self) -> Tuple[float, float, float]:
        if self.n == 0:
            return 0.0, 0.0, 0.0
        inv = 1.0 / self.n
        dxx = self.sxx - self.sx * self.sx * inv
        dyy = self.syy - self.sy * self.sy * inv
        dxy = self.sxy - self.sx * self.sy * inv
        return dxx, dyy, dxy

    @property
    def mean(self) -> Tuple[float, float]:
        if self.n == 0:
            return math.nan, math.nan
        return self.ox + self.sx / self.n, self.oy + self.sy / self.n

    # Fitting

    def fit(self) -> "GeometricFit":
        if self.kind is FitKind.SPOT:
            self._fit_spot()
        elif self.kind is FitKind.LINE:
            self._fit_line()
        else:
            self._fit_arc()
        return self

    def _fit_spot(self) -> None:
        if self.n == 0:
            self.spot = _NAN_SPOT
            return
        dxx, dyy, _ = self.centered_scatter()
        mx, my = self.mean
        self.spot = SpotParams(mx, my, max(0.0, (dxx + dyy) / self.n))

    def _fit_line(self) -> None:
        if self.n < 2:
            self.line = _NAN_LINE
            return
        dxx, dyy, dxy = self.centered_scatter()
        half_trace = 0.5 * (dxx + dyy)
        spread = math.hypot(0.5 * (dxx - dyy), dxy)
        lam_min = max(0.0, half_trace - spread)
        theta = 0.5 * math.atan2(2.0 * dxy, dxx - dyy)
        # normal to the major axis (cos theta, sin theta)
        b = -math.sin(theta)
        a = math.cos(theta)
        mx, my = self.mean
        c = -(a * my + b * mx)
        self.line = LineParams(a, b, c, lam_min, max(0.0, dxx + dyy))

    def _fit_arc(self) -> None:
        if self.n < 3:
            self.arc = _NAN_ARC
            return
        mx, my = self.mean
        centered = self.copy()
        centered.move_origin(mx - self.ox, my - self.oy)
        inv = 1.0 / centered.n
        X = centered.sxx * inv
        Y = centered.syy * inv
        A = centered.sxy * inv
        B = centered.sxz * inv
        C = centered.syz * inv
        Z = centered.szz * inv
        P = X + Y
        if P <= 0.0:
            self.arc = _NAN_ARC
            return
        M = np.array([[Z, B, C, P], [B, X, A, 0.0], [C, A, Y, 0.0], [P, 0.0, 0.0, 1.0]], dtype=np.float64)
        N = np.array([[8.0 * P, 0.0, 0.0, 2.0], [0.0, 1.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0], [2.0, 0.0, 0.0, 0.0]], dtype=np.float64)
        try:
            _, vecs = linalg.eig(M, N)
        except linalg.LinAlgError:
            self.arc = _NAN_ARC
            return

        best: Optional[np.ndarray] = None
        best_eta = math.inf
        for k in range(vecs.shape[1]):
            v = np.real(vecs[:, k])
            if not np.all(np.isfinite(v)):
                continue
            q = float(v @ N @ v)
            if q <= 0.0:
                continue
            eta = max(0.0, float(v @ M @ v) / q)
            if eta < best_eta:
                best_eta = eta
                best = v
        if best is None or abs(best[0]) < 1e-12 * max(1.0, float(np.max(np.abs(best)))):
            self.arc = _NAN_ARC
            return
        a0, a1, a2, a3 = (float(t) for t in best)
        half_inv = 0.5 / a0
        disc = a1 * a1 + a2 * a2 - 4.0 * a0 * a3
        if disc <= 0.0:
            self.arc = _NAN_ARC
            return
        self.arc = ArcParams(
            x0=-a1 * half_inv + mx,
            y0=-a2 * half_inv + my,
            radius=math.sqrt(disc) * abs(half_inv),
            mse=best_eta,
        )

    # Queries

    def squared_residual(self, x: float, y: float) -> float:
        if self.kind is FitKind.SPOT:
            return (x - self.spot.x0) ** 2 + (y - self.spot.y0) ** 2
        if self.kind is FitKind.LINE:
            p = self.line
            off = p.a * y + p.b * x + p.c
            return off * off
        p = self.arc
        if not math.isfinite(p.radius):
            return math.inf
        r = math.hypot(x - p.x0, y - p.y0)
        return (r - p.radius) ** 2

    def unfit_variance(self) -> float:
        if self.kind is FitKind.SPOT:
            return self.spot.mean_variance * self.n
        if self.kind is FitKind.LINE:
            return self.line.unfit_variance
        return self.n * self.arc.mse

    def probability(self, noise_variance: float) -> float:
        if noise_variance <= 0.0:
            return 0.0
        if self.kind is FitKind.SPOT:
            if self.n < 2:
                return 1.0
            dxx, dyy, _ = self.centered_scatter()
            chi = max(0.0, dxx + dyy) / self.n * (self.n - 1) / noise_variance
            return float(stats.chi2.sf(chi, self.n - 1))
        if self.kind is FitKind.LINE:
            if self.n < 3:
                return 1.0
            chi = self.line.unfit_variance / noise_variance
            return float(stats.chi2.sf(chi, self.n - 2))
        if self.n < 4 or not math.isfinite(self.arc.mse):
            return 0.0
        chi = self.unfit_variance() / noise_variance
        return float(stats.chi2.sf(chi, self.n - 3))

    def non_round_probability(self, noise_variance: float, p_not_round: float = 0.05) -> float:
        """Line probability, zero when the points are not elongated enough to call a line."""
        if self.n < 3:
            return 1.0
        unfit = self.line.unfit_variance
        if unfit > 0.0:
            f_stat = 0.5 * self.line.total_variance / unfit
            if 1.0 - float(stats.f.cdf(f_stat, self.n - 1, self.n - 2)) > p_not_round:
                return 0.0
        if noise_variance <= 0.0:
            return 0.0
        return float(stats.chi2.sf(unfit / noise_variance, self.n - 2))

    def trend_t_score(self) -> float:
        """t statistic of the least-squares slope of y against x."""
        if self.n < 3:
            return 0.0
        dxx, dyy, dxy = self.centered_scatter()
        if dxx <= 0.0:
            return 0.0
        slope = dxy / dxx
        resid = dyy - dxy * dxy / dxx
        s2 = resid / (self.n - 2)
        if s2 <= 0.0:
            return 0.0 if slope == 0.0 else math.inf
        return abs(slope) * math.sqrt(dxx / s2)

    def direction(self, x0: float, y0: float, x1: float, y1: float) -> Tuple[float, float]:
        """Displacement from (x0, y0) to (x1, y1) projected onto the local fit direction."""
        dx = x1 - x0
        dy = y1 - y0
        if self.kind is FitKind.LINE:
            tx, ty = self.line.a, -self.line.b
        elif self.kind is FitKind.ARC:
            tx = 2.0 * self.arc.y0 - (y0 + y1)
            ty = (x0 + x1) - 2.0 * self.arc.x0
        else:
            return dx, dy
        norm2 = tx * tx + ty * ty
        if norm2 <= 0.0 or not math.isfinite(norm2):
            return 0.0, 0.0
        lam = (dx * tx + dy * ty) / norm2
        return tx * lam, ty * lam

    def snap(self, x: float, y: float) -> Tuple[float, float]:
        """Nearest point on the fitted geometry."""
        if self.kind is FitKind.LINE:
            p = self.line
            off = p.a * y + p.b * x + p.c
            return x - off * p.b, y - off * p.a
        if self.kind is FitKind.ARC:
            p = self.arc
            if not math.isfinite(p.radius):
                return x, y
            rx = x - p.x0
            ry = y - p.y0
            r = math.hypot(rx, ry)
            if r <= 0.0:
                return x, y
            return p.x0 + rx * p.radius / r, p.y0 + ry * p.radius / r
        return self.spot.x0, self.spot.y0

    def parallel_coordinate(self, x: float, y: float) -> float:
        return self.line.a * x - self.line.b * y

    def angular_coordinate(self, x: float, y: float) -> float:
        return math.atan2(y - self.arc.y0, x - self.arc.x0)

    def coordinate(self, x: float, y: float) -> float:
        """Position along the fit: distance along a line, angle around an arc."""
        if self.kind is FitKind.LINE:
            return self.parallel_coordinate(x, y)
        if self.kind is FitKind.ARC:
            return self.angular_coordinate(x, y)
        return 0.0

    def arc_angle(self, x0: float, y0: float, x1: float, y1: float) -> float:
        """Signed angle swept around the arc center between two points."""
        ux, uy = x0 - self.arc.x0, y0 - self.arc.y0
        vx, vy = x1 - self.arc.x0, y1 - self.arc.y0
        return math.atan2(ux * vy - uy * vx, ux * vx + uy * vy)
