# screenfit/geometry/homography.py
from __future__ import annotations
from typing import Sequence
import numpy as np

_PIVOT_EPS = 1e-10


class SingularMatrixError(ValueError):
    """The point correspondences do not define a projective map (collinear or repeated points)."""


def _as_quad(pts) -> np.ndarray:
    q = np.asarray(pts, dtype=np.float64)
    if q.size != 8:
        raise ValueError(f"Expected 4 points, got array of shape {q.shape}")
    return q.reshape(4, 2)


def solve_linear_system(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Gaussian elimination with partial pivoting.
    Raises SingularMatrixError when the best available pivot is below 1e-10.
    """
    a = np.array(a, dtype=np.float64)
    b = np.array(b, dtype=np.float64)
    n = len(b)
    for col in range(n):
        piv = col + int(np.argmax(np.abs(a[col:, col])))
        if abs(a[piv, col]) < _PIVOT_EPS:
            raise SingularMatrixError(f"singular system: pivot {a[piv, col]:.3e} in column {col}")
        if piv != col:
            a[[col, piv]] = a[[piv, col]]
            b[[col, piv]] = b[[piv, col]]
        factors = a[col + 1:, col] / a[col, col]
        a[col + 1:, col:] -= factors[:, None] * a[col, col:]
        b[col + 1:] -= factors * b[col]

    x = np.zeros(n)
    for row in range(n - 1, -1, -1):
        x[row] = (b[row] - a[row, row + 1:] @ x[row + 1:]) / a[row, row]
    return x


def solve_homography(src: Sequence, dst: Sequence) -> np.ndarray:
    """
    3x3 matrix H (H[2, 2] == 1) with H @ [x, y, 1] ~ [X, Y, 1] for each of the
    four (src, dst) pairs.

    Args:
        src: 4 points (x, y).
        dst: 4 points (X, Y), same order as ``src``.

    Returns:
        (3, 3) float64 matrix.

    Raises:
        SingularMatrixError for degenerate input (three collinear or repeated points).
    """
    s = _as_quad(src)
    d = _as_quad(dst)
    a = np.zeros((8, 8))
    b = np.zeros(8)
    for i, ((x, y), (X, Y)) in enumerate(zip(s, d)):
        a[2 * i] = [x, y, 1, 0, 0, 0, -X * x, -X * y]
        a[2 * i + 1] = [0, 0, 0, x, y, 1, -Y * x, -Y * y]
        b[2 * i] = X
        b[2 * i + 1] = Y
    h = solve_linear_system(a, b)
    return np.append(h, 1.0).reshape(3, 3)


def transform_point(H: np.ndarray, pt) -> tuple:
    x, y = float(pt[0]), float(pt[1])
    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    if abs(w) < 1e-12:
        raise SingularMatrixError(f"point ({x}, {y}) maps to infinity")
    return ((H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w,
            (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w)


def transform_points(H: np.ndarray, pts) -> np.ndarray:
    """Vectorized ``transform_point`` over an (N, 2) array. Points at infinity come back as inf/nan."""
    p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    x, y = p[:, 0], p[:, 1]
    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.column_stack([(H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w,
                                (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w])


def invert_homography(H: np.ndarray) -> np.ndarray:
    """Adjugate / determinant inverse, rescaled so the bottom-right entry is 1 when possible."""
    a, b, c, d, e, f, g, h, i = (float(v) for v in np.asarray(H, np.float64).ravel())
    det = a * (e * i - f * h) - b * (d * i - f * g) + c * (d * h - e * g)
    if abs(det) < _PIVOT_EPS:
        raise SingularMatrixError(f"matrix not invertible: det={det:.3e}")
    adj = np.array([
        [e * i - f * h, c * h - b * i, b * f - c * e],
        [f * g - d * i, a * i - c * g, c * d - a * f],
        [d * h - e * g, b * g - a * h, a * e - b * d],
    ])
    inv = adj / det
    if abs(inv[2, 2]) > 1e-12:
        inv = inv / inv[2, 2]
    return inv
