"""Matrix and quaternion helpers.

Conventions: 4x4 matrices act on column vectors (``M @ [x, y, z, 1]``) with the
translation in ``M[:3, 3]``. Quaternions are ``[w, x, y, z]`` and multiply with
the Hamilton product.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def identity() -> np.ndarray:
    return np.eye(4, dtype=np.float64)


def matrix_from_row_major(values: Sequence[float]) -> np.ndarray:
    """Build a 4x4 matrix from 16 floats listed row by row."""
    if len(values) != 16:
        raise ValueError(f"A 4x4 matrix needs 16 values, got {len(values)}")
    return np.array(values, dtype=np.float64).reshape(4, 4)


# ---------------------------------------------------------------------------
# Quaternions, [w, x, y, z]
# ---------------------------------------------------------------------------


def quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product of two quaternions [w, x, y, z]."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ],
        dtype=np.float64,
    )


def quat_normalize(q: np.ndarray) -> np.ndarray:
    n = math.sqrt(float(np.dot(q, q)))
    if n < 1e-12:
        return IDENTITY_QUAT.copy()
    return np.asarray(q, dtype=np.float64) / n


def quat_from_axis_angle(axis: Sequence[float], radians: float) -> np.ndarray:
    """Unit quaternion rotating ``radians`` about ``axis`` (normalized here)."""
    a = np.asarray(axis, dtype=np.float64)
    length = math.sqrt(float(np.dot(a, a)))
    if length < 1e-12:
        raise ValueError("Rotation axis must not be zero")
    a = a / length
    half = radians * 0.5
    s = math.sin(half)
    return np.array([math.cos(half), a[0] * s, a[1] * s, a[2] * s], dtype=np.float64)


def quat_from_yaw_pitch_roll(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """Roll about Z, then pitch about X, then yaw about Y (radians)."""
    q_yaw = quat_from_axis_angle((0.0, 1.0, 0.0), yaw)
    q_pitch = quat_from_axis_angle((1.0, 0.0, 0.0), pitch)
    q_roll = quat_from_axis_angle((0.0, 0.0, 1.0), roll)
    return quat_mul(quat_mul(q_yaw, q_pitch), q_roll)


def quat_to_matrix(q: np.ndarray) -> np.ndarray:
    """3x3 rotation matrix of a unit quaternion [w, x, y, z]."""
    w, x, y, z = q
    return np.array(
        [
            [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z), 2.0 * (x * z + w * y)],
            [2.0 * (x * y + w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)],
            [2.0 * (x * z - w * y), 2.0 * (y * z + w * x), 1.0 - 2.0 * (x * x + y * y)],
        ],
        dtype=np.float64,
    )


def quat_from_matrix(m: np.ndarray) -> np.ndarray:
    """Unit quaternion of a pure 3x3 rotation matrix."""
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        q = [0.25 * s, (m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s]
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
        q = [(m[2, 1] - m[1, 2]) / s, 0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s]
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
        q = [(m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s]
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
        q = [(m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s]
    return quat_normalize(np.array(q, dtype=np.float64))


def quat_lerp(a: np.ndarray, b: np.ndarray, amount: float) -> np.ndarray:
    """Normalized linear blend, taking the shorter arc."""
    if float(np.dot(a, b)) >= 0.0:
        blended = (1.0 - amount) * a + amount * b
    else:
        blended = (1.0 - amount) * a - amount * b
    return quat_normalize(blended)


# ---------------------------------------------------------------------------
# 4x4 builders
# ---------------------------------------------------------------------------


def translation_matrix(t: Sequence[float]) -> np.ndarray:
    mat = identity()
    mat[0, 3] = t[0]
    mat[1, 3] = t[1]
    mat[2, 3] = t[2]
    return mat


def scale_matrix(s: Sequence[float]) -> np.ndarray:
    mat = identity()
    mat[0, 0] = s[0]
    mat[1, 1] = s[1]
    mat[2, 2] = s[2]
    return mat


def rotation_matrix(q: np.ndarray) -> np.ndarray:
    mat = identity()
    mat[:3, :3] = quat_to_matrix(q)
    return mat


def axis_angle_matrix(axis: Sequence[float], degrees: float) -> np.ndarray:
    return rotation_matrix(quat_from_axis_angle(axis, math.radians(degrees)))


def lookat_matrix(
    eye: Sequence[float], target: Sequence[float], up: Sequence[float]
) -> np.ndarray:
    """Placement of a viewer at ``eye`` looking at ``target`` down its -Z axis."""
    eye_v = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye_v
    forward_len = np.linalg.norm(forward)
    if forward_len < 1e-12:
        raise ValueError("lookat eye and target must differ")
    forward = forward / forward_len

    right = np.cross(forward, np.asarray(up, dtype=np.float64))
    right_len = np.linalg.norm(right)
    if right_len < 1e-12:
        raise ValueError("lookat up vector must not be parallel to the view direction")
    right = right / right_len
    true_up = np.cross(right, forward)

    mat = identity()
    mat[:3, 0] = right
    mat[:3, 1] = true_up
    mat[:3, 2] = -forward
    mat[:3, 3] = eye_v
    return mat


def compose_srt(scale: np.ndarray, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """T @ R @ S: scale first, then rotate, then translate."""
    mat = rotation_matrix(rotation)
    mat[:3, :3] = mat[:3, :3] * np.asarray(scale, dtype=np.float64)[np.newaxis, :]
    mat[:3, 3] = translation
    return mat


def decompose(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an affine matrix into (scale, rotation quaternion, translation).

    Raises:
        ValueError: If the matrix has a (near) zero scale axis.
    """
    translation = np.array(matrix[:3, 3], dtype=np.float64)
    basis = np.array(matrix[:3, :3], dtype=np.float64)
    scale = np.linalg.norm(basis, axis=0)
    if np.any(scale < 1e-12):
        raise ValueError("Could not decompose transformation matrix (zero scale)")
    if np.linalg.det(basis) < 0.0:
        scale[0] = -scale[0]
    rotation = quat_from_matrix(basis / scale[np.newaxis, :])
    return scale, rotation, translation
