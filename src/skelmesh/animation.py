"""Joint keyframe animation: keyframes, samplers, channels and animations."""

from __future__ import annotations

import bisect
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

from skelmesh.errors import UnsupportedFeatureError, ValidationError
from skelmesh.hierarchy import JointHierarchy
from skelmesh.models import BEHAVIOURS
from skelmesh.transforms import (
    IDENTITY_QUAT,
    compose_srt,
    decompose,
    matrix_from_row_major,
    quat_from_axis_angle,
    quat_from_yaw_pitch_roll,
    quat_lerp,
    quat_mul,
)
from skelmesh.warning_policy import WarningPolicy, emit_warning

SUPPORTED_BEHAVIOURS = ("CONSTANT", "CYCLE")

_AXES = {"X": 0, "Y": 1, "Z": 2}
_UNIT_AXES = {"X": (1.0, 0.0, 0.0), "Y": (0.0, 1.0, 0.0), "Z": (0.0, 0.0, 1.0)}


@dataclass(frozen=True, eq=False)
class JointAnimationKeyframe:
    time: float
    scale: np.ndarray
    rotation: np.ndarray  # [w, x, y, z]
    translation: np.ndarray

    @classmethod
    def identity(cls, time: float) -> JointAnimationKeyframe:
        return cls(
            time=float(time),
            scale=np.ones(3, dtype=np.float64),
            rotation=IDENTITY_QUAT.copy(),
            translation=np.zeros(3, dtype=np.float64),
        )

    @classmethod
    def from_matrix(cls, time: float, matrix: np.ndarray) -> JointAnimationKeyframe:
        """Keyframe holding the scale, rotation and translation of ``matrix``."""
        try:
            scale, rotation, translation = decompose(matrix)
        except ValueError as e:
            raise ValidationError(f"Keyframe at t={time}: {e}") from e
        return cls(float(time), scale, rotation, translation)

    @property
    def transform(self) -> np.ndarray:
        """Composed local matrix, T @ R @ S."""
        return compose_srt(self.scale, self.rotation, self.translation)

    @staticmethod
    def lerp(
        a: JointAnimationKeyframe, b: JointAnimationKeyframe, amount: float
    ) -> JointAnimationKeyframe:
        """Blend two keyframes; rotation uses normalized quaternion lerp."""
        return JointAnimationKeyframe(
            time=a.time + (b.time - a.time) * amount,
            scale=a.scale + (b.scale - a.scale) * amount,
            rotation=quat_lerp(a.rotation, b.rotation, amount),
            translation=a.translation + (b.translation - a.translation) * amount,
        )


class JointAnimationSampler:
    """Keyframe track of one joint with pre- and post-range behaviour.

    Only linear interpolation is evaluated. Outside the keyframe range
    ``CONSTANT`` clamps to the nearest boundary and ``CYCLE`` wraps around the
    track (before the range it restarts at the first keyframe).
    """

    def __init__(
        self,
        keyframes: Sequence[JointAnimationKeyframe],
        interpolation: str = "LINEAR",
        pre_behaviour: str = "CONSTANT",
        post_behaviour: str = "CYCLE",
        *,
        policy: WarningPolicy | None = None,
    ) -> None:
        if not keyframes:
            raise ValidationError("Animation sampler needs at least one keyframe")
        times = [k.time for k in keyframes]
        for i in range(1, len(times)):
            if times[i] < times[i - 1]:
                raise ValidationError(
                    f"Keyframe times must not decrease: {times[i - 1]} then {times[i]}"
                )
        for behaviour in (pre_behaviour, post_behaviour):
            if behaviour not in BEHAVIOURS:
                raise ValidationError(f"Unknown extrapolation behaviour {behaviour!r}")

        if interpolation != "LINEAR":
            emit_warning(
                "W01",
                f"Interpolation {interpolation!r} is not supported; using LINEAR",
                policy=policy,
            )

        self._keyframes = tuple(keyframes)
        self._times = times
        self.interpolation = "LINEAR"
        self.pre_behaviour = pre_behaviour
        self.post_behaviour = post_behaviour

    @property
    def keyframes(self) -> tuple[JointAnimationKeyframe, ...]:
        return self._keyframes

    @property
    def start_time(self) -> float:
        return self._times[0]

    @property
    def end_time(self) -> float:
        return self._times[-1]

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def __len__(self) -> int:
        return len(self._keyframes)

    def _region_time(self, time: float) -> float:
        if time < self.start_time:
            if self.pre_behaviour in SUPPORTED_BEHAVIOURS:
                return self.start_time
            raise UnsupportedFeatureError(
                f"Pre-range behaviour {self.pre_behaviour!r} is not supported "
                f"(supported: {list(SUPPORTED_BEHAVIOURS)})"
            )
        if time > self.end_time:
            if self.post_behaviour == "CONSTANT":
                return self.end_time
            if self.post_behaviour == "CYCLE":
                if self.duration <= 0.0:
                    return self.start_time
                return self.start_time + math.fmod(time - self.start_time, self.duration)
            raise UnsupportedFeatureError(
                f"Post-range behaviour {self.post_behaviour!r} is not supported "
                f"(supported: {list(SUPPORTED_BEHAVIOURS)})"
            )
        return time

    def interpolated_keyframe(self, time: float) -> JointAnimationKeyframe:
        """Keyframe at ``time``; exact keyframe times return the stored keyframe."""
        t = self._region_time(float(time))
        k = bisect.bisect_right(self._times, t) - 1
        k = max(k, 0)
        if self._times[k] == t or k == len(self._keyframes) - 1:
            return self._keyframes[k]
        a = self._keyframes[k]
        b = self._keyframes[k + 1]
        span = b.time - a.time
        return JointAnimationKeyframe.lerp(a, b, (t - a.time) / span)

    def sample(self, time: float) -> np.ndarray:
        """Local joint transform at ``time``."""
        return self.interpolated_keyframe(time).transform


# ---------------------------------------------------------------------------
# Channel values to keyframes
# ---------------------------------------------------------------------------


def split_target(target: str) -> tuple[str, str, str | None]:
    """Split ``node/member.component`` into its three parts."""
    node_id, _, path = target.partition("/")
    member, _, component = path.partition(".")
    return node_id, member, component or None


def value_width(member: str, component: str | None) -> int:
    """Floats per keyframe for a channel target member."""
    if component is not None:
        return 1
    if member.lower() in ("matrix", "transform"):
        return 16
    return 3


def is_supported_member(member: str, component: str | None) -> bool:
    """Whether ``keyframe_from_channel_value`` understands this target."""
    key = member.lower()
    if component is None:
        return key in ("matrix", "transform") or key.startswith(("trans", "rot", "scal"))
    comp = component.upper()
    if key.startswith(("trans", "scal")):
        return comp in _AXES
    return key.startswith("rot") and comp == "ANGLE" and member[-1:].upper() in _UNIT_AXES


def keyframe_from_channel_value(
    member: str,
    component: str | None,
    value: float | Sequence[float],
    time: float,
    *,
    policy: WarningPolicy | None = None,
) -> JointAnimationKeyframe:
    """Build a keyframe from one channel sample.

    ``member`` is the animated transform element (``translate``, ``rotateX``,
    ``scale``, ``matrix``) and ``component`` the optional scalar component
    (``X``, ``ANGLE``, ...). Angles are degrees; vector rotations are yaw,
    pitch and roll in radians.
    """
    key = member.lower()
    comp = component.upper() if component else None
    kf = JointAnimationKeyframe.identity(time)
    scale, rotation, translation = kf.scale, kf.rotation, kf.translation

    if key in ("matrix", "transform"):
        return JointAnimationKeyframe.from_matrix(time, matrix_from_row_major(list(value)))

    if comp is None:
        vec = np.asarray(value, dtype=np.float64)
        if vec.shape != (3,):
            raise ValidationError(f"Channel member {member!r} needs 3 values per key")
        if key.startswith("trans"):
            translation = vec
        elif key.startswith("rot"):
            rotation = quat_from_yaw_pitch_roll(vec[0], vec[1], vec[2])
        elif key.startswith("scal"):
            scale = vec
        else:
            emit_warning("W04", f"Animation target member {member!r} ignored", policy=policy)
        return JointAnimationKeyframe(kf.time, scale, rotation, translation)

    datum = float(value)
    if key.startswith("trans") and comp in _AXES:
        translation[_AXES[comp]] = datum
    elif key.startswith("scal") and comp in _AXES:
        scale[_AXES[comp]] = datum
    elif key.startswith("rot") and comp == "ANGLE" and member[-1:].upper() in _UNIT_AXES:
        rotation = quat_from_axis_angle(_UNIT_AXES[member[-1].upper()], math.radians(datum))
    else:
        emit_warning(
            "W04", f"Animation target {member}.{component} ignored", policy=policy
        )
    return JointAnimationKeyframe(kf.time, scale, rotation, translation)


def combine_samplers(samplers: Sequence[JointAnimationSampler]) -> JointAnimationSampler:
    """Merge single-element tracks of one joint into one track.

    Per keyframe index: scales multiply, translations add and rotations
    compose as ``q_i * rotation`` in channel order. Times come from the first
    track.
    """
    if not samplers:
        raise ValidationError("Nothing to combine")
    if len(samplers) == 1:
        return samplers[0]
    frames = len(samplers[0])
    if any(len(s) != frames for s in samplers):
        raise ValidationError(
            "Animations affecting the same joint must have the same number of keyframes"
        )

    combined = []
    for i in range(frames):
        scale = np.ones(3, dtype=np.float64)
        rotation = IDENTITY_QUAT.copy()
        translation = np.zeros(3, dtype=np.float64)
        for sampler in samplers:
            add = sampler.keyframes[i]
            scale = scale * add.scale
            translation = translation + add.translation
            rotation = quat_mul(add.rotation, rotation)
        combined.append(
            JointAnimationKeyframe(samplers[0].keyframes[i].time, scale, rotation, translation)
        )
    first = samplers[0]
    return JointAnimationSampler(combined, "LINEAR", first.pre_behaviour, first.post_behaviour)


# ---------------------------------------------------------------------------
# Animations
# ---------------------------------------------------------------------------


@dataclass
class JointAnimationChannel:
    sampler: JointAnimationSampler
    target: int  # joint index


@dataclass
class JointAnimation:
    channels: list[JointAnimationChannel]
    name: str | None = None
    global_id: str | None = None
    scoped_id: str | None = None

    @property
    def num_frames(self) -> int:
        return max((len(c.sampler) for c in self.channels), default=0)

    @property
    def start_time(self) -> float:
        return min((c.sampler.start_time for c in self.channels), default=0.0)

    @property
    def end_time(self) -> float:
        return max((c.sampler.end_time for c in self.channels), default=0.0)

    def sample(self, time: float, hierarchy: JointHierarchy) -> None:
        """Write every channel's local transform at ``time`` into ``hierarchy``."""
        if not self.channels:
            raise ValidationError(f"Animation {self.name!r} contains no channels")
        for channel in self.channels:
            hierarchy[channel.target].local_transform = channel.sampler.sample(time)


def combine_animations(animations: Iterable[JointAnimation]) -> list[JointAnimation]:
    """Merge single-channel animations that drive the same joint.

    Multi-channel animations pass through unchanged after the merged ones.
    """
    groups: dict[int, list[JointAnimation]] = {}
    rest: list[JointAnimation] = []
    for anim in animations:
        if len(anim.channels) == 1:
            groups.setdefault(anim.channels[0].target, []).append(anim)
        else:
            rest.append(anim)

    combined = []
    for target, group in groups.items():
        if len(group) == 1:
            combined.append(group[0])
            continue
        sampler = combine_samplers([a.channels[0].sampler for a in group])
        names = [a.name for a in group if a.name]
        ids = [a.global_id for a in group if a.global_id]
        combined.append(
            JointAnimation(
                channels=[JointAnimationChannel(sampler, target)],
                name="+".join(names) if names else None,
                global_id="\n".join(ids) if ids else None,
            )
        )
    return combined + rest


@dataclass
class JointAnimationList:
    """Animations of a model, addressable by position, name or id."""

    animations: list[JointAnimation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.animations)

    def __iter__(self) -> Iterator[JointAnimation]:
        return iter(self.animations)

    def __getitem__(self, key: int | str) -> JointAnimation:
        if isinstance(key, int):
            return self.animations[key]
        found = self.get(key)
        if found is None:
            raise KeyError(key)
        return found

    def get(self, key: str) -> JointAnimation | None:
        for anim in self.animations:
            if anim.name == key:
                return anim
        for anim in self.animations:
            if anim.global_id == key:
                return anim
        return None


def sample_and_propagate(
    animation: JointAnimation, time: float, hierarchy: JointHierarchy
) -> None:
    """Sample every channel, then recompute absolute transforms root first."""
    animation.sample(time, hierarchy)
    hierarchy.update_absolute_transforms()
