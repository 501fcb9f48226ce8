"""Coded diagnostics for lossy-but-valid scene input.

Every silent downgrade in the importer goes through ``emit_warning`` with a
stable code so callers can suppress it or promote it to a hard failure.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass

from skelmesh.errors import ValidationError

CODE_DESCRIPTIONS: dict[str, str] = {
    "W01": "non-linear interpolation forced to linear",
    "W02": "vertex influences truncated to four joints",
    "W03": "vertices with zero total skin weight",
    "W04": "unsupported animation target ignored",
    "W05": "repeated input semantic ignored",
}

KNOWN_CODES: frozenset[str] = frozenset(CODE_DESCRIPTIONS)


class SkelmeshWarning(UserWarning):
    """Warning with a machine-readable code."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(f"[{code}] {message}")


@dataclass(frozen=True)
class WarningPolicy:
    """Controls how individual warning codes are handled."""

    warn_as_error: frozenset[str] = frozenset()
    suppress: frozenset[str] = frozenset()


def emit_warning(code: str, message: str, *, policy: WarningPolicy | None = None) -> None:
    """Emit a coded warning, respecting the active policy.

    Suppressed codes are dropped, codes in ``warn_as_error`` raise
    ``ValidationError`` and everything else is issued as a ``SkelmeshWarning``.
    """
    if code not in KNOWN_CODES:
        raise ValueError(f"Unknown warning code: {code!r}")

    if policy is not None:
        if code in policy.suppress:
            return
        if code in policy.warn_as_error:
            raise ValidationError(f"[{code}] {message}")

    warnings.warn(SkelmeshWarning(code, message), stacklevel=2)


def parse_code_list(raw: str) -> frozenset[str]:
    """Parse a comma-separated W-code list; ``all`` selects every known code.

    Raises ``ValueError`` for unknown codes.
    """
    codes: set[str] = set()
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        if token.lower() == "all":
            codes.update(KNOWN_CODES)
            continue
        if token not in KNOWN_CODES:
            raise ValueError(f"Unknown warning code: {token!r} (known: {sorted(KNOWN_CODES)})")
        codes.add(token)
    return frozenset(codes)
