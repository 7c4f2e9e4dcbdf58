from __future__ import annotations

from dataclasses import dataclass


SUBSHELL_LABELS = {0: "s", 1: "p", 2: "d", 3: "f", 4: "g", 5: "h"}

# Real-orbital suffixes for the cos(m*phi) / sin(|m|*phi) convention used by the angular model.
_REAL_ORBITAL_SUFFIX: dict[tuple[int, int], str] = {
    (1, 0): "z",
    (1, 1): "x",
    (1, -1): "y",
    (2, 0): "z2",
    (2, 1): "xz",
    (2, -1): "yz",
    (2, 2): "x2-y2",
    (2, -2): "xy",
}


class InvalidQuantumState(ValueError):
    def __init__(self, n: int, l: int, m: int, reason: str) -> None:
        super().__init__(f"invalid quantum numbers (n={n}, l={l}, m={m}): {reason}")
        self.n = n
        self.l = l
        self.m = m


@dataclass(frozen=True)
class QuantumState:
    n: int
    l: int
    m: int

    def __post_init__(self) -> None:
        n, l, m = self.n, self.l, self.m
        if n < 1:
            raise InvalidQuantumState(n, l, m, "n must be at least 1")
        if l < 0:
            raise InvalidQuantumState(n, l, m, "l must be non-negative")
        if l >= n:
            raise InvalidQuantumState(n, l, m, "l must be smaller than n")
        if abs(m) > l:
            raise InvalidQuantumState(n, l, m, "|m| must not exceed l")

    @classmethod
    def from_values(cls, n, l, m) -> QuantumState:
        try:
            values = (int(n), int(l), int(m))
        except (TypeError, ValueError) as exc:
            raise InvalidQuantumState(n, l, m, "quantum numbers must be integers") from exc
        return cls(*values)

    @property
    def is_dz2(self) -> bool:
        return self.l == 2 and self.m == 0

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.n, self.l, self.m)


def orbital_label(state: QuantumState) -> str:
    """Conventional orbital name such as ``2p_z`` or ``3d_xy``."""
    base = f"{state.n}{SUBSHELL_LABELS.get(state.l, f'[l={state.l}]')}"
    if state.l == 0:
        return base
    suffix = _REAL_ORBITAL_SUFFIX.get((state.l, state.m))
    if suffix is None:
        return f"{base} (m={state.m})"
    return f"{base}_{suffix}"
