"""Source handle grammar for flow edges.

A handle is a named output port on a node. Edges attach to a source handle:

- ``default``: Question outputs and Single-mode answers.
- ``variant-<i>``: Multiple-mode answers, one per variant (0-based index).
- ``combination-combo-<mask>``: Combinations-mode answers, one per non-empty
  subset of variants. ``<mask>`` is the subset bitmask (bit ``j`` set means
  variant ``j`` is selected), so an answer with ``n`` variants exposes
  ``2**n - 1`` combination handles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from questionflow.graph.models import AnswerMode, Variant

DEFAULT_HANDLE = "default"
VARIANT_PREFIX = "variant-"
COMBINATION_PREFIX = "combination-"
COMBO_PREFIX = "combo-"


@dataclass(frozen=True)
class Combination:
    """One non-empty subset of an answer's variants.

    Attributes:
        id: Combination id (``combo-<mask>``).
        mask: Subset bitmask.
        variant_indices: 1-based variant indices in ascending order.
        label: Variant texts of the subset joined with `` + ``.
    """

    id: str
    mask: int
    variant_indices: tuple[int, ...]
    label: str

    @property
    def handle(self) -> str:
        """Source handle an edge uses for this combination."""
        return f"{COMBINATION_PREFIX}{self.id}"

    @property
    def path_suffix(self) -> str:
        """Path segment for this combination, e.g. ``V1+V3``."""
        return "+".join(f"V{i}" for i in self.variant_indices)


def variant_handle(index: int) -> str:
    """Format the handle for the 0-based variant *index*."""
    return f"{VARIANT_PREFIX}{index}"


def combination_handle(mask: int) -> str:
    """Format the handle for the combination with bitmask *mask*."""
    return f"{COMBINATION_PREFIX}{COMBO_PREFIX}{mask}"


def parse_variant_handle(handle: str) -> int | None:
    """Return the 0-based variant index of a ``variant-<i>`` handle.

    Examples:
        >>> parse_variant_handle("variant-2")
        2
        >>> parse_variant_handle("default") is None
        True
    """
    if not handle.startswith(VARIANT_PREFIX):
        return None
    raw = handle.removeprefix(VARIANT_PREFIX)
    if not raw.isdigit():
        return None
    return int(raw)


def parse_combination_handle(handle: str) -> int | None:
    """Return the bitmask of a ``combination-combo-<mask>`` handle."""
    if not handle.startswith(COMBINATION_PREFIX):
        return None
    raw = handle.removeprefix(COMBINATION_PREFIX)
    if not raw.startswith(COMBO_PREFIX):
        return None
    raw = raw.removeprefix(COMBO_PREFIX)
    if not raw.isdigit() or int(raw) == 0:
        return None
    return int(raw)


def mask_to_indices(mask: int) -> tuple[int, ...]:
    """Expand a subset bitmask into ascending 1-based variant indices."""
    indices: list[int] = []
    position = 0
    while mask >> position:
        if mask & (1 << position):
            indices.append(position + 1)
        position += 1
    return tuple(indices)


def generate_combinations(variants: Sequence[Variant]) -> list[Combination]:
    """Enumerate every non-empty subset of *variants*.

    Subsets are ordered by bitmask value ascending, so the result for
    ``n`` variants has exactly ``2**n - 1`` entries.
    """
    combos: list[Combination] = []
    n = len(variants)
    for mask in range(1, 2**n):
        indices = mask_to_indices(mask)
        texts = [variants[i - 1].text or f"Answer {i}" for i in indices]
        combos.append(
            Combination(
                id=f"{COMBO_PREFIX}{mask}",
                mask=mask,
                variant_indices=indices,
                label=" + ".join(texts),
            )
        )
    return combos


def valid_handles(mode: AnswerMode, variant_count: int) -> list[str]:
    """List every handle an answer with *mode* and *variant_count* exposes."""
    from questionflow.graph.models import AnswerMode

    if mode is AnswerMode.SINGLE:
        return [DEFAULT_HANDLE]
    if mode is AnswerMode.MULTIPLE:
        return [variant_handle(i) for i in range(variant_count)]
    return [combination_handle(mask) for mask in range(1, 2**variant_count)]


def is_valid_answer_handle(handle: str, mode: AnswerMode, variant_count: int) -> bool:
    """Check whether *handle* exists on an answer with the given shape."""
    from questionflow.graph.models import AnswerMode

    if mode is AnswerMode.SINGLE:
        return handle == DEFAULT_HANDLE
    if mode is AnswerMode.MULTIPLE:
        index = parse_variant_handle(handle)
        return index is not None and index < variant_count
    mask = parse_combination_handle(handle)
    return mask is not None and mask < 2**variant_count
