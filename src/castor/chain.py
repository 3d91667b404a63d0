"""Candidate model chain: which models to try, in which order."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

_MODEL_PREFIX = "models/"


def normalize_model_name(name: str | None) -> str | None:
    """Trim whitespace and the ``models/`` resource prefix; empty becomes None."""
    if not name:
        return None
    trimmed = name.strip()
    if trimmed.startswith(_MODEL_PREFIX):
        trimmed = trimmed[len(_MODEL_PREFIX) :]
    return trimmed or None


def build_candidate_chain(
    requested: str | None,
    default: str | None,
    fallback: str | None,
    extras: Iterable[str] = (),
    *,
    limit: int | None = None,
) -> tuple[str, ...]:
    """Return the ordered, deduplicated list of models to attempt.

    An explicitly requested model always comes first, followed by the
    process default, the fallback, and the extra fallbacks.
    """
    requested = normalize_model_name(requested)
    default = normalize_model_name(default)

    if requested:
        ordered = [requested]
        if requested != default:
            ordered.append(default)
    else:
        ordered = [default]
    ordered.append(fallback)
    ordered.extend(extras)

    chain: list[str] = []
    for name in ordered:
        model = normalize_model_name(name)
        if model and model not in chain:
            chain.append(model)

    if limit is not None:
        chain = chain[: max(1, limit)]
    return tuple(chain)
