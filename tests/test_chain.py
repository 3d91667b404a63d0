from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.chain import build_candidate_chain, normalize_model_name

pytestmark = pytest.mark.unit

DEFAULT = "gemini-3-flash-preview"
FALLBACK = "gemini-flash-latest"
EXTRAS = ("gemini-flash-lite-latest", "gemini-robotics-er-1.5-preview")


def test_without_request_chain_starts_at_default() -> None:
    chain = build_candidate_chain(None, DEFAULT, FALLBACK, EXTRAS)
    assert chain == (DEFAULT, FALLBACK, *EXTRAS)


def test_requested_model_goes_first() -> None:
    chain = build_candidate_chain("gemini-2.5-pro", DEFAULT, FALLBACK, EXTRAS)
    assert chain == ("gemini-2.5-pro", DEFAULT, FALLBACK, *EXTRAS)


def test_requested_equal_to_default_is_not_duplicated() -> None:
    chain = build_candidate_chain(f"models/{DEFAULT}", DEFAULT, FALLBACK, ())
    assert chain == (DEFAULT, FALLBACK)


def test_duplicates_and_empties_are_dropped() -> None:
    chain = build_candidate_chain("", DEFAULT, DEFAULT, ("", FALLBACK, " ", FALLBACK))
    assert chain == (DEFAULT, FALLBACK)


def test_limit_truncates_but_keeps_requested_first() -> None:
    chain = build_candidate_chain("custom", DEFAULT, FALLBACK, EXTRAS, limit=2)
    assert chain == ("custom", DEFAULT)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("models/gemini-flash-latest", "gemini-flash-latest"),
        ("  gemini-flash-latest  ", "gemini-flash-latest"),
        ("", None),
        (None, None),
        ("models/", None),
    ],
)
def test_normalize_model_name(raw: str | None, expected: str | None) -> None:
    assert normalize_model_name(raw) == expected


_names = st.one_of(st.none(), st.sampled_from(["a", "b", "c", "models/a", " b ", ""]))


@given(
    requested=_names,
    default=_names,
    fallback=_names,
    extras=st.lists(_names.filter(lambda n: n is not None), max_size=4),
)
@settings(max_examples=100, deadline=None, derandomize=True)
def test_chain_is_deduplicated_and_requested_first(
    requested: str | None, default: str | None, fallback: str | None, extras: list[str]
) -> None:
    chain = build_candidate_chain(requested, default, fallback, extras)

    assert len(chain) == len(set(chain))
    assert all(chain)
    wanted = normalize_model_name(requested)
    if wanted:
        assert chain[0] == wanted
