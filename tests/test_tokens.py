import timeit

import pytest

from linkdrop import tokens


def test_verify_accepts_identical_tokens():
    assert tokens.verify("a" * 32, "a" * 32)
    assert tokens.verify(b"secret-token", "secret-token")


def test_verify_rejects_mismatch_and_length_difference():
    expected = "TestTestTestTestTestTestTest1234"

    assert not tokens.verify("TestTestTestTestTestTestTest1235", expected)
    assert not tokens.verify("XestTestTestTestTestTestTest1234", expected)
    assert not tokens.verify(expected[:-1], expected)
    assert not tokens.verify(expected + "5", expected)
    assert not tokens.verify("", expected)


def test_verify_time_does_not_depend_on_matching_prefix():
    expected = tokens.generate(256)
    early = ("#" if expected[0] != "#" else "!") + expected[1:]
    late = expected[:-1] + ("#" if expected[-1] != "#" else "!")

    def best(candidate):
        return min(
            timeit.repeat(
                lambda: tokens.verify(candidate, expected), number=200, repeat=15
            )
        )

    early_time = best(early)
    late_time = best(late)

    # Both walk the whole token; a short-circuiting compare would make the
    # late mismatch many times slower than the early one.
    assert late_time / early_time < 3
    assert early_time / late_time < 3


def test_generate_uses_url_safe_alphabet():
    token = tokens.generate()

    assert len(token) == tokens.MIN_TOKEN_LENGTH
    assert set(token) <= set(tokens.ALPHABET)
    assert token != tokens.generate()


def test_generate_rejects_non_positive_length():
    with pytest.raises(ValueError):
        tokens.generate(0)
