"""Tests for the TOTP engine."""

import pyotp
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from secondfactor.mfa.totp import TotpEngine, normalize_code

SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
engine = TotpEngine()


def test_codes_match_rfc6238_reference() -> None:
    """Codes agree with pyotp's own TOTP implementation."""
    at = 1_700_000_000
    assert engine.code_at(SECRET, at) == pyotp.TOTP(SECRET).at(at)


def test_rfc6238_sha1_vector() -> None:
    # RFC 6238 appendix B, T = 59s, 8 digits, ASCII key "12345678901234567890"
    secret = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
    assert TotpEngine(digits=8).code_at(secret, 59) == "94287082"


def test_match_returns_step() -> None:
    at = 1_700_000_000
    code = engine.code_at(SECRET, at)
    assert engine.match_step(SECRET, code, at) == at // 30


@pytest.mark.parametrize("offset", [-30, 30])
def test_adjacent_steps_accepted(offset: int) -> None:
    at = 1_700_000_010
    code = engine.code_at(SECRET, at)
    assert engine.match_step(SECRET, code, at + offset) == at // 30


@pytest.mark.parametrize("offset", [-60, 60, 90])
def test_distant_steps_rejected(offset: int) -> None:
    at = 1_700_000_010
    code = engine.code_at(SECRET, at)
    assert engine.match_step(SECRET, code, at + offset) != at // 30


@pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 34 5x"])
def test_malformed_codes_never_match(code: str) -> None:
    assert engine.match_step(SECRET, code, 1_700_000_000) is None


def test_spaces_in_code_are_ignored() -> None:
    at = 1_700_000_000
    code = engine.code_at(SECRET, at)
    assert engine.match_step(SECRET, f"{code[:3]} {code[3:]}", at) == at // 30
    assert normalize_code(" 123-456 ") == "123456"


def test_provisioning_uri() -> None:
    uri = TotpEngine(issuer="SecondFactor").provisioning_uri(SECRET, "alice@example.com")
    assert uri.startswith("otpauth://totp/")
    assert "issuer=SecondFactor" in uri
    assert f"secret={SECRET}" in uri


def test_invalid_digits_rejected() -> None:
    with pytest.raises(ValueError):
        TotpEngine(digits=7)


@settings(max_examples=50, deadline=None)
@given(
    step=st.integers(min_value=2, max_value=10**9),
    skew=st.integers(min_value=-1, max_value=1),
    position=st.integers(min_value=0, max_value=29),
)
def test_code_accepted_within_one_step_of_skew(step: int, skew: int, position: int) -> None:
    """
    Property: a code generated at step s is accepted at any time in steps s-1..s+1.
    """
    code = engine.code_for_step(SECRET, step)
    verify_at = (step + skew) * 30 + position
    assert engine.match_step(SECRET, code, verify_at) == step


@settings(max_examples=50, deadline=None)
@given(
    step=st.integers(min_value=10, max_value=10**9),
    distance=st.integers(min_value=2, max_value=1000),
    direction=st.sampled_from([-1, 1]),
)
def test_code_never_accepted_for_its_step_outside_window(step: int, distance: int, direction: int) -> None:
    """
    Property: two or more steps away, the code is never matched to its own step.
    """
    code = engine.code_for_step(SECRET, step)
    verify_at = (step + direction * distance) * 30
    assert engine.match_step(SECRET, code, verify_at) != step
