"""TOTP engine: RFC 6238 codes with clock-skew tolerance."""

import hmac
import time

import pyotp

from secondfactor.core.config import Settings


def normalize_code(code: str) -> str:
    """Strip whitespace and separators users type between digit groups."""
    return "".join(code.split()).replace("-", "")


class TotpEngine:
    """Computes and validates time-stepped one-time codes.

    Codes are HMAC-SHA1 based with ``digits`` digits on a ``period`` second
    step. Verification accepts the current step and ``valid_window`` adjacent
    steps on either side. Replay protection is the caller's job: the matched
    step is returned so it can be recorded as consumed.
    """

    def __init__(
        self,
        issuer: str = "SecondFactor",
        digits: int = 6,
        period: int = 30,
        valid_window: int = 1,
    ):
        if digits not in (6, 8):
            raise ValueError("TOTP digits must be 6 or 8")
        self.issuer = issuer
        self.digits = digits
        self.period = period
        self.valid_window = valid_window

    @classmethod
    def from_settings(cls, settings_: Settings) -> "TotpEngine":
        return cls(
            issuer=settings_.MFA_TOTP_ISSUER,
            digits=settings_.MFA_TOTP_DIGITS,
            period=settings_.MFA_TOTP_PERIOD,
            valid_window=settings_.MFA_TOTP_VALID_WINDOW,
        )

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.period, issuer=self.issuer)

    def step_at(self, at: float | None = None) -> int:
        """Time step containing unix time ``at`` (now if omitted)."""
        if at is None:
            at = time.time()
        return int(at // self.period)

    def code_for_step(self, secret: str, step: int) -> str:
        return self._totp(secret).generate_otp(step)

    def code_at(self, secret: str, at: float | None = None) -> str:
        """Code valid at unix time ``at`` (now if omitted)."""
        return self.code_for_step(secret, self.step_at(at))

    def match_step(self, secret: str, code: str, at: float | None = None) -> int | None:
        """
        Find the time step a candidate code belongs to.

        Args:
            secret: Base32 TOTP secret
            code: Candidate code as typed by the user
            at: Verification time as unix seconds (now if omitted)

        Returns:
            The matched step, or None if the code matches no step in the window.
            A code matching several steps still yields a single step.
        """
        if not secret or not code:
            return None

        candidate = normalize_code(code)
        if len(candidate) != self.digits or not candidate.isdigit():
            return None

        current = self.step_at(at)
        offsets = [0]
        for distance in range(1, self.valid_window + 1):
            offsets.extend((-distance, distance))

        totp = self._totp(secret)
        for offset in offsets:
            step = current + offset
            if step < 0:
                continue
            if hmac.compare_digest(totp.generate_otp(step), candidate):
                return step
        return None

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI for authenticator apps (QR code payload)."""
        return self._totp(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)
