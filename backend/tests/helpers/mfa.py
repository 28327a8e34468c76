"""MFA test helpers."""

from secondfactor.mfa.service import MfaService, MfaSetup


class FakeClock:
    """Stand-in for the `time` module inside the TOTP engine."""

    def __init__(self, now: float):
        self.now = now

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def current_code(service: MfaService, secret: str, clock: FakeClock) -> str:
    """TOTP code an authenticator app would show right now."""
    return service.totp.code_at(secret, clock.now)


def enroll(service: MfaService, principal_id: str, clock: FakeClock) -> MfaSetup:
    """Initialize and enable MFA, then move the clock to the next TOTP step."""
    setup = service.initialize_mfa(principal_id)
    result = service.verify_and_enable_mfa(principal_id, current_code(service, setup.secret, clock))
    assert result.success
    clock.advance(service.totp.period)
    return setup


def wrong_code(service: MfaService, secret: str, clock: FakeClock) -> str:
    """A well-formed code that matches no step in the current window."""
    step = service.totp.step_at(clock.now)
    valid = {service.totp.code_for_step(secret, s) for s in range(step - 2, step + 3)}
    for digit in "0123456789":
        candidate = digit * service.totp.digits
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")
