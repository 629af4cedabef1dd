"""
Termin Watch - Error Taxonomy

Every failure a check can produce is classified here so the monitor loop
can log it precisely and decide what to report.
"""


class TerminWatchError(Exception):
    """Base class for all classified failures"""


class ConfigurationError(TerminWatchError):
    """Required configuration missing or malformed at startup (fatal)"""


class NavigationError(TerminWatchError):
    """Target page unreachable, even after the fallback wait strategy"""


class CaptchaExtractionError(TerminWatchError):
    """Challenge detected but its image payload could not be recovered"""


class CaptchaSolveError(TerminWatchError):
    """The captcha resolver itself failed (not a wrong answer)"""


class SolverCredentialsError(CaptchaSolveError):
    """Resolver rejected our API key"""


class SolverQuotaError(CaptchaSolveError):
    """Resolver balance or rate limit exhausted"""


class SolverTransientError(CaptchaSolveError):
    """Network fault or provider-side 5xx"""


class SolverResponseError(CaptchaSolveError):
    """Resolver answered, but with nothing usable"""


class CaptchaVerificationExhaustedError(TerminWatchError):
    """Every allowed attempt was judged wrong by the remote page"""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Captcha still rejected after {attempts} attempts (retries exhausted)")


class UnexpectedPageStateError(TerminWatchError):
    """Page is not in the state the next step requires"""


class ResourceCleanupError(TerminWatchError):
    """Releasing the browser failed; logged, never raised over the primary error"""
