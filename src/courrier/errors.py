"""Error taxonomy for the sync engine.

Granularity decides how far a failure reaches:
- TransportError, AuthError: abort the current account
- ProtocolError: abort the current mailbox
- FetchError, PersistenceError: counted per message, the loop continues
"""


class CourrierError(Exception):
    """Base class for all courrier errors."""


class ConfigError(CourrierError):
    """Configuration file missing or invalid."""


class TransportError(CourrierError):
    """Connection, TLS, or socket failure (including timeouts)."""


class AuthError(CourrierError):
    """Login rejected, after any username normalization retry.

    ``attempts`` holds one ``(username, error)`` pair per login attempt.
    """

    def __init__(self, email: str, attempts: list[tuple[str, Exception]]):
        self.email = email
        self.attempts = attempts
        if len(attempts) > 1:
            detail = "; ".join(f"'{user}': {e}" for user, e in attempts)
            msg = f"Login failed for {email} with both username formats ({detail})"
        else:
            user, e = attempts[0]
            msg = f"Login failed for {email} (username '{user}'): {e}"
        super().__init__(msg)

    @property
    def usernames(self) -> list[str]:
        return [user for user, _ in self.attempts]


class ProtocolError(CourrierError):
    """Mailbox select/examine, list, or search failure."""


class FetchError(CourrierError):
    """Body retrieval failed for a single message."""

    NO_BODY = "no_body"
    ERRORED = "errored"

    def __init__(self, uid: int, reason: str, detail: str = ""):
        self.uid = uid
        self.reason = reason
        if reason == self.NO_BODY:
            msg = f"Failed to fetch message body for UID {uid}: BODY.PEEK[] and RFC822 both returned no body"
        else:
            msg = f"Failed to fetch message body for UID {uid}: BODY.PEEK[] and RFC822 both failed"
        if detail:
            msg += f". Last error: {detail}"
        super().__init__(msg)


class PersistenceError(CourrierError):
    """Writing a message file or a ledger record failed."""
