# Domain exceptions raised by the ranking core.
# Callers (HTTP layer, workers) decide how to surface them; nothing here retries.


class RankingError(Exception):
    """Base class for every error the ranking core raises on purpose."""

    kind: str = "ranking_error"


class SourceUnavailableError(RankingError):
    """A content or social-graph collaborator failed to answer.

    `source` names the collaborator ("content", "social_graph") and `operation`
    the call that failed, so callers can apply their own retry/backoff policy.
    """

    kind = "source_unavailable"

    def __init__(self, source: str, operation: str, reason: str = "") -> None:
        self.source = source
        self.operation = operation
        self.reason = reason
        message = f"{source} source unavailable during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
