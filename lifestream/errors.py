"""Exception hierarchy for the LifeStream polling engine.

Fetch failures are classified by type at the supervisor boundary:
TransientFetchError (and any other exception) degrades a source and is
retried; FatalSourceError faults it until it is explicitly restarted.
"""


class LifeStreamError(Exception):
    """Base class for all LifeStream errors."""


class ConfigError(LifeStreamError):
    """Invalid or inconsistent source configuration."""


class RegistryError(LifeStreamError):
    """Service registration problem (duplicate or unknown id)."""


class InvalidTransition(LifeStreamError):
    """A lifecycle transition not allowed by the state table."""

    def __init__(self, old, new):
        super().__init__(f"Illegal status transition {old.value} -> {new.value}")
        self.old = old
        self.new = new


class SourceError(LifeStreamError):
    """Raised by a data source collaborator."""


class TransientFetchError(SourceError):
    """Network, rate-limit or server trouble. Retried on the next cycle."""


class FatalSourceError(SourceError):
    """Unrecoverable configuration or initialization fault."""
