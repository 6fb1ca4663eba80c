"""Bridge-level exceptions.

Failures local to one pull request (ContentError, host errors) are caught by
the orchestrator and do not abort the pass. ConfigurationError and
WebrevPublishError (including PublicationTimeoutError) abort the whole pass
and are retried on the next cycle.
"""


class BridgeError(Exception):
    """Base class for bridge failures."""

    pass


class ConfigurationError(BridgeError):
    """Raised when the bot configuration is incomplete or invalid."""

    pass


class ContentError(BridgeError):
    """Raised when a pull request cannot be bridged as it stands."""

    pass


class WebrevPublishError(BridgeError):
    """Raised when webrev artifacts could not be pushed to storage."""

    pass


class PublicationTimeoutError(WebrevPublishError):
    """Raised when a published webrev never became publicly reachable."""

    pass


class ArchiveError(BridgeError):
    """Raised when the mail archive could not be updated."""

    pass


class DeliveryError(BridgeError):
    """Raised when an archived mail could not be handed to the SMTP server."""

    pass
