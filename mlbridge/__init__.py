"""mlbridge - bridge pull request activity to mailing lists."""

__version__ = "0.1.0"
