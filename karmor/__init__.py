"""Runtime security policy tooling: policy recommendation, text reports, summaries and VM management."""

__version__ = "0.1.0"