"""
Errors raised by provider adapters. Any of them fails the current step.
"""


class RunnerError(Exception):
    """Base class for provider adapter failures."""


class ConfigurationError(RunnerError):
    """Missing credential or configuration needed to call a provider."""


class UnsupportedCombinationError(ConfigurationError):
    """No adapter is registered for an (endpoint_type, provider) pair."""


class ProviderError(RunnerError):
    """Upstream API returned an error, rejected the content, or replied with something unusable."""


class PollTimeoutError(ProviderError):
    """A long-running upstream operation did not finish within the polling budget."""
