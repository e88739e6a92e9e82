"""
Exception types raised by the reminder pipeline.

Systemic failures propagate as these exceptions and become the error
response of the invocation. Per-entry delivery problems are captured as
data on the queue row instead.
"""


class ReminderPipelineError(Exception):
    """Base class for reminder pipeline errors."""

    status_code = 500


class ConfigurationError(ReminderPipelineError):
    """A required secret or transport setting is missing."""


class InvalidSessionError(ReminderPipelineError):
    """The requested reminder session is not morning or evening."""

    status_code = 400


class EligibilityReadError(ReminderPipelineError):
    """Reading plan items, profiles or reading logs could not be loaded."""


class EnqueueWriteError(ReminderPipelineError):
    """The bulk queue insert failed and was rolled back."""


class ClaimError(ReminderPipelineError):
    """A batch of queue entries could not be claimed."""


class DeliveryError(ReminderPipelineError):
    """The delivery channel rejected or failed to send a message."""
