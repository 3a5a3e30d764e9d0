"""Custom exception hierarchy for jira-flow.

This module defines a structured exception hierarchy that lets the
transition engine classify failures precisely and turn them into
reportable values for the presentation layer.

Exception Hierarchy:
    JiraFlowError (base)
    ├── ConfigurationError
    ├── InvalidTicketKeyError
    ├── IssueNotFoundError
    ├── UnrecognizedStatusError
    ├── MissingRequiredFieldsError
    ├── TransitionRejectedError
    ├── WorkflowError
    ├── AuxiliaryError
    └── ExternalServiceError
        └── FieldUpdateError

Example Usage:
    >>> from jira_flow.exceptions import TransitionRejectedError
    >>> try:
    ...     await store.attempt_transition("PROJ-1", "Done")
    ... except TransitionRejectedError as e:
    ...     print(e.display_message)
"""

DEFAULT_MAX_MESSAGE_LENGTH = 400


def truncate_message(message: str, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """Bound a tracker message for display.

    Args:
        message: Raw message text
        max_length: Maximum number of characters to keep

    Returns:
        The message, cut to ``max_length`` characters with an ellipsis
        when it was longer.
    """
    if len(message) <= max_length:
        return message
    return message[: max(max_length - 1, 0)] + "…"


class JiraFlowError(Exception):
    """Base exception for all jira-flow errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(JiraFlowError):
    """Configuration-related errors.

    Raised when the configuration file is missing or invalid, or when the
    workflow table is defined inconsistently (unknown alias targets, alias
    keys that shadow stage names, category sequences naming unknown stages).
    """

    pass


class InvalidTicketKeyError(JiraFlowError):
    """A ticket key could not be resolved to the PROJ-123 form."""

    pass


class IssueNotFoundError(JiraFlowError):
    """The tracker does not know the requested issue key.

    Attributes:
        issue_key: The key that failed to resolve
    """

    def __init__(self, issue_key: str, message: str | None = None) -> None:
        self.issue_key = issue_key
        super().__init__(message or f"Issue {issue_key} not found")


class UnrecognizedStatusError(JiraFlowError):
    """The issue's current status is not a stage of its workflow.

    Blocks next/previous/remaining computation. Never retried.
    """

    def __init__(self, status: str, issue_key: str | None = None) -> None:
        self.status = status
        self.issue_key = issue_key
        subject = f" of {issue_key}" if issue_key else ""
        super().__init__(f"Status '{status}'{subject} is not part of the workflow")


class MissingRequiredFieldsError(JiraFlowError):
    """A transition needs field values that only the operator can supply.

    This is recoverable: the engine suspends and resumes once the values
    are written.

    Attributes:
        fields: Display names of the missing fields
        stage: Stage the transition was heading to
    """

    def __init__(self, fields: list[str], stage: str | None = None) -> None:
        self.fields = list(fields)
        self.stage = stage
        target = f" before moving to {stage}" if stage else ""
        super().__init__(f"Please fill in {', '.join(self.fields)}{target}")


class TransitionRejectedError(JiraFlowError):
    """The tracker refused a transition.

    The raw message is preserved verbatim because the engine classifies it
    by text pattern (missing fields, available transition labels).

    Attributes:
        issue_key: Issue the transition was attempted on
        label: Transition label that was invoked
        stage: Canonical stage the caller wanted to reach
    """

    def __init__(
        self,
        message: str,
        issue_key: str | None = None,
        label: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.issue_key = issue_key
        self.label = label
        self.stage = stage
        super().__init__(message)

    @property
    def display_message(self) -> str:
        """Raw tracker message bounded for display."""
        return truncate_message(self.message)


class WorkflowError(JiraFlowError):
    """Engine misuse, such as resuming when nothing is suspended."""

    pass


class AuxiliaryError(JiraFlowError):
    """Failure of a supporting step (field auto-fill, role assignment).

    Reported as an advisory; never aborts an otherwise-successful
    transition.
    """

    pass


class ExternalServiceError(JiraFlowError):
    """Tracker communication errors (HTTP failures, CLI failures).

    Attributes:
        status_code: HTTP status code, if applicable
        response_text: Response body text, if applicable
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class FieldUpdateError(ExternalServiceError):
    """Writing custom field values to an issue failed."""

    pass
