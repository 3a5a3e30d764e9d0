"""Small helpers shared by the command line commands."""

import re

from jira_flow.exceptions import InvalidTicketKeyError

TICKET_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]+-\d+$", re.IGNORECASE)
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def resolve_ticket_key(raw: str | None, default_project: str | None = None) -> str:
    """Turn user input into a Jira issue key.

    A bare number gets the default project prefix. The result is validated
    against the PROJ-123 form and uppercased.

    Raises:
        InvalidTicketKeyError: If the input cannot be turned into a key
    """
    value = (raw or "").strip()
    if not value:
        raise InvalidTicketKeyError("No ticket key given")

    if value.isdigit():
        if not default_project:
            raise InvalidTicketKeyError(
                "Ticket number provided without project prefix, and no default project is configured"
            )
        value = f"{default_project.strip()}-{value}"

    if not TICKET_KEY_PATTERN.match(value):
        raise InvalidTicketKeyError(f'"{value}" doesn\'t look like a valid Jira ticket key (expected format: PROJ-123)')
    return value.upper()


def is_date_field(name: str) -> bool:
    """Fields whose name mentions a date take YYYY-MM-DD values."""
    return "date" in name.lower()


def parse_field_assignments(pairs: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Parse ``NAME=VALUE`` arguments into a mapping.

    Raises:
        ValueError: If an argument has no ``=`` or an empty name
    """
    values: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=VALUE, got '{pair}'")
        values[name.strip()] = value.strip()
    return values
