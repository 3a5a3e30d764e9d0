"""jira-flow: drive Jira issues through a fixed stage workflow."""

__version__ = "0.1.0"
