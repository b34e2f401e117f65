"""
cbcheck - Crowd Bank new-fund notifier.

This package provides functionality to:
- Load the poller configuration from a YAML file
- Fetch funds that have not opened yet from the Crowd Bank search API
- Track which funds have already been announced in a SQLite database
- Post a Slack webhook message for each newly discovered fund
"""

__version__ = "1.0.0"
