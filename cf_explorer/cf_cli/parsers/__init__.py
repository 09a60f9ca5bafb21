"""
cf CLI output parsers.

- ResponsePageParser: JSON response pages traced by `cf <cmd> -v`
"""

from cf_explorer.cf_cli.parsers.response_pages import ResponsePageParser

__all__ = [
    "ResponsePageParser",
]
