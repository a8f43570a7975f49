"""
Issue Memo MCP - a memo store backed by a GitHub repository's issues.

Memos live as issues (title, body, labels, open/closed state), their
comments and reactions as the issue's comment and reaction sub-resources,
and attachments, user settings and saved shortcuts as plain files in the
same repository. There is no separate database.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("issuememo-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
