"""Gas Town executor: supervised Claude Code, gt and bd runs over MCP."""

__version__ = "0.1.0"
