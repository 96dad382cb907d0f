"""MCP tool definitions."""

from .data_tools import DatabaseTools, register_data_tools

__all__ = ["DatabaseTools", "register_data_tools"]
