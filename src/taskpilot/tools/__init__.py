"""Tool registry and built-in tools."""

from .registry import ToolDescriptor, ToolRegistry

__all__ = ["ToolDescriptor", "ToolRegistry"]
