"""Sandbox: scope assembly, object binding, tool wrapping and code execution."""

from .binding import ObjectProxy, PropertyBinding, bind_object
from .code_extraction import AssistantResponse, parse_assistant_response
from .scope import ExecutionScope, build_scope, strip_invalid_identifiers
from .vm import SandboxResult, run_async_function
from .wrapper import ToolWrapper, wrap_tool

__all__ = [
    "AssistantResponse",
    "ExecutionScope",
    "ObjectProxy",
    "PropertyBinding",
    "SandboxResult",
    "ToolWrapper",
    "bind_object",
    "build_scope",
    "parse_assistant_response",
    "run_async_function",
    "strip_invalid_identifiers",
    "wrap_tool",
]
