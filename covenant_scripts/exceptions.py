"""
Covenant Scripts - Exceptions

This module defines custom exceptions for script construction and introspection.
"""


class ScriptError(Exception):
    """Base exception for covenant script errors."""
    pass


class InvalidScriptDataError(ScriptError):
    """Exception raised when script parameters fail validation."""
    pass


class ScriptDecodeError(ScriptError):
    """Exception raised when a script cannot be decompiled or introspected."""
    pass
