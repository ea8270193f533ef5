"""
Custom exceptions for Podlens.

This module defines custom exception classes used throughout the Podlens application
to provide more specific error handling and better error messages for different
failure scenarios.

Exception Hierarchy:
- PodlensError: Base exception for all Podlens-specific errors
  - KubernetesConnectionError: Raised when unable to connect to Kubernetes cluster
  - InvalidPatternError: Raised when an invalid regex pattern is provided
  - InvalidDurationError: Raised when a time filter token cannot be parsed
  - ConfigurationError: Raised when there's a configuration issue
  - StreamError: Raised when a live log connection cannot be used
  - ExportError: Raised when logs cannot be exported in the requested format

Example:
    ```python
    try:
        parse_duration("10x")
    except InvalidDurationError as e:
        print(f"Time filter rejected: {e}")
    ```
"""


class PodlensError(Exception):
    """Base exception for Podlens errors."""
    pass


class KubernetesConnectionError(PodlensError):
    """Raised when unable to connect to Kubernetes cluster."""
    pass


class InvalidPatternError(PodlensError):
    """Raised when an invalid regex pattern is provided."""
    pass


class InvalidDurationError(PodlensError):
    """Raised when a time filter token is not of the form <number><m|h|d>."""
    pass


class ConfigurationError(PodlensError):
    """Raised when there's a configuration issue."""
    pass


class StreamError(PodlensError):
    """Raised when a live log connection fails or is used after closing."""
    pass


class ExportError(PodlensError):
    """Raised when logs cannot be exported in the requested format."""
    pass
