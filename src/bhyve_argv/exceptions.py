"""Exception hierarchy for bhyve-argv.

All exceptions inherit from BhyveArgvError base class.

Hierarchy:
    BhyveArgvError (base)
    ├── PermanentError (non-retryable marker base)
    │   ├── UnsupportedConfigurationError  ← config cannot be expressed for this bhyve
    │   └── InternalInconsistencyError     ← caller-guaranteed invariant violated
    └── HostResourceError                  ← tap / port pool collaborator failed

A build never retries: every error aborts the current build immediately.
"""

from __future__ import annotations

from typing import Any


class BhyveArgvError(Exception):
    """Base exception for all bhyve-argv errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class PermanentError(BhyveArgvError):
    """Base for errors that won't succeed when the same build is repeated."""


class UnsupportedConfigurationError(PermanentError):
    """A requested feature, device or combination cannot be expressed.

    Raised when the VM configuration asks for something the target bhyve
    binary (or bhyve in general) does not support. The message carries the
    human-readable reason.
    """


class InternalInconsistencyError(PermanentError):
    """An invariant the caller should have guaranteed was violated.

    For example a device without the PCI address it needs, or a graphics
    device without a listen definition.
    """


class HostResourceError(BhyveArgvError):
    """A host-side collaborator failed.

    Raised when tap creation, interface configuration or display-port
    allocation fails.

    Attributes:
        stderr: Standard error output of the failed host command (if any)
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        stderr: str = "",
    ):
        super().__init__(message, context)
        self.stderr = stderr
