"""Bot-verification widgets: backend boundary and lifecycle manager."""

from authgate.widget.backend import (
    Container,
    TokenSource,
    TokenSourceBackend,
    VerificationBackend,
    WidgetRenderError,
)
from authgate.widget.manager import VerificationWidgetManager, WidgetHandle, WidgetState

__all__ = [
    "Container",
    "TokenSource",
    "TokenSourceBackend",
    "VerificationBackend",
    "VerificationWidgetManager",
    "WidgetHandle",
    "WidgetRenderError",
    "WidgetState",
]
