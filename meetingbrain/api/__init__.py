"""HTTP surface for the meeting pipeline."""

from .app_factory import build_orchestrator, create_app, create_default_app
from .settings import Settings

__all__ = ["build_orchestrator", "create_app", "create_default_app", "Settings"]
