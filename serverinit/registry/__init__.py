"""Step registry and workflow ordering."""

from __future__ import annotations

from .workflow import StepRegistry, Workflow

__all__ = ["StepRegistry", "Workflow"]
