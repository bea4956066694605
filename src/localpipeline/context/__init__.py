"""Agent-facing document generation (task brief and workspace context)."""

from localpipeline.context.generator import ContextGenerator

__all__ = ["ContextGenerator"]
