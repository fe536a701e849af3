"""Refresh pipeline entry points."""

from .composer import compose_snapshot
from .context import PipelineContext
from .refresh import refresh_group

__all__ = ["PipelineContext", "compose_snapshot", "refresh_group"]
