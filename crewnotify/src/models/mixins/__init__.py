"""
Model mixins shared across entities.
"""

from crewnotify.src.models.mixins.guid import GuidMixin, UUIDType

__all__ = ["GuidMixin", "UUIDType"]
