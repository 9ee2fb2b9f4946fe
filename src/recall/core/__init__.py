"""
Core module - configuration, logging, orchestration.

Components:
- config: Settings management via pydantic-settings
- logging: Structured logging setup
- controller: Cross-tier consolidation and interaction workflow
"""

from recall.core.config import Settings

__all__ = ["Settings"]
