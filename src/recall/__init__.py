"""
Recall - tiered conversational memory.

Package structure:
- core: Settings, logging, memory controller
- memory: Storage adapters and the short-term, episodic and semantic tiers
- cli: Command line entry point
"""

__version__ = "0.1.0"
