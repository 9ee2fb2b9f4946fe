"""
Memory module - tiered conversational memory.

Tiers:
- short_term: Session-scoped keyed values, working context, recent turns
- episodic: Timestamped conversation turns and events, session summaries
- semantic: Knowledge nodes keyed by (category, topic) and their relationships

Storage: SQLite via aiosqlite, with an in-memory stand-in
"""
