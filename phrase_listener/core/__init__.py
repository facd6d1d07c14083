"""Matching and admission logic.

WHY: The core package holds the parts with real algorithmic content: the
fuzzy matcher, the admission policy, and the data they exchange.

HOW: fuzzy.py implements Bitap search, admission.py decides whether a
streamed record is accepted, models.py defines the records, session
state and decisions, phrases.py supplies expected phrases.

RULES:
- No I/O here except reading phrases files
- Nothing in core blocks or spawns threads
"""
