"""
engram - garbage-collected memory for coding agents.
"""

__version__ = "0.1.0"
__logo__ = "🧠"
