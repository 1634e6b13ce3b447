"""
Screencap

Captures screenshots of user activity, merges near-duplicate captures into
events, and classifies each event through a durable retry queue.
"""

__version__ = "0.4.0"
