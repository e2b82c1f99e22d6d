"""
HouseBot - Family Chat Assistant

Answers household chat messages with an LLM that can use local tools
(shared lists, calendars, lookups), in one-to-one chats and in group
chats where it only speaks up when addressed.
"""

__version__ = "0.1.0"
