"""Conversation persistence for HouseBot."""

from .conversation import ConversationStore, Message

__all__ = ["ConversationStore", "Message"]
