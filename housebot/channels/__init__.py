"""Messaging channel implementations for HouseBot."""

from .base import BaseChannel, ChannelKind, InboundMessage

__all__ = ["BaseChannel", "ChannelKind", "InboundMessage"]
