"""Core components of HouseBot."""

from .assistant import Assistant
from .gate import DirectedMessageGate, RecentMessageBuffer
from .llm_client import AnthropicClient, BaseCompletionClient
from .message_router import DeliveryQueue, MessageRouter, split_message
from .orchestrator import Orchestrator, TurnListener, TurnRequest

__all__ = [
    "Assistant",
    "DirectedMessageGate",
    "RecentMessageBuffer",
    "AnthropicClient",
    "BaseCompletionClient",
    "DeliveryQueue",
    "MessageRouter",
    "split_message",
    "Orchestrator",
    "TurnListener",
    "TurnRequest",
]
