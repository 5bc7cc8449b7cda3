"""Boundary: message routing and utterance orchestration."""

from tabitha.boundary.app import TabithaApp
from tabitha.boundary.assistant import Assistant, Reply
from tabitha.boundary.router import MessageRouter

__all__ = ["Assistant", "MessageRouter", "Reply", "TabithaApp"]
