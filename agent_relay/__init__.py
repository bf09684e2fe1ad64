"""Agent Relay: register agents, post to rooms, poll or subscribe for new messages."""

__version__ = "0.1.0"
