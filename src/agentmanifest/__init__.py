"""agentmanifest: compiler for event-driven agent workflow manifests."""

__version__ = "0.1.0"
