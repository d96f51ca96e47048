"""Real-time collaboration, request gating and calendar scheduling core for NexaGestion."""

__version__ = "0.1.0"
