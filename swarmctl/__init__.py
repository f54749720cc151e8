"""swarmctl - provision Ubuntu hosts as Docker Swarm control planes or workers."""

__version__ = "0.1.0"
