"""Release orchestrator: exactly-once version tags and deployments from mainline commits."""

__version__ = "0.1.0"
