"""Webhook delivery."""

from evobridge.delivery.forwarder import BackendForwarder, ForwardOutcome

__all__ = ["BackendForwarder", "ForwardOutcome"]
