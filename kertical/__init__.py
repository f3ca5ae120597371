"""Resource models and reconciliation helpers for external proxies and node port forwarding."""

__version__ = "0.1.0"

__all__ = ["events", "externalproxy", "portforwarding", "resources", "v1alpha1"]