"""Kubernetes test helpers: kind clusters, pod and service helpers, fakes, fixtures and checks."""

__version__ = "0.1.0"