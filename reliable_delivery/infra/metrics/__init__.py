"""Prometheus metrics on a private registry."""

from reliable_delivery.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY"]
