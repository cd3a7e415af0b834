"""Execution routing across webhook, socket and push channels."""

from pulpit.routing.router import DeliveryRouter

__all__ = ["DeliveryRouter"]
