"""Infrastructure adapters for peer locations."""

from .static_provider import StaticPeerLocationProvider

__all__ = ["StaticPeerLocationProvider"]
