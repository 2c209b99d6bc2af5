"""
Registry Module
===============

Ordered, bounded store of component records read by the renderer.
"""

from jsx_stream.registry.store import ComponentRegistry, RegistryChange


__all__ = [
    "ComponentRegistry",
    "RegistryChange",
]
