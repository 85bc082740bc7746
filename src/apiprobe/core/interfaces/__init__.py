"""Core interfaces.

Protocols implemented by adapters (transport, request decorators); the core
depends on these abstractions only.
"""

from apiprobe.core.interfaces.transport import RequestDecorator, Transport

__all__ = ["RequestDecorator", "Transport"]
