"""External action adapters."""

from replyflow.adapters.instagram import (
    AdapterFactory,
    ExternalActionAdapter,
    InstagramGraphAdapter,
    instagram_adapter_factory,
)

__all__ = [
    "AdapterFactory",
    "ExternalActionAdapter",
    "InstagramGraphAdapter",
    "instagram_adapter_factory",
]
