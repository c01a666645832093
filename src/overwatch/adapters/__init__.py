"""Backend adapters.

Importing this package registers the built-in adapter factories so that
`ObservabilityConfig.backend_configs` entries are instantiated automatically.
"""

from .base import (
    ADAPTER_FACTORIES,
    AdapterRegistration,
    BackendAdapter,
    create_adapter,
    deliver,
    register_adapter_factory,
)
from .faro import FaroAdapter
from .loki import LokiAdapter

__all__ = [
    "ADAPTER_FACTORIES",
    "AdapterRegistration",
    "BackendAdapter",
    "FaroAdapter",
    "LokiAdapter",
    "create_adapter",
    "deliver",
    "register_adapter_factory",
]
