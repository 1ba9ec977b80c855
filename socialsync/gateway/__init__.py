"""Remote data gateway: contract, filters and backends."""
from socialsync.gateway.base import DataGateway, Embed, Order, RealtimeSubscription, Row
from socialsync.gateway.filters import And, Eq, Filter, Gt, In, Or, between
from socialsync.gateway.memory import InMemoryGateway
from socialsync.gateway.rest import RestGateway

__all__ = [
    "DataGateway",
    "Embed",
    "Order",
    "RealtimeSubscription",
    "Row",
    "Filter",
    "Eq",
    "Gt",
    "In",
    "And",
    "Or",
    "between",
    "InMemoryGateway",
    "RestGateway",
    "build_gateway",
]


def build_gateway() -> DataGateway:
    """Create the gateway selected by ``settings.backend_mode``."""
    from socialsync.config import settings

    if settings.uses_rest_backend:
        return RestGateway()
    return InMemoryGateway()
