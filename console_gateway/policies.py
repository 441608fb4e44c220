import logging
from typing import TypeVar

from console_gateway.errors import GatewayError, NotAuthenticated, UpstreamError
from console_gateway.metrics import metrics
from console_gateway.models import EntityKind


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Resource classes a cluster may not support at all. Listing failures for these
# are recovered into an empty result instead of being raised.
OPTIONAL_RESOURCE_KINDS: frozenset[EntityKind] = frozenset({EntityKind.CONTAINER})


def is_optional_resource(kind: EntityKind) -> bool:
    return kind in OPTIONAL_RESOURCE_KINDS


def recover_optional_listing(kind: EntityKind, exc: GatewayError) -> list[T]:
    """Apply the optional resource class rule to a failed listing.

    Returns an empty listing for optional kinds, re-raises otherwise. A missing
    credential is never absorbed.
    """
    if isinstance(exc, NotAuthenticated) or not is_optional_resource(kind):
        raise exc
    status_code = exc.status_code if isinstance(exc, UpstreamError) else None
    logger.info(
        "optional resource listing unavailable kind=%s status=%s error=%s",
        kind.value,
        status_code,
        exc.kind,
    )
    metrics.inc("optional_listing_absorbed_total", kind=kind.value)
    return []


def listing_warning(kind: EntityKind, exc: GatewayError) -> str:
    label = "VMs" if kind is EntityKind.VM else "containers"
    return f"Failed to load {label}: {exc.message}"
