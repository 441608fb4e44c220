import asyncio
import logging

from console_gateway.clients.upstream import UpstreamGateway
from console_gateway.errors import GatewayError
from console_gateway.metrics import metrics
from console_gateway.models import AggregateSnapshot, EntityKind
from console_gateway.policies import listing_warning


logger = logging.getLogger(__name__)


class ResourceAggregator:
    def __init__(self, gateway: UpstreamGateway):
        self.gateway = gateway

    async def load_all(self) -> AggregateSnapshot:
        # Without nodes there is nothing to attribute entities to, so this
        # failure propagates.
        nodes = await self.gateway.list_nodes()

        vms_result, containers_result = await asyncio.gather(
            self.gateway.list_resources(EntityKind.VM),
            self.gateway.list_resources(EntityKind.CONTAINER),
            return_exceptions=True,
        )

        snapshot = AggregateSnapshot(nodes=nodes)
        for kind, result in (
            (EntityKind.VM, vms_result),
            (EntityKind.CONTAINER, containers_result),
        ):
            if isinstance(result, GatewayError):
                logger.warning(
                    "listing failed, continuing without it kind=%s error=%s",
                    kind.value,
                    result.kind,
                )
                metrics.inc("listing_recovered_total", kind=kind.value)
                snapshot.warnings.append(listing_warning(kind, result))
                continue
            if isinstance(result, BaseException):
                raise result
            if kind is EntityKind.VM:
                snapshot.vms = list(result)
            else:
                snapshot.containers = list(result)
        return snapshot
