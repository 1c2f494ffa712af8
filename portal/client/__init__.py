from portal.client.api_client import (
    PortalAPIClient, PortalClientError, ConnectivityError, ServerError,
    NotFoundError, InvalidRequestError,
)
from portal.client.connectivity import ConnectivityMonitor, ConnectivityState
from portal.client.storage import OfflineStore, LocalRecordCache, OutboundQueue, QueuedPayload
from portal.client.sync import SyncCoordinator, SyncReport, SyncState
from portal.client.offline import OfflinePortal

__all__ = [
    "PortalAPIClient",
    "PortalClientError",
    "ConnectivityError",
    "ServerError",
    "NotFoundError",
    "InvalidRequestError",
    "ConnectivityMonitor",
    "ConnectivityState",
    "OfflineStore",
    "LocalRecordCache",
    "OutboundQueue",
    "QueuedPayload",
    "SyncCoordinator",
    "SyncReport",
    "SyncState",
    "OfflinePortal",
]
