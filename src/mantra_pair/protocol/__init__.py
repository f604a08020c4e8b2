from .base import Connection, ConnectionUpdate, Connector, UpdateKind, self_jid
from .bridge import BridgeConnection, BridgeConnector

__all__ = [
    "Connection",
    "ConnectionUpdate",
    "Connector",
    "UpdateKind",
    "self_jid",
    "BridgeConnection",
    "BridgeConnector",
]
