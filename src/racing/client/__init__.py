"""Client-side layers: remote-car reconciliation, local race tracking, sync."""
from .reconciliation import ClientReconciliationLayer, EntityView, RemoteEntityShadow
from .sync import PositionSender, RaceClient, RaceHud
from .tracker import LocalRaceTracker

__all__ = [
    "ClientReconciliationLayer",
    "EntityView",
    "LocalRaceTracker",
    "PositionSender",
    "RaceClient",
    "RaceHud",
    "RemoteEntityShadow",
]
