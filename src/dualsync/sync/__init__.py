"""Live synchronisation of Legacy change events into Target."""

from dualsync.sync.feature_switch import EventFeatureSwitch
from dualsync.sync.reconciler import IdentityReconciler
from dualsync.sync.router import SynchronisationEventRouter
from dualsync.sync.service import SynchronisationService

__all__ = [
    "EventFeatureSwitch",
    "SynchronisationService",
    "IdentityReconciler",
    "SynchronisationEventRouter",
]
