"""
ticketsweep - Parameter-sweep ticket scheduler.

Generate tickets, run them on any number of workers, reclaim what dies.
"""

from ticketsweep.features import Feature, FeatureKind, FeatureRegistry
from ticketsweep.liveness import LivenessMonitor
from ticketsweep.splitter import VariationGraphSplitter
from ticketsweep.tickets import TicketStore
from ticketsweep.variations import VariationSpace

__version__ = "0.1.0"
__all__ = [
    "Feature",
    "FeatureKind",
    "FeatureRegistry",
    "LivenessMonitor",
    "TicketStore",
    "VariationGraphSplitter",
    "VariationSpace",
    "__version__",
]
