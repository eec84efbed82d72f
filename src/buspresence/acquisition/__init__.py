"""Position acquisition layer.

Wraps a device's location capability with ordered fallback strategies,
a continuous-watch last resort and failure classification.
"""

from buspresence.acquisition.acquirer import PositionAcquirer
from buspresence.acquisition.sensor import PositionSensor, WatchHandle, is_secure_origin
from buspresence.acquisition.strategy import AcquisitionPolicy, AcquisitionStrategy

__all__ = [
    "AcquisitionPolicy",
    "AcquisitionStrategy",
    "PositionAcquirer",
    "PositionSensor",
    "WatchHandle",
    "is_secure_origin",
]
