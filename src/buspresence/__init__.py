"""buspresence - Live bus driver presence sharing and viewing."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("buspresence")
except PackageNotFoundError:
    __version__ = "0+local"
from buspresence.acquisition import (
    AcquisitionPolicy,
    AcquisitionStrategy,
    PositionAcquirer,
    PositionSensor,
    WatchHandle,
    is_secure_origin,
)
from buspresence.aggregator import PresenceAggregator, merge_view
from buspresence.config import DeviceProfile, FormFactor, PresenceConfig
from buspresence.exceptions import (
    ErrorKind,
    InvalidTransitionError,
    LocationError,
    LocationTimeoutError,
    PermissionDeniedError,
    PositionUnavailableError,
    PresenceConfigError,
    PresenceError,
    StoreUnavailableError,
    UnauthorizedError,
    UnsupportedContextError,
)
from buspresence.feeds import HttpVehicleFeed, StaticVehicleFeed, VehicleFeed
from buspresence.models import (
    Coordinates,
    DriverIdentity,
    PositionFix,
    PresenceRecord,
    VehicleInfo,
    VehicleView,
)
from buspresence.publisher import PresencePublisher
from buspresence.recency import Freshness, badge_label, classify, format_age
from buspresence.state.machine import PublisherState
from buspresence.store import (
    ACTIVE_ONLY,
    InMemoryPresenceStore,
    MqttPresenceStore,
    PresenceStoreClient,
    RecordFilter,
    Subscription,
    sweep_stale,
)

__all__ = [
    "__version__",
    "ACTIVE_ONLY",
    "AcquisitionPolicy",
    "AcquisitionStrategy",
    "Coordinates",
    "DeviceProfile",
    "DriverIdentity",
    "ErrorKind",
    "FormFactor",
    "Freshness",
    "HttpVehicleFeed",
    "InMemoryPresenceStore",
    "InvalidTransitionError",
    "LocationError",
    "LocationTimeoutError",
    "MqttPresenceStore",
    "PermissionDeniedError",
    "PositionAcquirer",
    "PositionFix",
    "PositionSensor",
    "PositionUnavailableError",
    "PresenceAggregator",
    "PresenceConfig",
    "PresenceConfigError",
    "PresenceError",
    "PresencePublisher",
    "PresenceRecord",
    "PresenceStoreClient",
    "PublisherState",
    "RecordFilter",
    "StaticVehicleFeed",
    "StoreUnavailableError",
    "Subscription",
    "UnauthorizedError",
    "UnsupportedContextError",
    "VehicleFeed",
    "VehicleInfo",
    "VehicleView",
    "WatchHandle",
    "badge_label",
    "classify",
    "format_age",
    "is_secure_origin",
    "merge_view",
    "sweep_stale",
]
