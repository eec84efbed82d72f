"""Internal constants shared across the library."""

#: Display freshness: a driver last seen less than this long ago is "live".
RECENCY_THRESHOLD_MS: int = 5 * 60 * 1000

#: Storage reclamation: records older than this are removed by the cleanup sweep.
CLEANUP_MAX_AGE_SECONDS: float = 24 * 3600

# Placeholders used when a live record lacks descriptive fields.
LIVE_VEHICLE_LABEL = "Driver Bus"
LIVE_ROUTE_LABEL = "Unknown Route"
LIVE_STATUS = "active"

DEFAULT_TOPIC_PREFIX = "buspresence/drivers"
DEFAULT_MQTT_PORT = 1883

#: Extra seconds granted on top of a strategy timeout so the sensor's own
#: timeout gets to report first.
SENSOR_TIMEOUT_GRACE_S: float = 0.5
