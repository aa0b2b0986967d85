"""pyfdps - Geofiltered subscriptions for the FDPS flight-position feed."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyfdps")
except PackageNotFoundError:
    __version__ = "0+local"
from pyfdps._mqtt import MqttMessagingClient
from pyfdps.client import FdpsClient
from pyfdps.config import FdpsConfig
from pyfdps.exceptions import (
    FdpsConfigError,
    FdpsError,
    GeometryError,
    MessagingError,
    NotConnectedError,
    SubscriptionError,
    TranslationError,
)
from pyfdps.geofilter import AxisPrecision, TopicLayout, generate_filters, select_precision
from pyfdps.matching import TopicMatcher, compile_topic_filter, topic_matches_filter
from pyfdps.messaging import MessageHandler, MessagingClient
from pyfdps.models import Coordinate, FlightPosition, Rectangle, Region, regions_from_features
from pyfdps.state.store import AircraftStore
from pyfdps.sync import RetryPolicy, SubscriptionSynchronizer, SyncState

__all__ = [
    "__version__",
    "AircraftStore",
    "AxisPrecision",
    "Coordinate",
    "FdpsClient",
    "FdpsConfig",
    "FdpsConfigError",
    "FdpsError",
    "FlightPosition",
    "GeometryError",
    "MessageHandler",
    "MessagingClient",
    "MessagingError",
    "MqttMessagingClient",
    "NotConnectedError",
    "Rectangle",
    "Region",
    "RetryPolicy",
    "SubscriptionError",
    "SubscriptionSynchronizer",
    "SyncState",
    "TopicLayout",
    "TopicMatcher",
    "TranslationError",
    "compile_topic_filter",
    "generate_filters",
    "regions_from_features",
    "select_precision",
    "topic_matches_filter",
]
