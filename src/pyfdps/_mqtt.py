"""paho-mqtt implementation of the messaging client capability."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyfdps.config import FdpsConfig
from pyfdps.exceptions import MessagingError, NotConnectedError, SubscriptionError
from pyfdps.matching import TopicMatcher, compile_topic_filter
from pyfdps.messaging import MessageHandler

_MQTT_SINGLE_LEVEL = "+"
_MQTT_MULTI_LEVEL = "#"


def to_mqtt_filter(topic_filter: str) -> str:
    """Map a feed topic filter onto the closest MQTT filter.

    The result always matches a superset of the feed filter's topics;
    the precise prefix matching happens client side on dispatch.

    * A final ``>`` level becomes ``#``.
    * In a filter ending in a wildcard the topic must have the same
      level count, so no ``*`` can span levels: each level containing
      ``*`` or ``#`` becomes ``+``.
    * Otherwise a ``*`` may span levels, and everything from the first
      level containing a wildcard is replaced by ``#``.
    """
    levels = topic_filter.split("/")
    fixed_arity = topic_filter[-1:] in ("*", "#")
    mapped: list[str] = []
    for index, level in enumerate(levels):
        if level == ">" and index == len(levels) - 1:
            mapped.append(_MQTT_MULTI_LEVEL)
        elif "*" in level or "#" in level:
            if not fixed_arity:
                mapped.append(_MQTT_MULTI_LEVEL)
                break
            mapped.append(_MQTT_SINGLE_LEVEL)
        else:
            mapped.append(level)
    return "/".join(mapped)


def _is_failure(reason_code: Any) -> bool:
    is_failure = getattr(reason_code, "is_failure", None)
    if isinstance(is_failure, bool):
        return is_failure
    value = getattr(reason_code, "value", reason_code)
    return isinstance(value, int) and value >= 0x80


def _code_value(reason_code: Any) -> int | None:
    value = getattr(reason_code, "value", reason_code)
    return value if isinstance(value, int) else None


@dataclass(frozen=True)
class _Subscription:
    matcher: TopicMatcher
    handler: MessageHandler
    broker_filter: str


class MqttMessagingClient:
    """Threaded paho-mqtt client with feed-syntax subscriptions.

    Subscriptions are registered with feed topic filters (``*`` prefix
    wildcards, trailing ``>``). The broker is subscribed with the mapped
    MQTT filter, reference counted across feed filters sharing it, and
    inbound messages are dispatched on the asyncio loop to every handler
    whose feed filter matches the topic.

    MQTT has no prefix wildcards, so this transport does no server-side
    geofiltering: every position filter maps to
    ``FDPS/position/+/+/+/+/+/+/+/+/+`` and the broker delivers the whole
    feed. Region filtering happens locally in :meth:`dispatch`.
    """

    def __init__(
        self,
        config: FdpsConfig,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._connected = False

        self._subscriptions: dict[str, _Subscription] = {}
        self._broker_refs: dict[str, set[str]] = {}
        self._inflight_subscribes: dict[str, asyncio.Future[None]] = {}

        # Guards _pending_acks; paho acks arrive on the network thread.
        self._ack_lock = threading.Lock()
        self._pending_acks: dict[int, asyncio.Future[list[Any]]] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def topic_filters(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to the broker and start the network loop.

        Raises
        ------
        MessagingError
            When the broker refuses the connection or does not answer in
            ``subscribe_timeout`` seconds.
        """
        if self._client is not None:
            raise MessagingError("Already connected")

        loop = asyncio.get_running_loop()
        self._loop = loop
        config = self._config
        self._logger.debug(
            "MQTT connect requested host=%s port=%s transport=%s client_id=%s",
            config.broker_host,
            config.broker_port,
            config.transport,
            config.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv5,
            transport=config.transport,
        )
        client.enable_logger(self._logger)
        if config.username is not None:
            client.username_pw_set(config.username, config.password)
        if config.use_tls:
            client.tls_set()

        connected: asyncio.Future[Any] = loop.create_future()
        first_connect_seen = threading.Event()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if _is_failure(reason_code) or not first_connect_seen.is_set():
                if not _is_failure(reason_code):
                    first_connect_seen.set()
                loop.call_soon_threadsafe(self._on_connect_result, connected, reason_code)
                return
            # Reconnect: restore broker subscriptions; the session is not persisted.
            self._logger.debug("MQTT reconnected reason=%s", reason_code)
            for broker_filter in list(self._broker_refs):
                self._logger.debug("MQTT resubscribing topic=%s", broker_filter)
                c.subscribe(broker_filter, qos=0)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._connected:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_ack
        client.on_unsubscribe = self._on_ack

        try:
            await loop.run_in_executor(
                None,
                client.connect,
                config.broker_host,
                config.broker_port,
                config.keepalive,
            )
        except OSError as exc:
            raise MessagingError(f"MQTT connect to {config.broker_host}:{config.broker_port} failed: {exc}") from exc
        client.loop_start()
        self._client = client

        try:
            await asyncio.wait_for(connected, config.subscribe_timeout)
        except TimeoutError as exc:
            await self.disconnect()
            raise MessagingError("MQTT connect timed out") from exc
        except MessagingError:
            await self.disconnect()
            raise
        self._connected = True
        self._logger.debug("MQTT connected; network loop started")
        self._logger.info(
            "MQTT transport has no prefix wildcards; broker delivers the whole %s/%s feed and "
            "region filtering is applied client side",
            config.topic_root,
            config.topic_feed,
        )

    def _on_connect_result(self, future: asyncio.Future[Any], reason_code: Any) -> None:
        if future.done():
            return
        if _is_failure(reason_code):
            future.set_exception(MessagingError(f"MQTT connect refused: {reason_code}"))
        else:
            future.set_result(reason_code)

    async def disconnect(self) -> None:
        """Disconnect and stop the network loop; local subscriptions are dropped."""
        client = self._client
        self._client = None
        was_connected = self._connected
        self._connected = False
        self._subscriptions.clear()
        self._broker_refs.clear()
        self._inflight_subscribes.clear()
        self._fail_pending_acks(NotConnectedError("MQTT client disconnected"))

        if client is None:
            return
        loop = asyncio.get_running_loop()
        try:
            if was_connected:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")

    async def __aenter__(self) -> MqttMessagingClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, topic_filter: str, handler: MessageHandler) -> None:
        """Subscribe *handler* to messages matching *topic_filter*.

        Re-subscribing an existing filter replaces its handler.

        Raises
        ------
        SubscriptionError
            When the broker rejects the subscription or does not ack in time.
        """
        client = self._require_client()
        matcher = compile_topic_filter(topic_filter)
        if not matcher.is_valid:
            raise SubscriptionError(f"Invalid topic filter {topic_filter!r}", topic_filter=topic_filter)

        existing = self._subscriptions.get(topic_filter)
        if existing is not None:
            self._subscriptions[topic_filter] = _Subscription(matcher, handler, existing.broker_filter)
            return

        broker_filter = to_mqtt_filter(topic_filter)
        refs = self._broker_refs.get(broker_filter)
        if refs is None:
            # Concurrent callers sharing a broker filter await one SUBSCRIBE.
            inflight = self._inflight_subscribes.get(broker_filter)
            if inflight is None:
                self._logger.debug("MQTT subscribing topic=%s for filter=%s", broker_filter, topic_filter)
                inflight = asyncio.ensure_future(
                    self._request(
                        topic_filter,
                        lambda: client.subscribe(broker_filter, qos=0),
                        action="subscribe",
                    )
                )
                self._inflight_subscribes[broker_filter] = inflight
                inflight.add_done_callback(lambda task: self._forget_inflight(broker_filter, task))
            await asyncio.shield(inflight)
            refs = self._broker_refs.setdefault(broker_filter, set())
        refs.add(topic_filter)
        self._subscriptions[topic_filter] = _Subscription(matcher, handler, broker_filter)

    def _forget_inflight(self, broker_filter: str, task: asyncio.Future[None]) -> None:
        if self._inflight_subscribes.get(broker_filter) is task:
            del self._inflight_subscribes[broker_filter]

    async def unsubscribe(self, topic_filter: str) -> None:
        """Remove the subscription for *topic_filter*; unknown filters are ignored."""
        client = self._require_client()
        subscription = self._subscriptions.pop(topic_filter, None)
        if subscription is None:
            return
        refs = self._broker_refs.get(subscription.broker_filter)
        if refs is None:
            return
        refs.discard(topic_filter)
        if refs:
            return
        del self._broker_refs[subscription.broker_filter]
        self._logger.debug("MQTT unsubscribing topic=%s", subscription.broker_filter)
        await self._request(
            topic_filter,
            lambda: client.unsubscribe(subscription.broker_filter),
            action="unsubscribe",
        )

    async def unsubscribe_all(self) -> None:
        """Unsubscribe every filter; raises the first failure after trying all."""
        self._require_client()
        results = await asyncio.gather(
            *(self.unsubscribe(topic_filter) for topic_filter in list(self._subscriptions)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _require_client(self) -> mqtt.Client:
        if self._client is None or not self._connected:
            raise NotConnectedError("MQTT client is not connected")
        return self._client

    async def _request(self, topic_filter: str, send: Any, *, action: str) -> None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[list[Any]] = loop.create_future()
        with self._ack_lock:
            result, mid = send()
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise SubscriptionError(
                    f"MQTT {action} failed for {topic_filter!r}: {mqtt.error_string(result)}",
                    topic_filter=topic_filter,
                    reason_code=result,
                )
            self._pending_acks[mid] = future

        try:
            reason_codes = await asyncio.wait_for(future, self._config.subscribe_timeout)
        except TimeoutError as exc:
            raise SubscriptionError(f"MQTT {action} timed out for {topic_filter!r}", topic_filter=topic_filter) from exc
        finally:
            with self._ack_lock:
                self._pending_acks.pop(mid, None)

        for reason_code in reason_codes:
            if _is_failure(reason_code):
                raise SubscriptionError(
                    f"MQTT {action} rejected for {topic_filter!r}: {reason_code}",
                    topic_filter=topic_filter,
                    reason_code=_code_value(reason_code),
                )

    def _on_ack(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        mid: int,
        reason_codes: Any,
        _properties: Any,
    ) -> None:
        with self._ack_lock:
            future = self._pending_acks.get(mid)
        if future is None or self._loop is None:
            return
        codes = list(reason_codes) if isinstance(reason_codes, (list, tuple)) else [reason_codes]
        self._loop.call_soon_threadsafe(self._resolve_ack, future, codes)

    @staticmethod
    def _resolve_ack(future: asyncio.Future[list[Any]], codes: list[Any]) -> None:
        if not future.done():
            future.set_result(codes)

    def _fail_pending_acks(self, exc: Exception) -> None:
        with self._ack_lock:
            pending = list(self._pending_acks.values())
            self._pending_acks.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exc)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self.dispatch, msg.topic, bytes(msg.payload))

    def dispatch(self, topic: str, payload: bytes) -> int:
        """Deliver a message to each distinct handler whose filter matches.

        Returns the number of handlers called.
        """
        delivered: list[MessageHandler] = []
        for topic_filter, subscription in list(self._subscriptions.items()):
            if not subscription.matcher.test(topic):
                continue
            if subscription.handler in delivered:
                continue
            delivered.append(subscription.handler)
            try:
                subscription.handler(topic, payload)
            except Exception:
                self._logger.warning("MQTT handler failed filter=%s topic=%s", topic_filter, topic, exc_info=True)
        return len(delivered)
