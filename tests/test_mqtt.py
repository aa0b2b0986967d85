from __future__ import annotations

import asyncio
import logging
from typing import Any

import paho.mqtt.client as mqtt
import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from pyfdps._mqtt import MqttMessagingClient, to_mqtt_filter
from pyfdps.config import FdpsConfig
from pyfdps.exceptions import NotConnectedError, SubscriptionError
from pyfdps.matching import topic_matches_filter

_NOT_AUTHORIZED = 0x87


class _FakePahoClient:
    """Records broker calls and acks them on the next loop iteration."""

    def __init__(self, owner: MqttMessagingClient, *, reject: frozenset[str] = frozenset()) -> None:
        self.owner = owner
        self.reject = reject
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self._mid = 0

    def _ack(self, packet_type: int, code: int) -> int:
        self._mid += 1
        reason = ReasonCode(packet_type, identifier=code)
        asyncio.get_running_loop().call_soon(self.owner._on_ack, self, None, self._mid, [reason], None)  # type: ignore[attr-defined]
        return self._mid

    def subscribe(self, topic: str, qos: int = 0) -> tuple[int, int]:
        self.subscribed.append(topic)
        code = _NOT_AUTHORIZED if topic in self.reject else 0
        return mqtt.MQTT_ERR_SUCCESS, self._ack(PacketTypes.SUBACK, code)

    def unsubscribe(self, topic: str) -> tuple[int, int]:
        self.unsubscribed.append(topic)
        return mqtt.MQTT_ERR_SUCCESS, self._ack(PacketTypes.UNSUBACK, 0)


def _connected_client(*, reject: frozenset[str] = frozenset()) -> tuple[MqttMessagingClient, _FakePahoClient]:
    client = MqttMessagingClient(FdpsConfig(subscribe_timeout=1.0))
    fake = _FakePahoClient(client, reject=reject)
    # Bypass connect(); subscriptions only need a client and a loop.
    client._client = fake  # type: ignore[attr-defined,assignment]
    client._connected = True  # type: ignore[attr-defined]
    client._loop = asyncio.get_running_loop()  # type: ignore[attr-defined]
    return client, fake


@pytest.mark.parametrize(
    ("topic_filter", "expected"),
    [
        ("FDPS/position/>", "FDPS/position/#"),
        ("FDPS/position/*/*/*/39.8*/-98.5*/*/*/*/*", "FDPS/position/+/+/+/+/+/+/+/+/+"),
        ("FDPS/position/ID1/#", "FDPS/position/ID1/+"),
        ("FDPS/position", "FDPS/position"),
        ("FDPS/*/x", "FDPS/#"),
        ("FDPS/position/ID*/ACTIVE", "FDPS/position/#"),
    ],
)
def test_to_mqtt_filter(topic_filter: str, expected: str) -> None:
    assert to_mqtt_filter(topic_filter) == expected


@pytest.mark.asyncio
async def test_filters_sharing_a_broker_filter_subscribe_once() -> None:
    client, fake = _connected_client()
    received: list[str] = []

    await client.subscribe("FDPS/position/*/*/*/39.8*/-98.5*/*/*/*/*", lambda topic, _p: received.append(topic))
    await client.subscribe("FDPS/position/*/*/*/39.9*/-98.5*/*/*/*/*", lambda topic, _p: received.append(topic))

    assert fake.subscribed == ["FDPS/position/+/+/+/+/+/+/+/+/+"]
    assert len(client.topic_filters) == 2

    await client.unsubscribe("FDPS/position/*/*/*/39.8*/-98.5*/*/*/*/*")
    assert fake.unsubscribed == []
    await client.unsubscribe("FDPS/position/*/*/*/39.9*/-98.5*/*/*/*/*")
    assert fake.unsubscribed == ["FDPS/position/+/+/+/+/+/+/+/+/+"]
    assert client.topic_filters == ()


@pytest.mark.asyncio
async def test_dispatch_applies_feed_prefix_matching() -> None:
    client, _fake = _connected_client()
    received: list[tuple[str, bytes]] = []
    await client.subscribe("FDPS/position/*/*/*/39.8*/-98.5*/*/*/*/*", lambda t, p: received.append((t, p)))

    assert client.dispatch("FDPS/position/A1/B/C/39.82/-98.57/300/1000/5/5", b"x") == 1
    assert client.dispatch("FDPS/position/A1/B/C/40.00/-98.57/300/1000/5/5", b"y") == 0
    assert received == [("FDPS/position/A1/B/C/39.82/-98.57/300/1000/5/5", b"x")]


@pytest.mark.asyncio
async def test_dispatch_calls_each_handler_once() -> None:
    client, _fake = _connected_client()
    received: list[str] = []

    def handler(topic: str, _payload: bytes) -> None:
        received.append(topic)

    await client.subscribe("FDPS/position/>", handler)
    await client.subscribe("FDPS/position/*/*/*/39.8*/-98.5*/*/*/*/*", handler)

    assert client.dispatch("FDPS/position/A1/B/C/39.82/-98.57/300/1000/5/5", b"") == 1
    assert len(received) == 1


@pytest.mark.asyncio
async def test_dispatch_isolates_failing_handler() -> None:
    client, _fake = _connected_client()
    received: list[str] = []

    def broken(_topic: str, _payload: bytes) -> None:
        raise RuntimeError("boom")

    await client.subscribe("FDPS/position/>", broken)
    await client.subscribe("FDPS/position/*/*/*/*/*/*/*/*/*", lambda t, _p: received.append(t))

    assert client.dispatch("FDPS/position/A1/B/C/39.82/-98.57/300/1000/5/5", b"") == 2
    assert len(received) == 1


@pytest.mark.asyncio
async def test_rejected_subscription_raises() -> None:
    client, _fake = _connected_client(reject=frozenset({"FDPS/position/#"}))

    with pytest.raises(SubscriptionError) as exc_info:
        await client.subscribe("FDPS/position/>", lambda _t, _p: None)

    assert exc_info.value.reason_code == _NOT_AUTHORIZED
    assert client.topic_filters == ()


@pytest.mark.asyncio
async def test_invalid_filter_raises() -> None:
    client, fake = _connected_client()

    with pytest.raises(SubscriptionError):
        await client.subscribe("FDPS/>/position", lambda _t, _p: None)
    assert fake.subscribed == []


@pytest.mark.asyncio
async def test_unsubscribe_all_clears_every_filter() -> None:
    client, fake = _connected_client()
    await client.subscribe("FDPS/position/>", lambda _t, _p: None)
    await client.subscribe("FDPS/position/*/*/*/3*/-9*/*/*/*/*", lambda _t, _p: None)

    await client.unsubscribe_all()

    assert client.topic_filters == ()
    assert sorted(fake.unsubscribed) == ["FDPS/position/#", "FDPS/position/+/+/+/+/+/+/+/+/+"]


@pytest.mark.asyncio
async def test_operations_require_connection() -> None:
    client = MqttMessagingClient(FdpsConfig())

    with pytest.raises(NotConnectedError):
        await client.subscribe("FDPS/position/>", lambda _t, _p: None)
    with pytest.raises(NotConnectedError):
        await client.unsubscribe_all()


def test_ack_without_pending_request_is_ignored() -> None:
    client = MqttMessagingClient(FdpsConfig())

    client._on_ack(None, None, 42, [], None)  # type: ignore[arg-type]


def test_level_spanning_filter_maps_to_superset() -> None:
    topic = "FDPS/a/b/x"

    assert topic_matches_filter("FDPS/*/x", topic)
    assert mqtt.topic_matches_sub(to_mqtt_filter("FDPS/*/x"), topic)


@pytest.mark.asyncio
async def test_concurrent_subscribes_share_one_broker_subscribe() -> None:
    client, fake = _connected_client()
    filters = [f"FDPS/position/*/*/*/{lat}*/-9*/*/*/*/*" for lat in ("3", "4", "5", "6")]

    await asyncio.gather(*(client.subscribe(f, lambda _t, _p: None) for f in filters))

    assert fake.subscribed == ["FDPS/position/+/+/+/+/+/+/+/+/+"]
    assert set(client.topic_filters) == set(filters)

    for topic_filter in filters:
        await client.unsubscribe(topic_filter)
    assert fake.unsubscribed == ["FDPS/position/+/+/+/+/+/+/+/+/+"]


@pytest.mark.asyncio
async def test_concurrent_subscribes_share_broker_rejection() -> None:
    client, fake = _connected_client(reject=frozenset({"FDPS/position/+/+/+/+/+/+/+/+/+"}))
    filters = ["FDPS/position/*/*/*/3*/-9*/*/*/*/*", "FDPS/position/*/*/*/4*/-9*/*/*/*/*"]

    results = await asyncio.gather(
        *(client.subscribe(f, lambda _t, _p: None) for f in filters),
        return_exceptions=True,
    )

    assert all(isinstance(result, SubscriptionError) for result in results)
    assert client.topic_filters == ()
    assert len(fake.subscribed) == 1

    # A later attempt sends a fresh SUBSCRIBE.
    with pytest.raises(SubscriptionError):
        await client.subscribe(filters[0], lambda _t, _p: None)
    assert len(fake.subscribed) == 2


class _FakeConnectingPahoClient:
    """Accepts the connection synchronously; no broker traffic."""

    def __init__(self, **_kwargs: object) -> None:
        self.on_connect: Any = None

    def enable_logger(self, _logger: object) -> None:
        pass

    def connect(self, _host: str, _port: int, _keepalive: int) -> int:
        self.on_connect(self, None, None, ReasonCode(PacketTypes.CONNACK, identifier=0), None)
        return mqtt.MQTT_ERR_SUCCESS

    def loop_start(self) -> None:
        pass

    def loop_stop(self) -> None:
        pass

    def disconnect(self) -> None:
        pass


@pytest.mark.asyncio
async def test_connect_notes_client_side_filtering(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(mqtt, "Client", _FakeConnectingPahoClient)
    client = MqttMessagingClient(FdpsConfig(subscribe_timeout=1.0))

    with caplog.at_level(logging.INFO, logger="pyfdps._mqtt"):
        async with client:
            assert client.is_connected

    assert client.is_connected is False
    notes = [r for r in caplog.records if "region filtering is applied client side" in r.getMessage()]
    assert len(notes) == 1
