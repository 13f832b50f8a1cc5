from __future__ import annotations

import queue
from unittest import mock

import pytest
from kombu import Queue

from conftest import run
from consumer.channels import (
    ACKED,
    REJECTED,
    REQUEUED,
    ChannelClosed,
    DeliveryAlreadySettled,
    KombuChannel,
    KombuDelivery,
    MemoryChannel,
    MemoryDelivery,
)


def _connection(get_side_effect):
    connection = mock.Mock()
    connection.connection_errors = (ConnectionError,)
    connection.channel_errors = ()
    simple = connection.SimpleQueue.return_value
    simple.Empty = queue.Empty
    simple.get.side_effect = get_side_effect
    return connection, simple


def test_kombu_delivery_maps_terminal_operations():
    ack_msg, reject_msg, requeue_msg = (mock.Mock(body=b"{}") for _ in range(3))

    deliveries = [KombuDelivery(ack_msg), KombuDelivery(reject_msg), KombuDelivery(requeue_msg)]
    deliveries[0].ack()
    deliveries[1].nack(requeue=False)
    deliveries[2].nack(requeue=True)

    assert [d.outcome for d in deliveries] == [ACKED, REJECTED, REQUEUED]
    ack_msg.ack.assert_called_once_with()
    reject_msg.reject.assert_called_once_with(requeue=False)
    requeue_msg.requeue.assert_called_once_with()
    assert not reject_msg.requeue.called and not requeue_msg.reject.called


def test_kombu_delivery_reports_lost_connection():
    message = mock.Mock(body=b"{}")
    message.ack.side_effect = ConnectionError("socket closed")
    delivery = KombuDelivery(message, (ConnectionError,))

    with pytest.raises(ChannelClosed):
        delivery.ack()
    assert delivery.outcome is None
    assert not delivery.settled

    with pytest.raises(DeliveryAlreadySettled):
        delivery.nack(requeue=True)
    assert not message.requeue.called


def test_kombu_channel_polls_until_message_arrives():
    message = mock.Mock(body=b'{"job_id": "a", "image_url": "u"}')
    connection, simple = _connection([queue.Empty(), queue.Empty(), message])
    channel = KombuChannel(connection, Queue("vision.jobs", durable=True), prefetch_count=1, poll_interval=0.01)

    delivery = run(channel.receive())

    assert isinstance(delivery, KombuDelivery)
    assert delivery.body == message.body
    assert simple.get.call_count == 3
    simple.consumer.qos.assert_called_once_with(prefetch_count=1)


def test_kombu_channel_reports_closed_on_connection_error():
    connection, _ = _connection(ConnectionError("broker went away"))
    channel = KombuChannel(connection, Queue("vision.jobs"), poll_interval=0.01)

    assert run(channel.receive()) is None
    assert channel.closed


def test_kombu_channel_stop_ends_polling():
    connection, simple = _connection(queue.Empty())
    channel = KombuChannel(connection, Queue("vision.jobs"), poll_interval=0.01)
    channel.stop()

    assert run(channel.receive()) is None
    channel.close()
    simple.close.assert_called_once_with()


def test_memory_channel_delivers_in_order_then_reports_closed():
    async def scenario():
        channel = MemoryChannel()
        first, second = MemoryDelivery(b"1"), MemoryDelivery(b"2")
        channel.send(first)
        channel.send(second)
        channel.close()
        got = [await channel.receive() for _ in range(4)]
        with pytest.raises(ChannelClosed):
            channel.send(MemoryDelivery(b"3"))
        return first, second, got

    first, second, got = run(scenario())

    assert got == [first, second, None, None]


@pytest.mark.parametrize("requeue,outcome", [(True, REQUEUED), (False, REJECTED)])
def test_nack_records_outcome(requeue, outcome):
    delivery = MemoryDelivery(b"x")

    delivery.nack(requeue=requeue)

    assert delivery.settled
    assert delivery.outcome == outcome
