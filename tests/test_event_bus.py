from contiloop.event_bus import EventBus, LoopEvent


def test_event_bus_pub_sub():
    test_bus = EventBus()
    received_events: list[LoopEvent] = []

    def dummy_subscriber(event: LoopEvent):
        received_events.append(event)

    test_bus.subscribe(dummy_subscriber)

    test_bus.emit(
        event_type="iteration_started",
        source="controller",
        payload={"number": 1}
    )

    assert len(received_events) == 1

    event = received_events[0]
    assert event.event_type == "iteration_started"
    assert event.source == "controller"
    assert event.payload == {"number": 1}

    # Verify auto-generated fields
    assert event.event_id is not None
    assert isinstance(event.event_id, str)
    assert event.timestamp is not None


def test_broken_subscriber_does_not_block_others():
    test_bus = EventBus()
    received: list[str] = []

    def broken(event: LoopEvent):
        raise OSError("disk full")

    test_bus.subscribe(broken)
    test_bus.subscribe(lambda e: received.append(e.event_type))

    test_bus.emit("run_finished", "controller", {})

    assert received == ["run_finished"]
