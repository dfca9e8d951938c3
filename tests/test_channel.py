import pytest

from flowtriggers.channel import HandlerSettings, Listener, Output, Trigger

TEST_CONFIG = {
    "id": "flogo-channel",
    "handlers": [{"settings": {"channel": "test"}, "action": {"id": "dummy"}}],
}


class FakeHandler:
    def __init__(self, settings, fail=False):
        self.settings = settings
        self.fail = fail
        self.received = []

    def handle(self, data):
        self.received.append(data)
        if self.fail:
            raise RuntimeError("boom")
        return {}


class FakeChannel:
    def __init__(self):
        self.callbacks = []

    def register_callback(self, callback):
        self.callbacks.append(callback)

    def send(self, msg):
        for callback in self.callbacks:
            callback(msg)


def test_factory_new_keeps_config():
    trg = Trigger(TEST_CONFIG)
    assert trg.config == TEST_CONFIG
    assert trg.listeners == []


def test_handler_settings_from_dict():
    assert HandlerSettings.from_dict({"channel": "test"}).channel == "test"


def test_handler_settings_requires_channel():
    with pytest.raises(ValueError):
        HandlerSettings.from_dict({})


def test_output_round_trip():
    out = Output(data={"a": 1})
    assert out.to_map() == {"data": {"a": 1}}
    assert Output.from_map(out.to_map()) == out


def test_output_from_map_missing_data():
    assert Output.from_map({}).data is None


def test_initialize_and_deliver_message():
    handler = FakeHandler({"channel": "test"})
    channel = FakeChannel()
    trg = Trigger(TEST_CONFIG)
    trg.initialize([handler], {"test": channel})
    trg.start()
    channel.send("val")
    channel.send({"k": "v"})
    trg.stop()
    assert handler.received == [{"data": "val"}, {"data": {"k": "v"}}]
    assert len(trg.listeners) == 1


def test_initialize_unknown_channel():
    handler = FakeHandler({"channel": "missing"})
    with pytest.raises(LookupError, match="unknown engine channel 'missing'"):
        Trigger(TEST_CONFIG).initialize([handler], {"test": FakeChannel()})


def test_initialize_missing_channel_setting():
    handler = FakeHandler({})
    with pytest.raises(ValueError):
        Trigger(TEST_CONFIG).initialize([handler], {"test": FakeChannel()})


def test_listener_swallows_handler_errors():
    handler = FakeHandler({"channel": "test"}, fail=True)
    listener = Listener(handler)
    listener.on_message(42)
    assert handler.received == [{"data": 42}]