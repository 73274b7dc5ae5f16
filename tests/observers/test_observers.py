import json
import logging

from ravenfleet.observers.dispatcher import EventBus
from ravenfleet.observers.events import HostDeployStarted, NodeStateRead, new_ctx
from ravenfleet.observers.interface import Observer
from ravenfleet.observers.jsonfile import JsonFileObserver
from ravenfleet.observers.logger import LoggerObserver


# Simple capturing observer
class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


class Broken:
    def notify(self, event): raise RuntimeError("observer bug")


def test_bus_delivers_to_every_observer_despite_failures():
    first, last = Capture(), Capture()
    bus = EventBus([first, Broken(), last])

    bus.emit(HostDeployStarted(host="10.0.0.5", tag="A", **new_ctx("run-1")))

    assert len(first.events) == 1
    assert last.events[0].tag == "A"
    assert last.events[0].run_id == "run-1"


def test_json_file_observer_writes_one_object_per_line(tmp_path):
    path = tmp_path / "logs" / "run.jsonl"
    obs = JsonFileObserver(path)

    obs.notify(HostDeployStarted(host="10.0.0.5", tag="A", **new_ctx("r")))
    obs.notify(NodeStateRead(host="10.0.0.6", failed=True, **new_ctx("r")))

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["type"] for line in lines] == ["HostDeployStarted", "NodeStateRead"]
    assert lines[1]["failed"] is True


def test_logger_observer_formats_fields():
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record): records.append(record.getMessage())

    logger = logging.getLogger("ravenfleet.test-observer")
    logger.addHandler(ListHandler())
    logger.setLevel(logging.INFO)

    LoggerObserver(logger).notify(HostDeployStarted(host="10.0.0.5", tag="A", **new_ctx()))

    assert records == ["[EVENT] HostDeployStarted: host=10.0.0.5, tag=A"]
