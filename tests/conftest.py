"""Pytest configuration and fixtures."""

import pytest

from code_store import CodeStore
from logstream import LogBroadcaster
from plugins.reconcilers.base import StatusWriter
from resources import ResourceEvent, WatchEventType, ResourceObject


class RecordingStatusWriter(StatusWriter):
    """Status writer that keeps every write in memory."""

    def __init__(self):
        self.writes = []

    async def write_status(self, resource, status):
        self.writes.append((resource, status))


@pytest.fixture
def broadcaster():
    """A log broadcaster with the default queue size."""
    return LogBroadcaster()


@pytest.fixture
def memory_store(broadcaster):
    """A code store that keeps the source in memory only."""
    return CodeStore(path=None, broadcaster=broadcaster)


@pytest.fixture
def status_writer():
    return RecordingStatusWriter()


@pytest.fixture
def sample_resource():
    """Sample MyResource object as served by the API server."""
    return {
        "apiVersion": "example.com/v1",
        "kind": "MyResource",
        "metadata": {
            "name": "example-resource",
            "namespace": "default",
            "uid": "0c7f6d1e-1111-4c8e-9d3a-5b2f0e6a7c11",
            "generation": 2,
            "resourceVersion": "4711",
        },
        "spec": {"message": "Hello from the hot reconciler!", "replicas": 3},
    }


@pytest.fixture
def make_event(sample_resource):
    """Factory for resource events built from the sample resource."""

    def _make(event_type=WatchEventType.ADDED, name=None, **overrides):
        data = dict(sample_resource)
        data["metadata"] = dict(sample_resource["metadata"])
        if name is not None:
            data["metadata"]["name"] = name
        data.update(overrides)
        return ResourceEvent(event_type, ResourceObject.from_dict(data))

    return _make


@pytest.fixture
def drain():
    """Close a subscription and return everything it had received."""

    async def _drain(subscription):
        subscription.close()
        return [record async for record in subscription]

    return _drain
