"""Conftest for unit tests - marks every test as unit and provides a fake Redis."""

import orjson
import pytest


def pytest_collection_modifyitems(config, items):
    """Automatically mark all tests in the unit directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


class FakePipeline:
    """Records pipelined commands and replays them against the owning client."""

    def __init__(self, client, transaction):
        self.client = client
        self.transaction = transaction
        self.commands = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.commands = []

    def execute_command(self, *args):
        self.commands.append(args)

    def hset(self, key, mapping=None):
        self.commands.append(("HSET", key, mapping))

    def hgetall(self, key):
        self.commands.append(("HGETALL", key))

    def expire(self, key, ttl):
        self.commands.append(("EXPIRE", key, ttl))

    def execute(self):
        self.client.pipelines.append(list(self.commands))
        return [self.client.dispatch(*command) for command in self.commands]


class FakeRedis:
    """In-memory stand-in for ``redis.Redis`` with canned search replies.

    ``responses`` maps a command name to a reply, an exception instance to
    raise, or a callable receiving the full argument list.
    """

    def __init__(self):
        self.commands = []
        self.pipelines = []
        self.responses = {}
        self.hashes = {}
        self.json_docs = {}
        self.ttls = {}
        self.closed = False

    def _exists(self, key):
        return key in self.hashes or key in self.json_docs

    def dispatch(self, *args):
        name = str(args[0]).upper()
        if name == "HSET":
            _, key, mapping = args
            self.hashes.setdefault(key, {}).update(
                {k.encode(): v if isinstance(v, bytes) else str(v).encode() for k, v in mapping.items()}
            )
            return len(mapping)
        if name == "HGETALL":
            return dict(self.hashes.get(args[1], {}))
        if name == "EXPIRE":
            if not self._exists(args[1]):
                return False
            self.ttls[args[1]] = args[2]
            return True
        if name == "JSON.SET":
            self.json_docs[args[1]] = args[3]
            return b"OK"
        if name == "JSON.GET":
            return self.json_docs.get(args[1])
        if name in self.responses:
            reply = self.responses[name]
            if isinstance(reply, Exception):
                raise reply
            if callable(reply):
                return reply(*args)
            return reply
        return None

    def execute_command(self, *args):
        self.commands.append(args)
        return self.dispatch(*args)

    def pipeline(self, transaction=True):
        return FakePipeline(self, transaction)

    def delete(self, *keys):
        self.commands.append(("DEL", *keys))
        removed = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None or self.json_docs.pop(key, None) is not None:
                removed += 1
        return removed

    def expire(self, key, ttl):
        self.commands.append(("EXPIRE", key, ttl))
        return self.dispatch("EXPIRE", key, ttl)

    def close(self):
        self.closed = True

    def commands_named(self, name):
        return [command for command in self.commands if command[0] == name]

    def json_doc(self, key):
        return orjson.loads(self.json_docs[key])


@pytest.fixture
def fake_redis():
    return FakeRedis()
