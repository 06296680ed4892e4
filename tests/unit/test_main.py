"""
Unit tests for the CLI entry point.

run() is driven end to end against a temp JSON-lines file, with the broker
client patched and persistence kept in memory.
"""

import asyncio
import json
import os
import signal
from unittest.mock import patch

import pytest

from homekit_bridge.main import load_env, parse_cli, run
from homekit_bridge.sources import open_event_stream
from homekit_bridge.structs import BridgeEnv, ConnectionState, EventKind

CONFIG = """
broker:
  server: broker.test
  prefix: house
subscriptions:
  - accessory: Sensor1
    characteristic: Temperature
    topic: temp
    payload: '{"state": "{{value}}"}'
"""


def _event_line(value, accessory="Sensor1"):
    return json.dumps(
        {"kind": "characteristic-updated", "accessory": accessory, "characteristic": "Temperature", "value": value}
    )


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def events_path(tmp_path):
    path = tmp_path / "events.jsonl"
    lines = [_event_line("21.5"), _event_line("5", accessory="Lamp"), _event_line("21.6"), _event_line("21.7")]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def memory_backed(memory_store):
    with patch("homekit_bridge.main.JsonFileStore", return_value=memory_store):
        yield memory_store


def _successes(controller):
    return [e for e in controller.event_log if e.kind == EventKind.PUBLISH_SUCCESS]


class TestParseCli:
    """Tests for parse_cli()"""

    def test_defaults(self):
        args = parse_cli([])

        assert args.events is None
        assert args.config is None
        assert args.env is None
        assert args.keep_running is False

    def test_paths(self, tmp_path):
        args = parse_cli(["--events", str(tmp_path / "e.jsonl"), "--config", str(tmp_path / "c.yaml"), "--keep-running"])

        assert args.events == tmp_path / "e.jsonl"
        assert args.config == tmp_path / "c.yaml"
        assert args.keep_running is True


class TestLoadEnv:
    """Tests for load_env()"""

    def test_env_file_overrides_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HKB_MQTT_HOST", "process.host")
        env_file = tmp_path / ".env"
        env_file.write_text("HKB_MQTT_HOST=file.host\n", encoding="utf-8")
        env = BridgeEnv()

        load_env(env, env_file)

        assert env.mqtt_host == "file.host"

    def test_missing_env_file_keeps_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HKB_MQTT_HOST", "process.host")
        env = BridgeEnv()

        load_env(env, tmp_path / "missing.env")

        assert env.mqtt_host == "process.host"


class TestRun:
    """Tests for run()"""

    @pytest.mark.asyncio
    async def test_every_outcome_logged_before_shutdown(self, config_path, events_path, memory_backed, mqtt_client_cls):
        args = parse_cli(["--config", str(config_path), "--events", str(events_path)])

        controller = await asyncio.wait_for(run(args), 5)

        successes = _successes(controller)
        assert sorted(e.detail for e in successes) == [
            '{"state": "21.5"}',
            '{"state": "21.6"}',
            '{"state": "21.7"}',
        ]
        assert {e.topic for e in successes} == {"house/temp"}
        client = mqtt_client_cls.instances[0]
        assert client.publish.await_count == 3
        client.__aexit__.assert_awaited_once()
        assert controller.connection_state == ConnectionState.DISCONNECTED
        assert controller.publish_tasks == set()

    @pytest.mark.asyncio
    async def test_subscriptions_persisted(self, config_path, events_path, memory_backed, mqtt_client_cls):
        args = parse_cli(["--config", str(config_path), "--events", str(events_path)])

        controller = await asyncio.wait_for(run(args), 5)

        sub = next(iter(controller.subscriptions))
        assert sub.match_count == 3
        stored = json.loads(memory_backed.get("homekit_subscriptions"))
        assert stored[0]["match_count"] == 3

    @pytest.mark.asyncio
    async def test_events_file_closed(self, config_path, events_path, memory_backed, mqtt_client_cls):
        opened = []

        def _open(path):
            stream = open_event_stream(path)
            opened.append(stream)
            return stream

        args = parse_cli(["--config", str(config_path), "--events", str(events_path)])

        with patch("homekit_bridge.main.open_event_stream", side_effect=_open):
            _ = await asyncio.wait_for(run(args), 5)

        assert len(opened) == 1
        assert opened[0].closed

    @pytest.mark.asyncio
    async def test_undecodable_bytes_do_not_stall_shutdown(self, config_path, tmp_path, memory_backed, mqtt_client_cls):
        events = tmp_path / "mixed.jsonl"
        events.write_bytes(_event_line("1").encode() + b"\n\xff\xfe\n" + _event_line("2").encode() + b"\n")
        args = parse_cli(["--config", str(config_path), "--events", str(events)])

        controller = await asyncio.wait_for(run(args), 5)

        assert len(_successes(controller)) == 2

    @pytest.mark.asyncio
    async def test_keep_running_waits_for_signal(self, config_path, events_path, memory_backed, mqtt_client_cls):
        args = parse_cli(["--config", str(config_path), "--events", str(events_path), "--keep-running"])

        task = asyncio.create_task(run(args))
        await asyncio.sleep(0.2)
        assert not task.done()

        os.kill(os.getpid(), signal.SIGTERM)
        controller = await asyncio.wait_for(task, 5)

        assert len(_successes(controller)) == 3
        assert controller.connection_state == ConnectionState.DISCONNECTED
