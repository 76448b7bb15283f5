"""Unit tests for fail point installation and teardown."""

import pytest
from unittest.mock import MagicMock, call

from unified_runner.errors import AssertionMismatch, ConfigurationError
from unified_runner.failpoint import FailPoint, FailPointController
from unified_runner.scenario import ScenarioExecutor, TestStatus


FAIL_COMMANDS = {
    "configureFailPoint": "failCommand",
    "mode": {"times": 1},
    "data": {"failCommands": ["insert"], "errorCode": 11600},
}

OFF = call({"configureFailPoint": "failCommand", "mode": "off"})


class TestFailPoint:
    """P0 Critical: enable and disable."""

    @pytest.mark.p0
    def test_enable_sends_configuration(self):
        client = MagicMock()
        FailPoint(FAIL_COMMANDS, client).enable()

        client.admin.command.assert_called_once_with(FAIL_COMMANDS)

    @pytest.mark.p0
    def test_disable_is_idempotent(self):
        client = MagicMock()
        fail_point = FailPoint(FAIL_COMMANDS, client)

        fail_point.disable()
        fail_point.disable()

        assert client.admin.command.call_args_list == [OFF]

    def test_owned_client_closed_even_if_disable_fails(self):
        client = MagicMock()
        client.admin.command.side_effect = RuntimeError("connection refused")
        fail_point = FailPoint(FAIL_COMMANDS, client, owns_client=True)

        with pytest.raises(RuntimeError):
            fail_point.disable()

        client.close.assert_called_once()

    def test_configuration_without_name(self):
        with pytest.raises(ConfigurationError):
            FailPoint({"mode": "alwaysOn"}, MagicMock())


class TestFailPointController:
    """P0 Critical: tracking and targeted installation."""

    @pytest.fixture
    def create_client(self):
        return MagicMock(side_effect=lambda settings: MagicMock(name="direct_client"))

    @pytest.fixture
    def controller(self, create_client, runner_config):
        return FailPointController(create_client, runner_config)

    @pytest.mark.p0
    def test_disable_all_disables_each_once(self, controller):
        client = MagicMock()
        controller.install(FAIL_COMMANDS, client)

        assert controller.disable_all() == []
        assert controller.disable_all() == []

        assert client.admin.command.call_args_list == [call(FAIL_COMMANDS), OFF]

    @pytest.mark.p0
    def test_disable_all_continues_past_failures(self, controller):
        broken = MagicMock()
        healthy = MagicMock()
        controller.install(FAIL_COMMANDS, broken)
        controller.install(FAIL_COMMANDS, healthy)
        broken.admin.command.side_effect = RuntimeError("network error")

        failures = controller.disable_all()

        assert len(failures) == 1
        assert healthy.admin.command.call_args_list[-1] == OFF

    @pytest.mark.p0
    def test_fail_point_tracked_even_if_enable_fails(self, controller):
        client = MagicMock()
        client.admin.command.side_effect = [RuntimeError("timeout"), None]

        with pytest.raises(RuntimeError):
            controller.install(FAIL_COMMANDS, client)

        controller.disable_all()
        assert client.admin.command.call_args_list[-1] == OFF

    @pytest.mark.p0
    def test_targeted_uses_pinned_server(self, controller, create_client):
        session = MagicMock()
        session._pinned_address = ("shard-a.example.com", 27018)

        fail_point = controller.install(FAIL_COMMANDS, None, session=session)

        settings = create_client.call_args[0][0]
        assert settings.hosts == ["shard-a.example.com:27018"]
        assert settings.uri_options == {"directConnection": True}
        assert fail_point.owns_client

        controller.disable_all()
        fail_point.client.close.assert_called_once()

    @pytest.mark.p0
    def test_targeted_requires_pinned_session(self, controller, create_client):
        session = MagicMock()
        session._pinned_address = None

        with pytest.raises(AssertionMismatch):
            controller.install(FAIL_COMMANDS, None, session=session)

        create_client.assert_not_called()


class TestFailPointTeardownInScenario:
    """P0 Critical: fail points are turned off after a failing test body."""

    @pytest.fixture
    def client(self):
        return MagicMock(name="client0")

    @pytest.fixture
    def executor(self, mock_factories, runner_config, client):
        mock_factories.create_client = MagicMock(return_value=client)
        return ScenarioExecutor(mock_factories, runner_config)

    @pytest.mark.p0
    def test_disabled_exactly_once_when_body_fails(self, executor, client, sample_scenario):
        test = {
            "description": "fail point then mismatch",
            "operations": [
                {"name": "failPoint", "object": "testRunner",
                 "arguments": {"client": "client0", "failPoint": FAIL_COMMANDS}},
                {"name": "insertOne", "object": "collection0",
                 "arguments": {"document": {"_id": 1}}, "expectError": {"isError": True}},
            ],
        }

        verdict = executor.run(sample_scenario, test)

        assert verdict.status == TestStatus.FAILED
        assert client.admin.command.call_args_list == [call(FAIL_COMMANDS), OFF]
        client.close.assert_called_once()

    @pytest.mark.p0
    def test_disabled_before_clients_close(self, executor, client, sample_scenario):
        order = []
        client.admin.command.side_effect = lambda command: order.append(command.get("mode"))
        client.close.side_effect = lambda: order.append("close")
        test = {
            "description": "fail point",
            "operations": [
                {"name": "failPoint", "object": "testRunner",
                 "arguments": {"client": "client0", "failPoint": FAIL_COMMANDS}},
            ],
        }

        verdict = executor.run(sample_scenario, test)

        assert verdict.passed
        assert order == [{"times": 1}, "off", "close"]
