# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from logging import DEBUG, INFO, WARNING, getLogger
from unittest import TestCase
from unittest.mock import ANY

# project
from vm_teardown.tasks.task import PACKAGE_LOGGER, Task, get_error_telemetry, scoped_log_level, task_main
from vm_teardown.tasks.tests.common import TaskTestCase, UnexpectedException


class TestGetErrorTelemetry(TestCase):
    def test_no_exception(self):
        self.assertEqual(get_error_telemetry(None), {})
        self.assertEqual(get_error_telemetry((None, None, None)), {})

    def test_with_exception(self):
        try:
            _ = 1 / 0
        except ZeroDivisionError as e:
            exc_info = (type(e), e, e.__traceback__)
            telemetry = get_error_telemetry(exc_info)
            self.assertEqual(telemetry["exception"], "ZeroDivisionError")
            self.assertIn("ZeroDivisionError: division by zero", telemetry["exc_info"])


class TestScopedLogLevel(TestCase):
    def setUp(self) -> None:
        self.logger = getLogger("vm_teardown.tests.scoped")
        self.logger.setLevel(WARNING)
        self.addCleanup(self.logger.setLevel, WARNING)

    def test_level_set_and_restored(self):
        with scoped_log_level(self.logger, "DEBUG") as logger:
            self.assertIs(logger, self.logger)
            self.assertEqual(self.logger.level, DEBUG)
        self.assertEqual(self.logger.level, WARNING)

    def test_level_restored_on_error(self):
        with self.assertRaises(UnexpectedException):
            with scoped_log_level(self.logger, INFO):
                self.assertEqual(self.logger.level, INFO)
                raise UnexpectedException("oops")
        self.assertEqual(self.logger.level, WARNING)


class DummyTask(Task):
    NAME = "dummy_task"

    async def run(self):
        self.log.error("Hello World")


class FailingTask(Task):
    NAME = "failing_task"

    async def run(self):
        self.log.error("About to fail")
        raise UnexpectedException("task failed")


class LevelRecordingTask(Task):
    NAME = "level_recording_task"

    async def run(self):
        self.level_during_run = getLogger(PACKAGE_LOGGER).level


class TestTask(TaskTestCase):
    def make_task(self, task_class: type[Task]) -> Task:
        task = task_class()
        self.addCleanup(task.log.handlers.clear)
        return task

    async def test_task_telemetry_disabled(self):
        self.env.update({"DD_TELEMETRY": "false", "DD_API_KEY": "123"})
        task = self.make_task(DummyTask)
        self.assertFalse(task.telemetry_enabled)
        self.assertEqual(task.tags, ["service:vm-teardown", "task:dummy_task"])
        async with task:
            await task.run()
            self.assertEqual(task._logs, [])
        self.datadog_logs_api.return_value.submit_log.assert_not_awaited()
        self.datadog_api_client.return_value.__aenter__.assert_called_once_with()
        self.datadog_api_client.return_value.__aexit__.assert_called_once_with(None, None, None)
        self.credential.__aexit__.assert_called_once_with(None, None, None)

    async def test_task_telemetry_not_specified_is_disabled(self):
        task = self.make_task(DummyTask)
        self.assertFalse(task.telemetry_enabled)
        async with task:
            await task.run()
        self.datadog_logs_api.return_value.submit_log.assert_not_awaited()
        self.datadog_metrics_api.return_value.submit_metrics.assert_not_awaited()

    async def test_task_telemetry_enabled(self):
        self.env.update({"DD_TELEMETRY": "true", "DD_API_KEY": "123"})
        task = self.make_task(DummyTask)
        self.assertTrue(task.telemetry_enabled)
        async with task:
            await task.run()
            self.assertEqual(len(task._logs), 1)
            self.assertEqual(task._logs[0].getMessage(), "Hello World")
        self.datadog_logs_api.return_value.submit_log.assert_awaited_once_with(
            ANY, ddtags="service:vm-teardown,task:dummy_task,status:success"
        )
        self.datadog_metrics_api.return_value.submit_metrics.assert_awaited_once()
        self.assertEqual(task._logs, [])

    async def test_task_telemetry_submitted_on_failure(self):
        self.env.update({"DD_TELEMETRY": "true", "DD_API_KEY": "123"})
        task = self.make_task(FailingTask)
        with self.assertRaises(UnexpectedException):
            async with task:
                await task.run()
        self.datadog_logs_api.return_value.submit_log.assert_awaited_once_with(
            ANY, ddtags="service:vm-teardown,task:failing_task,status:failure"
        )
        self.credential.__aexit__.assert_called_once()
        self.datadog_api_client.return_value.__aexit__.assert_called_once()

    async def test_task_telemetry_errors_are_logged(self):
        self.env.update({"DD_TELEMETRY": "true", "DD_API_KEY": "123"})
        self.datadog_logs_api.return_value.submit_log.side_effect = UnexpectedException("intake down")
        task = self.make_task(DummyTask)
        with self.assertLogs("vm_teardown.tasks.task", level="ERROR") as logs:
            async with task:
                await task.run()
        self.assertTrue(any("Failed to submit telemetry" in line for line in logs.output))
        self.datadog_api_client.return_value.__aexit__.assert_called_once_with(None, None, None)

    async def test_task_log_handler_removed_on_exit(self):
        self.env.update({"DD_TELEMETRY": "true", "DD_API_KEY": "123"})
        first = self.make_task(DummyTask)
        async with first:
            await first.run()
        self.assertNotIn(first._log_handler, first.log.handlers)

        second = self.make_task(DummyTask)
        async with second:
            await second.run()
            self.assertEqual(len(second._logs), 1)
        self.assertEqual(first._logs, [])
        self.assertEqual(second.log.handlers, [])

    async def test_task_log_handler_removed_on_failure(self):
        self.env.update({"DD_TELEMETRY": "true", "DD_API_KEY": "123"})
        task = self.make_task(FailingTask)
        with self.assertRaises(UnexpectedException):
            async with task:
                await task.run()
        self.assertEqual(task.log.handlers, [])

    async def test_task_datadog_site(self):
        self.env.update({"DD_SITE": "datadoghq.eu"})
        self.make_task(DummyTask)
        (configuration,), _ = self.datadog_api_client.call_args
        self.assertEqual(configuration.server_variables["site"], "datadoghq.eu")


class TestTaskMain(TaskTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.package_logger = getLogger(PACKAGE_LOGGER)
        self.previous_level = self.package_logger.level
        self.addCleanup(self.package_logger.setLevel, self.previous_level)

    async def test_task_main_uses_configured_level(self):
        self.env["LOG_LEVEL"] = "warning"
        task = LevelRecordingTask()
        await task_main(task)
        self.assertEqual(task.level_during_run, WARNING)
        self.assertEqual(self.package_logger.level, self.previous_level)

    async def test_task_main_verbose(self):
        self.env["LOG_LEVEL"] = "error"
        task = LevelRecordingTask()
        await task_main(task, verbose=True)
        self.assertEqual(task.level_during_run, DEBUG)
        self.assertEqual(self.package_logger.level, self.previous_level)

    async def test_task_main_restores_level_on_failure(self):
        with self.assertRaises(UnexpectedException):
            await task_main(FailingTask(), verbose=True)
        self.assertEqual(self.package_logger.level, self.previous_level)
        self.credential.__aexit__.assert_called_once()
