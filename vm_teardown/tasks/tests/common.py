# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import AsyncIterable
from typing import Any, TypeVar
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, Mock, patch

T = TypeVar("T")


class AsyncTestCase(IsolatedAsyncioTestCase):
    def patch_path(self, path: str, **kwargs: Any) -> MagicMock | AsyncMock:
        p = patch(path, **kwargs)
        self.addCleanup(p.stop)
        return p.start()


class TaskTestCase(AsyncTestCase):
    TASK_NAME: str = NotImplemented

    def patch(self, obj: str, **kwargs: Any):
        return self.patch_path(f"vm_teardown.tasks.{self.TASK_NAME}.{obj}", **kwargs)

    def setUp(self) -> None:
        cred_mock = self.patch_path("vm_teardown.tasks.task.DefaultAzureCredential", return_value=AsyncMockClient())
        self.credential = cred_mock.return_value
        self.datadog_api_client = self.patch_path(
            "vm_teardown.tasks.task.AsyncApiClient", return_value=AsyncMockClient()
        )
        self.datadog_logs_api = self.patch_path("vm_teardown.tasks.task.LogsApi", return_value=AsyncMock())
        self.datadog_metrics_api = self.patch_path("vm_teardown.tasks.task.MetricsApi", return_value=AsyncMock())
        self.env: dict[str, str] = {}
        task_env_mock = self.patch_path("vm_teardown.tasks.task.environ", create=True)
        task_env_mock.get.side_effect = lambda k, default=None: self.env.get(k, default)
        env_env_mock = self.patch_path("vm_teardown.config.env.environ", create=True)
        env_env_mock.get.side_effect = lambda k, default=None: self.env.get(k, default)


async def async_generator(*items: T) -> AsyncIterable[T]:
    for x in items:
        if isinstance(x, Exception):
            raise x
        yield x


class UnexpectedException(Exception):
    """Testing for exceptions that we havent accounted for"""

    pass


def mock(**kwargs: Any) -> Mock:
    m = Mock()
    for k, v in kwargs.items():
        setattr(m, k, v)
    return m


def AsyncMockClient(**kwargs: Any) -> AsyncMock:
    """An AsyncMock with the context manager methods set up to use as a client"""
    m = AsyncMock(**kwargs)
    m.__aenter__.return_value = m
    m.__aexit__.return_value = None
    return m
