# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from abc import abstractmethod
from collections.abc import Iterator
from contextlib import AbstractAsyncContextManager, contextmanager
from datetime import UTC, datetime
from logging import ERROR, Handler, Logger, LogRecord, basicConfig, getLogger
from os import environ
from time import time
from traceback import format_exception
from types import TracebackType
from typing import Self
from uuid import uuid4

# 3p
from azure.identity.aio import DefaultAzureCredential
from datadog_api_client import AsyncApiClient, Configuration
from datadog_api_client.v2.api.logs_api import LogsApi
from datadog_api_client.v2.api.metrics_api import MetricsApi
from datadog_api_client.v2.model.http_log import HTTPLog
from datadog_api_client.v2.model.http_log_item import HTTPLogItem
from datadog_api_client.v2.model.metric_payload import MetricPayload
from datadog_api_client.v2.model.metric_point import MetricPoint
from datadog_api_client.v2.model.metric_series import MetricSeries

# project
from vm_teardown.config.env import (
    DD_API_KEY_SETTING,
    DD_SITE_SETTING,
    DD_TELEMETRY_SETTING,
    get_log_level,
    is_truthy,
)
from vm_teardown.tasks.common import VM_TEARDOWN_METRIC_PREFIX, now

log = getLogger(__name__)

# silence azure logging except for errors
getLogger("azure").setLevel(ERROR)

PACKAGE_LOGGER = "vm_teardown"
SERVICE_NAME = "vm-teardown"

IGNORED_LOG_EXTRAS = {"created", "relativeCreated", "thread", "args", "msg", "message"}


def get_error_telemetry(
    exc_info: tuple[type[BaseException], BaseException, TracebackType | None] | tuple[None, None, None] | None,
) -> dict[str, str]:
    telemetry = {}
    if not exc_info:
        return telemetry
    exc_type, exc, tb = exc_info
    if exc_type:
        telemetry["exception"] = exc_type.__name__
    if exc_type or exc or tb:
        telemetry["exc_info"] = "".join(format_exception(exc_type, value=exc, tb=tb, limit=20))
    return telemetry


class ListHandler(Handler):
    """A logging handler that appends log messages to a list"""

    def __init__(self, logs: list[LogRecord]):
        super().__init__()
        self.log_list = logs

    def emit(self, record: LogRecord) -> None:
        record.asctime = datetime.now(UTC).isoformat()
        self.log_list.append(record)


@contextmanager
def scoped_log_level(logger: Logger, level: int | str) -> Iterator[Logger]:
    """Sets the level of `logger` for the duration of the block.
    The previous level is restored on exit, whether or not the block raised"""
    previous_level = logger.level
    logger.setLevel(level)
    try:
        yield logger
    finally:
        logger.setLevel(previous_level)


class Task(AbstractAsyncContextManager["Task"]):
    NAME: str

    def __init__(self, tags: list[str] | None = None) -> None:
        self.credential = DefaultAzureCredential()

        # Telemetry Logic
        self.start_time = time()
        self.execution_id = str(uuid4())
        self.tags = [f"service:{SERVICE_NAME}", f"task:{self.NAME}", *(tags or [])]
        self.telemetry_enabled = bool(is_truthy(DD_TELEMETRY_SETTING) and environ.get(DD_API_KEY_SETTING))
        self.log = log.getChild(self.__class__.__name__)
        self._logs: list[LogRecord] = []
        self._log_handler = ListHandler(self._logs)
        configuration = Configuration()
        if dd_site := environ.get(DD_SITE_SETTING):
            configuration.server_variables["site"] = dd_site
        self._datadog_client = AsyncApiClient(configuration)
        self._logs_client = LogsApi(self._datadog_client)
        self._metrics_client = MetricsApi(self._datadog_client)
        if self.telemetry_enabled:
            log.info("Telemetry enabled, will submit logs for %s", self.NAME)
            self.log.addHandler(self._log_handler)

    @abstractmethod
    async def run(self) -> None: ...

    async def __aenter__(self) -> Self:
        await self.credential.__aenter__()
        await self._datadog_client.__aenter__()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None
    ) -> None:
        await self.credential.__aexit__(exc_type, exc_value, traceback)
        self.log.removeHandler(self._log_handler)
        try:
            await self.submit_telemetry(succeeded=exc_value is None)
        except Exception:
            log.exception("Failed to submit telemetry")
        await self._datadog_client.__aexit__(exc_type, exc_value, traceback)

    async def submit_telemetry(self, succeeded: bool = True) -> None:
        if not self.telemetry_enabled or not self._logs:
            return
        dd_logs = [
            HTTPLogItem(
                **{
                    **{k: str(v) for k, v in record.__dict__.items() if k.lower() not in IGNORED_LOG_EXTRAS},
                    **{
                        "message": record.getMessage(),
                        "ddsource": "azure",
                        "service": SERVICE_NAME,
                        "time": record.asctime,
                        "level": record.levelname,
                        "execution_id": self.execution_id,
                        "task": self.NAME,
                    },
                    **get_error_telemetry(record.exc_info),
                }
            )
            for record in self._logs
        ]
        self._logs.clear()
        tags = [*self.tags, "status:success" if succeeded else "status:failure"]
        dd_metric = MetricSeries(
            metric=VM_TEARDOWN_METRIC_PREFIX + "runtime_seconds",
            points=[MetricPoint(timestamp=int(self.start_time), value=time() - self.start_time)],
            tags=tags,
        )
        await self._logs_client.submit_log(HTTPLog(value=dd_logs), ddtags=",".join(tags))  # type: ignore
        await self._metrics_client.submit_metrics(MetricPayload(series=[dd_metric]))  # type: ignore


async def task_main(task: Task, *, verbose: bool = False) -> None:
    level = "DEBUG" if verbose else get_log_level()
    basicConfig()
    with scoped_log_level(getLogger(PACKAGE_LOGGER), level):
        log.info("Started %s at %s (log level %s)", task.NAME, now(), level)
        async with task:
            await task.run()
        log.info("%s finished at %s", task.NAME, now())
