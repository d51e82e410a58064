from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from supplier_sync.util.logging import get_logger, log_event


@dataclass(frozen=True)
class MetricDimension:
    name: str
    value: str


class CloudWatchMetrics:
    def __init__(self, *, namespace: str, enabled: bool) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self.client = boto3.client("cloudwatch") if enabled else None
        self.logger = get_logger(self.__class__.__name__)

    def _put_metric(
        self,
        *,
        name: str,
        value: float,
        unit: str = "Count",
        dimensions: Optional[Iterable[MetricDimension]] = None,
    ) -> None:
        if not self.enabled or not self.client:
            return
        payload = {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
        }
        if dimensions:
            payload["Dimensions"] = [
                {"Name": dimension.name, "Value": dimension.value} for dimension in dimensions
            ]
        try:
            self.client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[payload],
            )
        except (BotoCoreError, ClientError) as exc:
            log_event(self.logger, "cloudwatch_metric_failed", error=str(exc), metric=name)

    def record_import(self, *, supplier_code: str, status: str) -> None:
        self._put_metric(
            name="CatalogImportFailed",
            value=1.0 if status == "failed" else 0.0,
            dimensions=[MetricDimension(name="supplier_code", value=supplier_code)],
        )

    def record_cache_fallback(self, *, supplier_code: str, operation: str) -> None:
        self._put_metric(
            name="PriceCacheFallback",
            value=1.0,
            dimensions=[
                MetricDimension(name="supplier_code", value=supplier_code),
                MetricDimension(name="operation", value=operation),
            ],
        )

    def record_ftp_retry(self, *, supplier_code: str) -> None:
        self._put_metric(
            name="FtpDownloadRetry",
            value=1.0,
            dimensions=[MetricDimension(name="supplier_code", value=supplier_code)],
        )
