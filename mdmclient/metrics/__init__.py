#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class MetricIdentifier:
    # The field names match the schema expected by the server, as MonitoringAccount / MetricNamespace / MetricName.
    monitoring_account: str
    metric_namespace: str
    metric_name: str

    def __post_init__(self) -> None:
        for field_name in ("monitoring_account", "metric_namespace", "metric_name"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or value.strip() == "":
                raise ValueError(f"{field_name} must not be null or empty")

    def to_json(self) -> Dict[str, str]:
        return {
            "MonitoringAccount": self.monitoring_account,
            "MetricNamespace": self.metric_namespace,
            "MetricName": self.metric_name,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MetricIdentifier":
        return cls(data["MonitoringAccount"], data["MetricNamespace"], data["MetricName"])

    def __str__(self) -> str:
        return f"{self.monitoring_account}/{self.metric_namespace}/{self.metric_name}"


@dataclass(frozen=True)
class SamplingType:
    """
    A named sampling kind. Two sampling types are equal when their names are, so a type built from a name
    that is not built in (a computed sampling type, for example) can still be used to look values up.
    """

    name: str

    @classmethod
    def get(cls, name: str) -> "SamplingType":
        return BUILT_IN_SAMPLING_TYPES.get(name) or cls(name)

    def to_json(self) -> Dict[str, str]:
        return {"Name": self.name}

    @classmethod
    def from_json(cls, data: Any) -> "SamplingType":
        if isinstance(data, str):
            return cls.get(data)
        return cls.get(data["Name"])

    def __str__(self) -> str:
        return self.name


SUM = SamplingType("Sum")
COUNT = SamplingType("Count")
MIN = SamplingType("Min")
MAX = SamplingType("Max")
AVERAGE = SamplingType("Average")
NULLABLE_AVERAGE = SamplingType("NullableAverage")
RATE = SamplingType("Rate")
DISTINCT_COUNT = SamplingType("DistinctCount")
STANDARD_DEVIATION = SamplingType("StandardDeviation")
PERCENTILE_50 = SamplingType("50th percentile")
PERCENTILE_90 = SamplingType("90th percentile")
PERCENTILE_95 = SamplingType("95th percentile")
PERCENTILE_99 = SamplingType("99th percentile")
PERCENTILE_999 = SamplingType("99.9th percentile")

BUILT_IN_SAMPLING_TYPES: Dict[str, SamplingType] = {
    sampling_type.name: sampling_type
    for sampling_type in (
        SUM,
        COUNT,
        MIN,
        MAX,
        AVERAGE,
        NULLABLE_AVERAGE,
        RATE,
        DISTINCT_COUNT,
        STANDARD_DEVIATION,
        PERCENTILE_50,
        PERCENTILE_90,
        PERCENTILE_95,
        PERCENTILE_99,
        PERCENTILE_999,
    )
}
