#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from mdmclient.metrics import MetricIdentifier, SamplingType
from mdmclient.utils import format_dotnet_datetime, parse_dotnet_datetime, to_utc

# "all results", the server takes the top N as a signed 32 bit value.
UNLIMITED_RESULTS = 2 ** 31 - 1


class AggregationType(IntEnum):
    """
    How series are reduced when the requested resolution is coarser than the stored one.
    """

    AUTOMATIC = 0
    NONE = 1
    SUM = 2
    AVERAGE = 3
    MIN = 4
    MAX = 5


class OrderBy(IntEnum):
    UNDEFINED = 0
    ASCENDING = 1
    DESCENDING = 2


class PropertyAggregationType(IntEnum):
    AVERAGE = 0
    SUM = 1
    MIN = 2
    MAX = 3


@dataclass(frozen=True)
class DimensionFilter:
    dimension_name: str
    dimension_values: Optional[Tuple[str, ...]] = None
    is_exclude_filter: bool = False

    def __post_init__(self) -> None:
        if not self.dimension_name or self.dimension_name.strip() == "":
            raise ValueError("dimension_name is null or empty")
        if self.dimension_values is not None and not isinstance(self.dimension_values, tuple):
            object.__setattr__(self, "dimension_values", tuple(self.dimension_values))

    @classmethod
    def create_include_filter(cls, dimension_name: str, *dimension_values: str) -> "DimensionFilter":
        return cls(dimension_name, tuple(dimension_values), is_exclude_filter=False)

    @classmethod
    def create_exclude_filter(cls, dimension_name: str, *dimension_values: str) -> "DimensionFilter":
        return cls(dimension_name, tuple(dimension_values), is_exclude_filter=True)

    def to_json(self) -> Dict[str, Any]:
        return {
            "DimensionName": self.dimension_name,
            "DimensionValues": list(self.dimension_values) if self.dimension_values is not None else None,
            "IsExcludeFilter": self.is_exclude_filter,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DimensionFilter":
        values = data.get("DimensionValues")
        return cls(
            data["DimensionName"], tuple(values) if values is not None else None, data.get("IsExcludeFilter", False)
        )


@dataclass(frozen=True)
class PropertyDefinition:
    property_aggregation_type: PropertyAggregationType
    sampling_type: SamplingType

    def to_json(self) -> Dict[str, Any]:
        return {
            "PropertyAggregationType": int(self.property_aggregation_type),
            "SamplingType": self.sampling_type.to_json(),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PropertyDefinition":
        return cls(
            PropertyAggregationType(data["PropertyAggregationType"]), SamplingType.from_json(data["SamplingType"])
        )


@dataclass(frozen=True)
class SelectionClause:
    """
    Reduces the result to the top (or bottom) N series, ranked by a property of each series.
    """

    property_definition: PropertyDefinition
    number_of_results_to_return: int = UNLIMITED_RESULTS
    order_by: OrderBy = OrderBy.UNDEFINED

    @classmethod
    def default_for(cls, sampling_types: Sequence[SamplingType]) -> "SelectionClause":
        return cls(PropertyDefinition(PropertyAggregationType.AVERAGE, sampling_types[0]))


@dataclass
class FilteredTimeSeriesQueryRequest:
    metric_identifier: Optional[MetricIdentifier]
    sampling_types: List[SamplingType] = field(default_factory=list)
    dimension_filters: List[DimensionFilter] = field(default_factory=list)
    start_time_utc: Optional[datetime.datetime] = None
    end_time_utc: Optional[datetime.datetime] = None
    series_resolution_in_minutes: int = 1
    aggregation_type: AggregationType = AggregationType.AUTOMATIC
    top_property_definition: Optional[PropertyDefinition] = None
    number_of_results_to_return: int = UNLIMITED_RESULTS
    order_by: OrderBy = OrderBy.UNDEFINED
    zero_as_no_value_sentinel: bool = False
    aggregate_across_accounts: bool = False
    output_dimension_names: Optional[List[str]] = None
    last_value_mode: bool = False
    monitoring_account_names: Optional[List[str]] = None

    @classmethod
    def create(
        cls,
        metric_identifier: MetricIdentifier,
        sampling_types: Sequence[SamplingType],
        dimension_filters: Sequence[DimensionFilter],
        start_time_utc: datetime.datetime,
        end_time_utc: datetime.datetime,
        series_resolution_in_minutes: int = 1,
        aggregation_type: AggregationType = AggregationType.AUTOMATIC,
        selection_clause: SelectionClause = None,
        output_dimension_names: Sequence[str] = None,
        last_value_mode: bool = False,
    ) -> "FilteredTimeSeriesQueryRequest":
        if not sampling_types:
            raise ValueError("One or more sampling types must be specified.")
        if dimension_filters is None:
            raise ValueError("dimension_filters must not be None")
        if to_utc(start_time_utc) > to_utc(end_time_utc):
            raise ValueError("Start time must be before end time.")
        if selection_clause is None:
            selection_clause = SelectionClause.default_for(sampling_types)

        return cls(
            metric_identifier=metric_identifier,
            sampling_types=list(sampling_types),
            dimension_filters=list(dimension_filters),
            start_time_utc=to_utc(start_time_utc),
            end_time_utc=to_utc(end_time_utc),
            series_resolution_in_minutes=series_resolution_in_minutes,
            aggregation_type=aggregation_type,
            top_property_definition=selection_clause.property_definition,
            number_of_results_to_return=selection_clause.number_of_results_to_return,
            order_by=selection_clause.order_by,
            output_dimension_names=list(output_dimension_names) if output_dimension_names is not None else None,
            last_value_mode=last_value_mode,
        )

    @classmethod
    def create_multi_account(
        cls,
        monitoring_account_names: Sequence[str],
        metric_namespace: str,
        metric_name: str,
        sampling_types: Sequence[SamplingType],
        dimension_filters: Sequence[DimensionFilter],
        start_time_utc: datetime.datetime,
        end_time_utc: datetime.datetime,
        aggregate_across_accounts: bool = False,
        **kwargs: Any,
    ) -> "FilteredTimeSeriesQueryRequest":
        if not monitoring_account_names:
            raise ValueError("monitoring_account_names must not be null or empty")
        if any(not name or name.strip() == "" for name in monitoring_account_names):
            raise ValueError(
                f"All monitoring accounts must not be null or empty: {','.join(map(str, monitoring_account_names))}."
            )

        request = cls.create(
            MetricIdentifier(monitoring_account_names[0], metric_namespace, metric_name),
            sampling_types,
            dimension_filters,
            start_time_utc,
            end_time_utc,
            **kwargs,
        )
        request.monitoring_account_names = list(monitoring_account_names)
        request.aggregate_across_accounts = aggregate_across_accounts
        return request

    def to_json(self) -> Dict[str, Any]:
        return {
            "MetricIdentifier": self.metric_identifier.to_json() if self.metric_identifier is not None else None,
            "MonitoringAccountNames": self.monitoring_account_names,
            "MetricNamespace": self.metric_identifier.metric_namespace if self.monitoring_account_names else None,
            "MetricName": self.metric_identifier.metric_name if self.monitoring_account_names else None,
            "SamplingTypes": [sampling_type.to_json() for sampling_type in self.sampling_types],
            "DimensionFilters": [dimension_filter.to_json() for dimension_filter in self.dimension_filters],
            "StartTimeUtc": format_dotnet_datetime(self.start_time_utc) if self.start_time_utc is not None else None,
            "EndTimeUtc": format_dotnet_datetime(self.end_time_utc) if self.end_time_utc is not None else None,
            "SeriesResolutionInMinutes": self.series_resolution_in_minutes,
            "AggregationType": int(self.aggregation_type),
            "TopPropertyDefinition": (
                self.top_property_definition.to_json() if self.top_property_definition is not None else None
            ),
            "NumberOfResultsToReturn": self.number_of_results_to_return,
            "OrderBy": int(self.order_by),
            "ZeroAsNoValueSentinel": self.zero_as_no_value_sentinel,
            "AggregateAcrossAccounts": self.aggregate_across_accounts,
            "OutputDimensionNames": self.output_dimension_names,
            "LastValueMode": self.last_value_mode,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "FilteredTimeSeriesQueryRequest":
        metric_identifier = data.get("MetricIdentifier")
        top_property_definition = data.get("TopPropertyDefinition")
        return cls(
            metric_identifier=MetricIdentifier.from_json(metric_identifier) if metric_identifier else None,
            sampling_types=[SamplingType.from_json(s) for s in data.get("SamplingTypes") or []],
            dimension_filters=[DimensionFilter.from_json(d) for d in data.get("DimensionFilters") or []],
            start_time_utc=parse_dotnet_datetime(data["StartTimeUtc"]) if data.get("StartTimeUtc") else None,
            end_time_utc=parse_dotnet_datetime(data["EndTimeUtc"]) if data.get("EndTimeUtc") else None,
            series_resolution_in_minutes=data.get("SeriesResolutionInMinutes", 1),
            aggregation_type=AggregationType(data.get("AggregationType", AggregationType.AUTOMATIC)),
            top_property_definition=(
                PropertyDefinition.from_json(top_property_definition) if top_property_definition else None
            ),
            number_of_results_to_return=data.get("NumberOfResultsToReturn", UNLIMITED_RESULTS),
            order_by=OrderBy(data.get("OrderBy", OrderBy.UNDEFINED)),
            zero_as_no_value_sentinel=data.get("ZeroAsNoValueSentinel", False),
            aggregate_across_accounts=data.get("AggregateAcrossAccounts", False),
            output_dimension_names=data.get("OutputDimensionNames"),
            last_value_mode=data.get("LastValueMode", False),
            monitoring_account_names=data.get("MonitoringAccountNames"),
        )
