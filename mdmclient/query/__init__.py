#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from mdmclient.query.request import (
    AggregationType,
    DimensionFilter,
    FilteredTimeSeriesQueryRequest,
    OrderBy,
    PropertyAggregationType,
    PropertyDefinition,
    SelectionClause,
)
from mdmclient.query.response import FilteredTimeSeries, FilteredTimeSeriesQueryResponse

__all__ = [
    "AggregationType",
    "DimensionFilter",
    "FilteredTimeSeries",
    "FilteredTimeSeriesQueryRequest",
    "FilteredTimeSeriesQueryResponse",
    "OrderBy",
    "PropertyAggregationType",
    "PropertyDefinition",
    "SelectionClause",
]
