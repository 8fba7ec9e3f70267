"""
ipampa_shared.models — Pydantic models matching each database table.

These models are used by:
- packages/pipeline: validate rows before writing them to storage
- packages/api: serialize snapshot rows into API responses
"""

from ipampa_shared.models.ipampa import IndexRecord, IndexSeries, ValuePoint, YearValue

__all__ = [
    "IndexRecord",
    "IndexSeries",
    "ValuePoint",
    "YearValue",
]
