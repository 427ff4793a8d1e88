"""
Schema validation for pipeline frames.

The observation, joined-observation, region-tally and hotspot frames have
frozen column sets and dtypes. Library functions validate what they return
so that schema drift fails immediately, next to the code that caused it.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Set, Union

import geopandas as gpd
import pandas as pd


# =============================================================================
# Schema Definition
# =============================================================================

@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: Optional[str] = None  # "int", "float", "bool", "datetime", "geometry"
    nullable: bool = True
    unique: bool = False
    allowed_values: Optional[Set[Any]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


@dataclass
class Schema:
    """Schema specification for a DataFrame or GeoDataFrame."""
    name: str
    columns: List[ColumnSpec]
    required_columns: List[str] = field(default_factory=list)
    min_rows: int = 0

    def __post_init__(self):
        if not self.required_columns:
            self.required_columns = [c.name for c in self.columns]


class SchemaError(Exception):
    """Raised when schema validation fails."""
    pass


# =============================================================================
# Pipeline Schemas
# =============================================================================

OBSERVATION_SCHEMA = Schema(
    name="observations",
    columns=[
        ColumnSpec("id", nullable=False, unique=True),
        ColumnSpec("observed_on", dtype="datetime", nullable=True),
        ColumnSpec("quality", nullable=True),
        ColumnSpec("geometry", dtype="geometry", nullable=False),
    ],
)

JOINED_OBSERVATION_SCHEMA = Schema(
    name="joined_observations",
    columns=OBSERVATION_SCHEMA.columns + [
        ColumnSpec("region", nullable=True),
    ],
)

REGION_TALLY_SCHEMA = Schema(
    name="region_tallies",
    columns=[
        ColumnSpec("name", nullable=False, unique=True),
        ColumnSpec("record_count", dtype="int", nullable=False, min_value=0),
        ColumnSpec("area_km2", dtype="float", nullable=False, min_value=0),
        ColumnSpec("records_per_km2", dtype="float", nullable=False, min_value=0),
        ColumnSpec("geometry", dtype="geometry", nullable=False),
    ],
)

HOTSPOT_SCHEMA = Schema(
    name="hotspot_cells",
    columns=[
        ColumnSpec("cell_id", dtype="int", nullable=False, unique=True, min_value=0),
        ColumnSpec("row", dtype="int", nullable=False),
        ColumnSpec("col", dtype="int", nullable=False),
        ColumnSpec("count", dtype="int", nullable=False, min_value=0),
        ColumnSpec("value", dtype="float", nullable=False),
        ColumnSpec("statistic", dtype="float", nullable=True),
        ColumnSpec("p_value", dtype="float", nullable=True, min_value=0, max_value=1),
        ColumnSpec("is_significant", dtype="bool", nullable=False),
        ColumnSpec("is_hot", dtype="bool", nullable=False),
        ColumnSpec("is_cold", dtype="bool", nullable=False),
        ColumnSpec("hotspot_class", nullable=False),
        ColumnSpec("geometry", dtype="geometry", nullable=False),
    ],
)


# =============================================================================
# Validation Functions
# =============================================================================

_DTYPE_CHECKS = {
    "int": pd.api.types.is_integer_dtype,
    "float": pd.api.types.is_float_dtype,
    "bool": pd.api.types.is_bool_dtype,
    "datetime": pd.api.types.is_datetime64_any_dtype,
}


def validate_column(
    df: pd.DataFrame,
    spec: ColumnSpec,
) -> List[str]:
    """
    Validate a single column against its specification.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    col_name = spec.name

    if spec.dtype == "geometry":
        if not isinstance(df, gpd.GeoDataFrame):
            return [f"Expected GeoDataFrame for geometry column {col_name}"]
        col = df.geometry
    elif col_name not in df.columns:
        return [f"Missing column: {col_name}"]
    else:
        col = df[col_name]

    check = _DTYPE_CHECKS.get(spec.dtype)
    if check is not None and len(col) > 0 and not check(col):
        errors.append(f"Column {col_name}: expected {spec.dtype}, got {col.dtype}")

    if not spec.nullable and col.isna().any():
        errors.append(f"Column {col_name}: {int(col.isna().sum())} NA values not allowed")

    if spec.unique and col.duplicated().any():
        errors.append(f"Column {col_name}: {int(col.duplicated().sum())} duplicate values not allowed")

    if spec.allowed_values is not None:
        invalid = ~col.isin(spec.allowed_values) & col.notna()
        if invalid.any():
            errors.append(f"Column {col_name}: invalid values {list(col[invalid].unique()[:5])}")

    if spec.min_value is not None and ((col < spec.min_value) & col.notna()).any():
        errors.append(f"Column {col_name}: values below min {spec.min_value}")

    if spec.max_value is not None and ((col > spec.max_value) & col.notna()).any():
        errors.append(f"Column {col_name}: values above max {spec.max_value}")

    return errors


def validate_schema(
    df: Union[pd.DataFrame, gpd.GeoDataFrame],
    schema: Schema,
    context: str = "",
    raise_on_error: bool = True,
) -> List[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate
        schema: Schema specification
        context: Optional context for error messages
        raise_on_error: If True, raise SchemaError on validation failure

    Returns:
        List of error messages (empty if valid)

    Raises:
        SchemaError: If raise_on_error=True and validation fails
    """
    errors = []
    ctx = f" ({context})" if context else ""

    if len(df) < schema.min_rows:
        errors.append(f"Expected at least {schema.min_rows} rows, got {len(df)}{ctx}")

    columns = set(df.columns)
    if isinstance(df, gpd.GeoDataFrame):
        columns.add("geometry")
    missing = [c for c in schema.required_columns if c not in columns]
    if missing:
        errors.append(f"Missing required columns: {missing}{ctx}")

    for col_spec in schema.columns:
        if col_spec.name in missing:
            continue
        errors.extend(validate_column(df, col_spec))

    if errors and raise_on_error:
        raise SchemaError(f"Schema validation failed for '{schema.name}':\n" + "\n".join(errors))

    return errors
