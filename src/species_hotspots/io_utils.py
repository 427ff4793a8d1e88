"""
I/O utilities with atomic writes and safe reads.

All script outputs are written to a temp file in the target directory and
then renamed over the destination, so a failed run never leaves a
half-written file behind. GeoParquet is the internal format; GeoJSON is the
export handed to map renderers.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Union

import geopandas as gpd
import pandas as pd
import yaml


# =============================================================================
# Atomic Write Utilities
# =============================================================================

def _temp_path_for(target_path: Path, suffix: str) -> Path:
    """Create an empty temp file next to the target and return its path."""
    fd, temp_path = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.stem}_",
        dir=target_path.parent,
    )
    os.close(fd)
    return Path(temp_path)


def _replace_atomically(
    target_path: Union[str, Path],
    writer: Callable[[Path], None],
    suffix: Optional[str] = None,
) -> Path:
    """Run ``writer`` against a temp path, then move the result onto the target."""
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path_for(target_path, suffix or target_path.suffix or ".tmp")

    try:
        writer(temp_path)
        temp_path.replace(target_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise

    return target_path


@contextmanager
def atomic_write(
    target_path: Union[str, Path],
    mode: str = "w",
    suffix: Optional[str] = None,
):
    """
    Context manager for atomic file writes.

    Example:
        with atomic_write("manifest.json") as f:
            f.write("{}")
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path_for(target_path, suffix or target_path.suffix or ".tmp")

    try:
        encoding = None if "b" in mode else "utf-8"
        with open(temp_path, mode, encoding=encoding) as f:
            yield f
        temp_path.replace(target_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_df(
    df: pd.DataFrame,
    target_path: Union[str, Path],
    **kwargs,
) -> Path:
    """
    Atomically write a DataFrame to CSV or Parquet (chosen by extension).
    """
    suffix = Path(target_path).suffix.lower()

    if suffix == ".parquet":
        return _replace_atomically(target_path, lambda p: df.to_parquet(p, **kwargs))
    if suffix == ".csv":
        return _replace_atomically(target_path, lambda p: df.to_csv(p, **kwargs))
    raise ValueError(f"Unsupported format: {suffix}")


def atomic_write_gdf(
    gdf: gpd.GeoDataFrame,
    target_path: Union[str, Path],
    **kwargs,
) -> Path:
    """
    Atomically write a GeoDataFrame to GeoParquet, GeoJSON or GeoPackage.

    Args:
        gdf: GeoDataFrame to write
        target_path: Destination path (.parquet, .geojson, .gpkg)
        **kwargs: Additional arguments passed to the writer
    """
    suffix = Path(target_path).suffix.lower()

    if suffix == ".parquet":
        return _replace_atomically(target_path, lambda p: gdf.to_parquet(p, **kwargs))
    if suffix == ".geojson":
        return _replace_atomically(
            target_path, lambda p: gdf.to_file(p, driver="GeoJSON", **kwargs)
        )
    if suffix == ".gpkg":
        return _replace_atomically(
            target_path, lambda p: gdf.to_file(p, driver="GPKG", **kwargs)
        )
    raise ValueError(f"Unsupported geo format: {suffix}")


def atomic_write_json(
    data: Any,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """Atomically write JSON data (indented, non-serializable values stringified)."""
    kwargs.setdefault("indent", 2)
    kwargs.setdefault("default", str)

    with atomic_write(target_path, mode="w", suffix=".json") as f:
        json.dump(data, f, **kwargs)


def atomic_write_bytes(data: bytes, target_path: Union[str, Path]) -> Path:
    """Atomically write raw bytes (downloaded archives)."""
    with atomic_write(target_path, mode="wb") as f:
        f.write(data)
    return Path(target_path)


# =============================================================================
# Read Utilities
# =============================================================================

def read_yaml(path: Union[str, Path]) -> dict:
    """Read a YAML file. An empty file reads as an empty dict."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def read_json(path: Union[str, Path]) -> Any:
    """Read a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_gdf(
    path: Union[str, Path],
    **kwargs,
) -> gpd.GeoDataFrame:
    """
    Read a GeoDataFrame from GeoParquet, or anything GDAL can open
    (GeoJSON, GeoPackage, zipped shapefiles).
    """
    path = Path(path)

    if path.suffix.lower() == ".parquet":
        return gpd.read_parquet(path, **kwargs)
    return gpd.read_file(path, **kwargs)
