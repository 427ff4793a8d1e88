"""
Hashing utilities for provenance and download caching.

Each script output gets a metadata sidecar with input file hashes, the
config digest, the git commit, library versions and the run id. Boundary
downloads are skipped only when the cached archive still matches its
recorded hash.
"""

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from species_hotspots.io_utils import atomic_write_json, read_json
from species_hotspots.logging_utils import get_versions
from species_hotspots.paths import METADATA_DIR


# =============================================================================
# Hashing
# =============================================================================

def hash_file(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """Hex digest of a file, read in chunks."""
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {path}")

    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def hash_dict(d: Dict[str, Any], algorithm: str = "sha256") -> str:
    """Hex digest of a dict via key-sorted JSON (config digests)."""
    payload = json.dumps(d, sort_keys=True, default=str).encode("utf-8")
    return hashlib.new(algorithm, payload).hexdigest()


# =============================================================================
# Git Version Info
# =============================================================================

def _run_git(*args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def get_git_info() -> Dict[str, Any]:
    """Commit hash and dirty flag, or None values outside a git checkout."""
    commit = _run_git("rev-parse", "HEAD")
    status = _run_git("status", "--porcelain")
    return {
        "commit": commit,
        "dirty": None if status is None else len(status) > 0,
    }


# =============================================================================
# Metadata Sidecar
# =============================================================================

def sidecar_path_for(output_path: Union[str, Path], metadata_dir: Optional[Path] = None) -> Path:
    """Sidecar location for an output file."""
    return Path(metadata_dir or METADATA_DIR) / f"{Path(output_path).stem}_metadata.json"


def create_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the metadata dict for an output file.

    Args:
        output_path: Path to the output file
        inputs: Mapping of input names to file paths (missing files are flagged)
        config: Configuration used for this run
        run_id: Unique run identifier
        extra: Additional metadata (counts, parameters)
    """
    input_hashes = {}
    for name, path in inputs.items():
        path = Path(path)
        if path.exists():
            input_hashes[name] = {"path": str(path), "hash": hash_file(path)}
        else:
            input_hashes[name] = {"path": str(path), "hash": None, "missing": True}

    metadata = {
        "output_file": str(output_path),
        "run_id": run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "inputs": input_hashes,
        "config_digest": hash_dict(config),
        "config": config,
        "git": get_git_info(),
        "versions": get_versions(),
    }
    if extra:
        metadata["extra"] = extra
    return metadata


def write_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
    metadata_dir: Optional[Path] = None,
) -> Path:
    """Write the metadata sidecar for an output and return its path."""
    metadata = create_metadata_sidecar(output_path, inputs, config, run_id, extra)
    sidecar_path = sidecar_path_for(output_path, metadata_dir)
    atomic_write_json(metadata, sidecar_path)
    return sidecar_path


def read_metadata_sidecar(
    output_path: Union[str, Path],
    metadata_dir: Optional[Path] = None,
) -> Optional[Dict[str, Any]]:
    """Metadata for an output file, or None if no sidecar exists."""
    sidecar_path = sidecar_path_for(output_path, metadata_dir)
    if sidecar_path.exists():
        return read_json(sidecar_path)
    return None


# =============================================================================
# Cache Validation
# =============================================================================

def is_cached_output_valid(
    output_path: Union[str, Path],
    config: Dict[str, Any],
    metadata_dir: Optional[Path] = None,
) -> bool:
    """
    True if ``output_path`` exists, has a sidecar written with the same
    config digest, and still hashes to the ``extra.sha256`` recorded there.
    """
    output_path = Path(output_path)
    if not output_path.exists():
        return False

    metadata = read_metadata_sidecar(output_path, metadata_dir)
    if metadata is None:
        return False

    if metadata.get("config_digest") != hash_dict(config):
        return False

    recorded = metadata.get("extra", {}).get("sha256")
    return recorded is not None and recorded == hash_file(output_path)
