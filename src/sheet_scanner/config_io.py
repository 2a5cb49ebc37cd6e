# src/sheet_scanner/config_io.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

import yaml

from .scan_defaults import DEFAULTS, ScanDefaults, apply_overrides

logger = logging.getLogger(__name__)


def load_config_any(path: str | Path) -> Dict[str, Any]:
    """
    Prefer YAML, but transparently accept JSON.
    - If extension is .yml/.yaml -> use YAML
    - If extension is .json -> use JSON
    - Otherwise: try YAML first, then JSON
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Config not found: {p}")
    data = p.read_text(encoding="utf-8")
    ext = p.suffix.lower()

    if ext in {".yml", ".yaml"}:
        cfg = yaml.safe_load(data)
    elif ext == ".json":
        cfg = json.loads(data)
    else:
        # No/unknown extension: prefer YAML, then fallback to JSON
        try:
            cfg = yaml.safe_load(data)
        except yaml.YAMLError:
            cfg = json.loads(data)

    if cfg is None:
        cfg = {}
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a mapping/object.")

    return cfg


def load_scan_defaults(path: Optional[str | Path], base: Optional[ScanDefaults] = None) -> ScanDefaults:
    """Read threshold overrides from a YAML/JSON file on top of `base` (or DEFAULTS)."""
    base = DEFAULTS if base is None else base
    if path is None:
        return base
    cfg = load_config_any(path)
    # allow the settings to live under a top-level "scan:" block
    if set(cfg) == {"scan"} and isinstance(cfg["scan"], dict):
        cfg = cfg["scan"]
    bad = [k for k in cfg if not isinstance(k, str)]
    if bad:
        raise ValueError(f"Config keys must be setting names, got: {bad}")
    settings = apply_overrides(base, **cfg)
    logger.debug("Loaded %d scan setting override(s) from %s", len(cfg), path)
    return settings
