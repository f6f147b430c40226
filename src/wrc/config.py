"""YAML config loader — reads scan-config.yml into ScanConfig, and rule files into Rules."""

import json
from pathlib import Path

import yaml

from wrc.schemas.config import NavigationConfig, ScanConfig
from wrc.schemas.scan import Rule


def load_config(path: str | Path | None = None) -> ScanConfig:
    """Load and validate a scan config file.

    With no path, returns the defaults.  Raises ``FileNotFoundError`` if the
    path doesn't exist and ``pydantic.ValidationError`` if the YAML content is
    invalid.
    """
    if path is None:
        return ScanConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = yaml.safe_load(path.read_text())
    if raw is None:
        return ScanConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    # YAML loads lists with only commented-out items as None; fall back to
    # the defaults rather than failing validation.
    nav = raw.get("navigation")
    if isinstance(nav, dict):
        defaults = NavigationConfig()
        for key in ("slow_site_patterns", "blocked_markers", "redirect_hosts"):
            if key in nav and nav[key] is None:
                nav[key] = list(getattr(defaults, key))
    elif nav is None:
        raw.pop("navigation", None)

    return ScanConfig(**raw)


def load_rules(path: str | Path) -> list[Rule]:
    """Load rules from a JSON or YAML file containing a list of rule objects.

    A mapping with a top-level ``rules`` key is also accepted.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found: {path}")

    text = path.read_text()
    if path.suffix.lower() == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)

    if isinstance(raw, dict) and "rules" in raw:
        raw = raw["rules"]
    if not isinstance(raw, list):
        raise ValueError(f"Rules file must contain a list of rules, got {type(raw).__name__}")

    rules: list[Rule] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Rule at index {i} must be a mapping, got {type(item).__name__}")
        rules.append(Rule(**item))
    return rules
