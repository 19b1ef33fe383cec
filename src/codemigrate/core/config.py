"""Configuration management for codemigrate (codemigrate.toml parsing + defaults)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore[no-redef]
    except ImportError:
        tomllib = None  # type: ignore[assignment]


CONFIG_FILENAME = "codemigrate.toml"
DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1MB

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_SIZE_MULTIPLIERS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


@dataclass
class ScanConfig:
    rules: str = "rules.json"
    extensions: list[str] = field(
        default_factory=lambda: [
            "js", "jsx", "ts", "tsx", "py", "pyw", "java", "cpp", "c", "h",
        ]
    )
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    regex_timeout_ms: int = 5000
    max_matches: int = 10_000
    memory_check_interval: int = 100


@dataclass
class FixConfig:
    backup_dir: str = ".code-migration-backups"
    timestamped_backups: bool = True
    backup_before_fix: bool = True
    continue_on_error: bool = True
    max_backup_age_days: int = 7


@dataclass
class MemoryConfig:
    warning_mb: int = 500
    critical_mb: int = 1000


@dataclass
class CodeMigrateConfig:
    """Complete codemigrate configuration."""

    exclude: list[str] = field(
        default_factory=lambda: [
            "node_modules/**",
            ".git/**",
            "*.min.js",
            "*.min.css",
            "dist/**",
            "build/**",
            "coverage/**",
            ".code-migration-backups/**",
        ]
    )
    scan: ScanConfig = field(default_factory=ScanConfig)
    fix: FixConfig = field(default_factory=FixConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)


def parse_file_size(value: str | int | None) -> int:
    """Parse ``"500KB"``-style sizes. Falls back to 1MB on empty or bad input."""
    if value is None or value == "":
        return DEFAULT_MAX_FILE_SIZE
    if isinstance(value, int):
        return value

    match = _SIZE_RE.match(value.strip())
    if not match:
        return DEFAULT_MAX_FILE_SIZE

    size = float(match.group(1))
    unit = (match.group(2) or "B").upper()
    return int(size * _SIZE_MULTIPLIERS[unit])


def load_config(project_path: Path | None = None) -> CodeMigrateConfig:
    """Load configuration from codemigrate.toml if present, otherwise return defaults."""
    config = CodeMigrateConfig()

    if project_path is None:
        project_path = Path.cwd()

    config_file = project_path / CONFIG_FILENAME
    if not config_file.exists():
        return config

    if tomllib is None:
        return config

    with open(config_file, "rb") as f:
        data = tomllib.load(f)

    if "general" in data:
        gen = data["general"]
        if "exclude" in gen:
            config.exclude = gen["exclude"]

    if "scan" in data:
        s = data["scan"]
        for attr in ("rules", "extensions", "regex_timeout_ms", "max_matches", "memory_check_interval"):
            if attr in s:
                setattr(config.scan, attr, s[attr])
        if "max_file_size" in s:
            config.scan.max_file_size = parse_file_size(s["max_file_size"])

    if "fix" in data:
        fx = data["fix"]
        for attr in (
            "backup_dir",
            "timestamped_backups",
            "backup_before_fix",
            "continue_on_error",
            "max_backup_age_days",
        ):
            if attr in fx:
                setattr(config.fix, attr, fx[attr])

    if "memory" in data:
        m = data["memory"]
        for attr in ("warning_mb", "critical_mb"):
            if attr in m:
                setattr(config.memory, attr, m[attr])

    return config
