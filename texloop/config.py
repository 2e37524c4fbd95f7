"""Configuration loading for texloop (.texloop.yml)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from . import patterns
from .models import OUTPUT_SUFFIXES

CONFIG_FILE_NAME = ".texloop.yml"
DEFAULT_MAX_RERUNS = 5


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class ToolConfig:
    """Command and arguments of one external tool; no command disables it."""

    command: Optional[str]
    args: List[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return bool(self.command)


@dataclass
class LatexConfig:
    """Compiler invocation and the rerun budget."""

    command: str = "pdflatex"
    args: List[str] = field(
        default_factory=lambda: ["-interaction=nonstopmode", "-synctex=1", "-recorder"]
    )
    output_format: str = "pdf"
    # None means no bound on the number of reruns.
    max_reruns: Optional[int] = DEFAULT_MAX_RERUNS


@dataclass
class PatternConfig:
    """Regular expressions scanned in compiler and tool log files."""

    latex_error: str = patterns.LATEX_ERROR
    latex_warning: str = patterns.LATEX_WARNING
    latex_bad_box: str = patterns.LATEX_BAD_BOX
    latex_needs_rerun: str = patterns.LATEX_NEEDS_RERUN
    bibtex_error: str = patterns.BIBTEX_ERROR
    bibtex_warning: str = patterns.BIBTEX_WARNING
    makeindex_error: str = patterns.MAKEINDEX_ERROR
    makeindex_warning: str = patterns.MAKEINDEX_WARNING


@dataclass
class TexLoopConfig:
    """Represents the settings defined in .texloop.yml."""

    root: Path
    tex_path: Optional[Path] = None
    latex: LatexConfig = field(default_factory=LatexConfig)
    bibtex: ToolConfig = field(default_factory=lambda: ToolConfig("bibtex"))
    makeindex: ToolConfig = field(default_factory=lambda: ToolConfig("makeindex"))
    splitindex: ToolConfig = field(
        default_factory=lambda: ToolConfig("splitindex", ["-m", "makeindex"])
    )
    makeglossaries: ToolConfig = field(default_factory=lambda: ToolConfig("makeglossaries"))
    pythontex: ToolConfig = field(default_factory=lambda: ToolConfig("pythontex"))
    patterns: PatternConfig = field(default_factory=PatternConfig)
    timeout: Optional[float] = None
    source_date_epoch: Optional[int] = None
    jobs: int = 1

    @property
    def timestamp_ms(self) -> Optional[int]:
        if self.source_date_epoch is None:
            return None
        return self.source_date_epoch * 1000


_TOOL_NAMES = ("bibtex", "makeindex", "splitindex", "makeglossaries", "pythontex")


def load_config(config_path: Path) -> TexLoopConfig:
    """Load configuration from disk; a missing file yields the defaults."""
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    if not config_file.exists():
        return TexLoopConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file.name} must contain a mapping at the root")

    config = TexLoopConfig(root=root)

    tex_path = _as_str(data.get("tex_path"))
    if tex_path:
        candidate = Path(tex_path).expanduser()
        config.tex_path = candidate if candidate.is_absolute() else root / candidate

    config.timeout = _as_float(data.get("timeout"))
    if config.timeout is not None and config.timeout <= 0:
        raise ConfigError("timeout must be a positive number of seconds")
    config.source_date_epoch = _as_int(data.get("source_date_epoch"))
    jobs = _as_int(data.get("jobs"))
    if jobs is not None:
        if jobs < 1:
            raise ConfigError("jobs must be at least 1")
        config.jobs = jobs

    latex_data = _as_dict(data.get("latex"))
    if latex_data:
        config.latex = _parse_latex(latex_data)

    tools_data = _as_dict(data.get("tools"))
    for name in _TOOL_NAMES:
        if name in tools_data:
            default: ToolConfig = getattr(config, name)
            setattr(config, name, _parse_tool(tools_data.get(name), default))

    pattern_data = _as_dict(data.get("patterns"))
    if pattern_data:
        config.patterns = _parse_patterns(pattern_data)

    return config


def _parse_latex(data: Dict[str, Any]) -> LatexConfig:
    latex = LatexConfig()
    command = _as_str(data.get("command"))
    if command:
        latex.command = command
    if "args" in data:
        latex.args = _as_arg_list(data.get("args"))
    output_format = _as_str(data.get("output_format"))
    if output_format:
        if output_format.lower() not in OUTPUT_SUFFIXES:
            supported = ", ".join(sorted(OUTPUT_SUFFIXES))
            raise ConfigError(f"latex.output_format must be one of {supported}")
        latex.output_format = output_format.lower()
    if "max_reruns" in data:
        raw = data.get("max_reruns")
        max_reruns = _as_int(raw)
        if raw is None or max_reruns == -1:
            latex.max_reruns = None
        elif max_reruns is None or max_reruns < 0:
            raise ConfigError("latex.max_reruns must be a non-negative integer or -1")
        else:
            latex.max_reruns = max_reruns
    return latex


def _parse_tool(value: Any, default: ToolConfig) -> ToolConfig:
    if value is None or value is False:
        return ToolConfig(command=None)
    if isinstance(value, str):
        return ToolConfig(command=value or None, args=list(default.args))
    data = _as_dict(value)
    command = default.command
    if "command" in data:
        command = _as_str(data.get("command")) or None
    args = _as_arg_list(data.get("args")) if "args" in data else list(default.args)
    return ToolConfig(command=command, args=args)


def _parse_patterns(data: Dict[str, Any]) -> PatternConfig:
    config = PatternConfig()
    for name in PatternConfig.__dataclass_fields__:
        value = _as_str(data.get(name))
        if value is None:
            continue
        try:
            re.compile(value, re.MULTILINE)
        except re.error as exc:
            raise ConfigError(f"patterns.{name} is not a valid regular expression: {exc}") from exc
        setattr(config, name, value)
    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILE_NAME).resolve()
    if config_path.suffix in {".yml", ".yaml"}:
        return config_path.resolve()
    return (config_path.parent / CONFIG_FILE_NAME).resolve()


def _read_config(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_arg_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigError",
    "LatexConfig",
    "PatternConfig",
    "TexLoopConfig",
    "ToolConfig",
    "load_config",
]
