"""
Configuration management for archview.

Handles loading and saving user configuration from:
- XDG config directory: ~/.config/archview/config.json
- Fallback: ~/.archview/config.json
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)


@dataclass
class SelectionConfig:
    """Selection criteria behaviour."""
    warn_on_empty_criteria: bool = True
    regex_ignore_case: bool = False


@dataclass
class ComposeConfig:
    """Model build and view composition settings."""
    parallel: bool = True
    max_workers: int = 4
    max_hierarchy_depth: int = 256


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    color: bool = True
    output_format: str = "table"


@dataclass
class ArchviewConfig:
    """Main archview configuration."""
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    compose: ComposeConfig = field(default_factory=ComposeConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "selection": asdict(self.selection),
            "compose": asdict(self.compose),
            "cli": asdict(self.cli),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArchviewConfig':
        """Create from dictionary."""
        return cls(
            selection=SelectionConfig(**data.get("selection", {})),
            compose=ComposeConfig(**data.get("compose", {})),
            cli=CLIConfig(**data.get("cli", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    1. ~/.config/archview/config.json when ~/.config exists
    2. Fallback: ~/.archview/config.json
    """
    xdg_config_home = Path.home() / ".config"
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "archview"
    else:
        config_dir = Path.home() / ".archview"

    return config_dir / "config.json"


def load_config() -> ArchviewConfig:
    """
    Load configuration from file.

    Returns:
        ArchviewConfig with loaded values, or defaults if the file is
        missing or unreadable
    """
    config_path = get_config_path()

    if not config_path.exists():
        return ArchviewConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return ArchviewConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
        return ArchviewConfig()


def save_config(config: ArchviewConfig) -> Path:
    """Save configuration to file and return its path."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def update_config(
    warn_on_empty_criteria: Optional[bool] = None,
    regex_ignore_case: Optional[bool] = None,
    parallel: Optional[bool] = None,
    max_workers: Optional[int] = None,
    max_hierarchy_depth: Optional[int] = None,
    verbose: Optional[bool] = None,
    color: Optional[bool] = None,
    output_format: Optional[str] = None,
) -> ArchviewConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.
    """
    config = load_config()

    if warn_on_empty_criteria is not None:
        config.selection.warn_on_empty_criteria = warn_on_empty_criteria
    if regex_ignore_case is not None:
        config.selection.regex_ignore_case = regex_ignore_case

    if parallel is not None:
        config.compose.parallel = parallel
    if max_workers is not None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        config.compose.max_workers = max_workers
    if max_hierarchy_depth is not None:
        config.compose.max_hierarchy_depth = max_hierarchy_depth

    if verbose is not None:
        config.cli.verbose = verbose
    if color is not None:
        config.cli.color = color
    if output_format is not None:
        if output_format not in ("table", "json", "ids"):
            raise ValueError(f"Unknown output format '{output_format}'")
        config.cli.output_format = output_format

    save_config(config)
    return config
