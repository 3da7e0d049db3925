"""
hr_config -- single public entrypoint for HR configuration.

Responsibility:
    ``get_active_config()`` returns the ``HRConfigurationSet`` the process
    runs with.  The file is chosen by, in order: the explicit ``path``
    argument, the ``HR_CONFIG_PATH`` environment variable, the packaged
    default set in ``hr_config/sets/default.yaml``.

Architecture position:
    Configuration -- sits above ``hr_kernel`` and ``hr_modules``.  The
    kernel MUST NEVER import from ``hr_config``; ``hr_config.bridges``
    translates the parsed set into kernel and module inputs.

Failure modes:
    - ``FileNotFoundError`` -- the chosen file does not exist.
    - ``KeyError`` / ``ValueError`` -- schema violations.

Audit relevance:
    Every successful call emits an ``HR_CONFIG_TRACE`` log entry with the
    config_id, version, checksum and source path.
"""

from __future__ import annotations

import os
from pathlib import Path

from hr_config.loader import compute_checksum, load_yaml_file, parse_config_set
from hr_config.schema import HRConfigurationSet
from hr_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "HR_CONFIG_PATH"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> HRConfigurationSet:
    """The public configuration entrypoint.

    Args:
        path: Explicit YAML file.  Defaults to ``$HR_CONFIG_PATH`` or the
            packaged default set.

    Returns:
        The parsed, checksummed ``HRConfigurationSet``.
    """
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)
    config = parse_config_set(load_yaml_file(source))

    _logger.info(
        "HR_CONFIG_TRACE",
        extra={
            "trace_type": "HR_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "source_path": str(source),
            "template_count": len(config.templates),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "HRConfigurationSet",
    "compute_checksum",
    "get_active_config",
]
