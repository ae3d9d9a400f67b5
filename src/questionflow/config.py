"""Editor configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from questionflow.graph.history import DEFAULT_HISTORY_CAPACITY
from questionflow.graph.layout import LayoutOptions
from questionflow.graph.path_ids import FALLBACK_TOPIC, topic_problem

CONFIG_FILENAME = "questionflow.yaml"
HISTORY_CAPACITY_ENV = "QFLOW_HISTORY_CAPACITY"


@dataclass
class EditorConfig:
    """Settings for a flow editing session.

    Attributes:
        default_topic: Topic used for root questions that have none.
        history_capacity: Number of undo steps kept. The
            ``QFLOW_HISTORY_CAPACITY`` environment variable takes precedence.
        paste_offset: Offset applied to pasted nodes, per axis.
        layout: Sizes and spacing for ``organize``.
    """

    default_topic: str = FALLBACK_TOPIC
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    paste_offset: float = 50.0
    layout: LayoutOptions = field(default_factory=LayoutOptions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EditorConfig:
        """Create config from dictionary.

        Args:
            data: Mapping with optional keys ``default_topic``,
                ``history_capacity``, ``paste_offset`` and ``layout``.

        Returns:
            EditorConfig instance.

        Raises:
            ValueError: If a value has the wrong shape.
        """
        capacity = os.getenv(HISTORY_CAPACITY_ENV) or data.get(
            "history_capacity", DEFAULT_HISTORY_CAPACITY
        )
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError(f"history_capacity must be at least 1, got {capacity}")

        default_topic = str(data.get("default_topic") or FALLBACK_TOPIC)
        problem = topic_problem(default_topic)
        if problem:
            raise ValueError(f"default_topic: {problem}")

        layout_data = data.get("layout") or {}
        if not isinstance(layout_data, dict):
            raise ValueError("layout must be a mapping")

        return cls(
            default_topic=default_topic,
            history_capacity=capacity,
            paste_offset=float(data.get("paste_offset", 50.0)),
            layout=LayoutOptions.from_dict(dict(layout_data)),
        )


class ConfigError(Exception):
    """Raised when editor configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load editor config at {path}: {reason}")


def load_editor_config(path: Path | None = None) -> EditorConfig:
    """Load editor configuration from YAML.

    Args:
        path: Config file, or a directory containing ``questionflow.yaml``.
            A missing file yields the defaults.

    Returns:
        EditorConfig instance.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    if path is None:
        return EditorConfig.from_dict({})
    config_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_path.exists():
        return EditorConfig.from_dict({})

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            return EditorConfig.from_dict({})
        if not isinstance(data, dict):
            raise ConfigError(config_path, "Top level must be a mapping")

        return EditorConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e
