# config.py

import os


class Config:
    """Global editor configuration loaded from ``input/config.json``.

    Attributes
    ----------
    history_limit:
        Maximum number of commands retained by the undo history. Older
        commands stay applied to the document but can no longer be undone.
    dirty_propagation:
        ``"direct"`` marks only the edited node dirty while ``"downstream"``
        also marks every node reachable along outgoing edges.
    evaluation_policy:
        Behaviour when an evaluation is requested while another one is in
        flight: ``"reject"`` returns immediately, ``"queue"`` coalesces all
        such requests into one follow-up run.
    engine_url:
        WebSocket URL of a remote evaluation engine, if any.
    engine_init_timeout:
        Seconds to wait for engine initialisation before it is marked failed.
        ``None`` waits indefinitely.
    journal_dir:
        Directory receiving JSON line journals of commands and evaluations.
        ``None`` keeps the journal in the process log only.
    """

    # Base directories for package resources
    base_dir = os.path.abspath(os.path.dirname(__file__))
    input_dir = os.path.join(base_dir, "input")
    config_file = os.path.join(input_dir, "config.json")

    @staticmethod
    def input_path(*parts: str) -> str:
        """Return absolute path under the ``input`` directory."""
        return os.path.join(Config.input_dir, *parts)

    # Document defaults
    document_version = "0.1.0"
    default_units = "mm"
    default_tolerance = 0.001

    # Undo history
    history_limit = 100

    #: ``"direct"`` or ``"downstream"``
    dirty_propagation = "direct"
    #: ``"reject"`` or ``"queue"``
    evaluation_policy = "reject"

    # Remote engine
    engine_url: str | None = None
    engine_token: str | None = None
    engine_init_timeout: float | None = 30.0
    engine_ping_interval = 30.0

    log_level = "info"
    journal_dir: str | None = None

    # Mapping of ``category`` -> {``label``: bool} controlling which journal
    # records are written.
    DEFAULT_LOG_FILES = {
        "history": {
            "command_executed": True,
            "command_undone": True,
            "command_redone": True,
            "history_cleared": True,
        },
        "evaluation": {
            "evaluation_started": True,
            "evaluation_completed": True,
            "evaluation_failed": True,
            "evaluation_cancelled": True,
        },
        "engine": {
            "engine_ready": True,
            "engine_failed": True,
            "engine_reset": True,
        },
    }

    # Default runtime copy
    log_files = {k: dict(v) for k, v in DEFAULT_LOG_FILES.items()}

    #: Enabled journal categories. ``diagnostic`` enables all of them.
    logging_mode = ["diagnostic"]

    @classmethod
    def is_category_enabled(cls, category: str) -> bool:
        """Return ``True`` if ``category`` should be written based on mode."""
        mode = set(getattr(cls, "logging_mode", ["diagnostic"]))
        return "diagnostic" in mode or category in mode

    @classmethod
    def is_log_enabled(cls, category: str, label: str | None = None) -> bool:
        """Return ``True`` if a journal entry should be written."""

        cfg = cls.log_files.get(category, {})
        if label is not None and not cfg.get(label, True):
            return False
        return cls.is_category_enabled(category)

    @classmethod
    def load_from_file(cls, path: str) -> None:
        """Load configuration values from a JSON or YAML file.

        Only keys that already exist as attributes on ``Config`` will be
        assigned. Nested dictionaries are merged when the existing attribute
        is also a ``dict``. A relative ``journal_dir`` is resolved against the
        directory containing ``path``.

        Parameters
        ----------
        path:
            Path to the configuration file. ``.yaml``/``.yml`` files are read
            with PyYAML, anything else as JSON.
        """

        if not os.path.exists(path):
            raise FileNotFoundError(path)
        data = _read_mapping(path)
        cls.config_file = os.path.abspath(path)
        base_dir = os.path.dirname(cls.config_file)

        for key, value in data.items():
            if not hasattr(cls, key) or key in _PRIVATE_KEYS:
                continue
            if key == "journal_dir" and value and not os.path.isabs(value):
                value = os.path.join(base_dir, value)
            current = getattr(cls, key)
            if isinstance(current, dict) and isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    if isinstance(current.get(sub_key), dict) and isinstance(
                        sub_value, dict
                    ):
                        current[sub_key].update(sub_value)
                    else:
                        current[sub_key] = sub_value
            else:
                setattr(cls, key, value)


_PRIVATE_KEYS = {"base_dir", "input_dir", "config_file"}


def _read_mapping(path: str) -> dict:
    if path.endswith((".yaml", ".yml")):
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
    else:
        import json

        with open(path) as f:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    return data


def load_config(path: str | None = None) -> dict:
    """Load configuration from ``path`` and return the data."""
    if path is None:
        path = Config.input_path("config.json")
    Config.load_from_file(path)
    return _read_mapping(path)
