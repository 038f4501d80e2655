from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from backends.registry import ProviderKind
from config.schema import RouterConfig
from telemetry.usage import UsageStats

try:
    import fcntl  # POSIX-only; guarded at call sites
except Exception:  # pragma: no cover
    fcntl = None  # type: ignore

logger = logging.getLogger(__name__)

SETTINGS_NAMESPACE = "backend_router"
SETTINGS_ENV_VAR = "LLM_ROUTER_SETTINGS"
USAGE_NAMESPACE = "backend_router_usage"

# Stores sharing one settings file rewrite it read-modify-write.
_DOCUMENT_LOCK = threading.Lock()


def default_settings_path() -> str:
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        return os.path.expanduser(os.path.expandvars(override))
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join("~", ".config")
    return os.path.expanduser(os.path.join(base, "llm-router", "settings.yaml"))


def read_settings_document(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring settings file %s: top level is not a mapping", path)
        return {}
    return raw


def update_settings_namespace(path: str, namespace: str, value: Any) -> None:
    """Replace one top-level namespace of the settings file, keeping the others."""
    with _DOCUMENT_LOCK:
        try:
            document = read_settings_document(path)
        except yaml.YAMLError:
            logger.warning("Overwriting unreadable settings file %s", path)
            document = {}
        document[namespace] = value
        write_yaml_atomic(path, document)


def write_yaml_atomic(path: str, data: Dict[str, Any]) -> None:
    """Atomically write YAML to a file with fsync and os.replace.

    Uses a temporary file in the same directory and then replaces to guarantee
    readers never see a partially-written file.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", encoding="utf-8", dir=directory, delete=False,
            prefix=".tmp_settings_", suffix=".yaml"
        ) as tf:
            tmp = tf.name
            if fcntl is not None:
                fcntl.flock(tf.fileno(), fcntl.LOCK_EX)
            yaml.safe_dump(data, tf, sort_keys=True, default_flow_style=False)
            tf.flush()
            os.fsync(tf.fileno())
        os.replace(tmp, path)
        tmp = None
    finally:
        if tmp and os.path.exists(tmp):
            os.unlink(tmp)


class YamlConfigStore:
    """Durable router settings kept under a private namespace of a YAML file.

    Other top-level keys in the same file belong to other components and are
    preserved untouched on save.
    """

    def __init__(self, path: Optional[str] = None, *, namespace: str = SETTINGS_NAMESPACE) -> None:
        self.path = path or default_settings_path()
        self.namespace = namespace

    def load(self) -> RouterConfig:
        """Load the persisted configuration, applying defaults for absent keys.

        A stored key that no longer validates is dropped (and logged) so one bad
        value does not discard the rest of the user's settings.
        """
        try:
            document = read_settings_document(self.path)
        except yaml.YAMLError as e:
            logger.warning("Settings file %s is not valid YAML (%s); using defaults", self.path, e)
            return RouterConfig()

        section = document.get(self.namespace)
        if not isinstance(section, dict):
            return RouterConfig()

        data = {k: v for k, v in section.items() if k in RouterConfig.model_fields}
        while True:
            try:
                return RouterConfig.model_validate(data)
            except ValidationError as e:
                bad_keys = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
                bad_keys &= set(data)
                if not bad_keys:
                    logger.warning("Discarding invalid settings in %s: %s", self.path, e)
                    return RouterConfig()
                for key in sorted(bad_keys):
                    logger.warning("Discarding invalid setting %s.%s from %s", self.namespace, key, self.path)
                    data.pop(key, None)

    def save(self, config: RouterConfig) -> None:
        update_settings_namespace(self.path, self.namespace, config.model_dump(mode="json"))
        logger.debug("Saved backend router settings to %s", self.path)


class YamlUsageStore:
    """Per-provider usage counters kept in their own namespace of the settings file."""

    def __init__(self, path: Optional[str] = None, *, namespace: str = USAGE_NAMESPACE) -> None:
        self.path = path or default_settings_path()
        self.namespace = namespace

    def load(self) -> Dict[ProviderKind, UsageStats]:
        try:
            section = read_settings_document(self.path).get(self.namespace)
        except yaml.YAMLError as e:
            logger.warning("Settings file %s is not valid YAML (%s); starting usage from zero", self.path, e)
            return {}
        if not isinstance(section, dict):
            return {}
        stats: Dict[ProviderKind, UsageStats] = {}
        for key, value in section.items():
            try:
                stats[ProviderKind(key)] = UsageStats.from_dict(value)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Discarding usage entry %s.%s from %s: %s", self.namespace, key, self.path, e)
        return stats

    def save(self, stats: Mapping[ProviderKind, UsageStats]) -> None:
        payload = {ProviderKind(kind).value: s.to_dict() for kind, s in stats.items()}
        update_settings_namespace(self.path, self.namespace, payload)


__all__ = [
    "SETTINGS_ENV_VAR",
    "SETTINGS_NAMESPACE",
    "USAGE_NAMESPACE",
    "YamlConfigStore",
    "YamlUsageStore",
    "default_settings_path",
    "read_settings_document",
    "update_settings_namespace",
    "write_yaml_atomic",
]
