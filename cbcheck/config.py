"""
Config module for the cbcheck poller.

Loads the YAML configuration file that tells the poller which User-Agent to
send, where the dedup database lives, and which Slack webhook to post to.

Values are read as the literal text written in the file. YAML's implicit
typing is not applied, so `Database: 0123` stays "0123" and
`UserAgent: on` stays "on".
"""

from dataclasses import dataclass
from typing import Dict, Optional

import yaml

from cbcheck.utils import get_logger


# Module logger
logger = get_logger("config")

DEFAULT_CONFIG_PATH = "config.yaml"

# YAML key -> Config attribute
CONFIG_KEYS = {
    "UserAgent": "user_agent",
    "Database": "database",
    "SlackWebhookURL": "slack_webhook_url",
}

NULL_TAG = "tag:yaml.org,2002:null"


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


@dataclass(frozen=True)
class Config:
    """
    Process-wide settings, loaded once per run.

    Attributes:
        user_agent: Value sent as the User-Agent header on the fund search.
        database: Filesystem path of the SQLite dedup database.
        slack_webhook_url: Incoming webhook that receives the notifications.
    """
    user_agent: str = ""
    database: str = ""
    slack_webhook_url: str = ""


def _scalar_text(key: str, node: yaml.Node) -> str:
    if not isinstance(node, yaml.ScalarNode):
        raise ConfigError(f"Config key '{key}' must be a string, got {node.id}")
    if node.tag == NULL_TAG:
        return ""
    return node.value


def parse_config(document: Optional[yaml.Node]) -> Config:
    """
    Build a Config from a composed YAML document.

    Missing keys are left empty; no defaults are filled in.

    Args:
        document: Result of yaml.compose (a mapping node, or None for an empty file).

    Returns:
        Config instance.

    Raises:
        ConfigError: If the document is not a mapping or a value is not a scalar.
    """
    if document is None:
        return Config()

    if not isinstance(document, yaml.MappingNode):
        raise ConfigError(f"Config must be a mapping, got {document.id}")

    values: Dict[str, str] = {}
    for key_node, value_node in document.value:
        if not isinstance(key_node, yaml.ScalarNode):
            continue
        attr = CONFIG_KEYS.get(key_node.value)
        if attr is not None:
            values[attr] = _scalar_text(key_node.value, value_node)

    return Config(**values)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Read and parse the configuration file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Config instance.

    Raises:
        ConfigError: If the file cannot be opened, read or parsed.
    """
    logger.debug(f"Loading config from {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config {path}: {e}") from e

    try:
        document = yaml.compose(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config {path}: {e}") from e

    config = parse_config(document)

    for key, attr in CONFIG_KEYS.items():
        if not getattr(config, attr):
            logger.warning(f"Config key '{key}' is empty")

    logger.info(f"Loaded config from {path}")
    return config
