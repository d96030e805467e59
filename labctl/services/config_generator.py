"""
Config Generator
================
Writes per-network service configuration for cbt and cbt-api.

Output ({state_dir}/configs):
    cbt-{network}.yaml       engine config (ClickHouse, Redis DB, metrics port)
    cbt-api-{network}.yaml   API config (listen port, metrics port, database)

A file with the same name in {state_dir}/custom-configs replaces the
generated one verbatim.

Per-network values are derived from the network's position in the enabled
list: index 0 gets Redis DB 0, metrics ports 9100/9200, the base cbt-api
port; later networks add their index.
"""
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List

import yaml

from labctl.core.config import LabSettings
from labctl.core.constants import cbt_api_service, cbt_service
from labctl.core.errors import ConfigGenerationError

logger = logging.getLogger(__name__)

CBT_METRICS_PORT_BASE = 9100
CBT_API_METRICS_PORT_BASE = 9200
CLICKHOUSE_URL = "http://localhost:8123"
REDIS_URL = "redis://localhost:6379"


class ConfigGenerator:
    """Config-Generation collaborator."""

    def __init__(self, settings: LabSettings) -> None:
        self.settings = settings

    def cbt_config(self, network: str, index: int) -> Dict[str, Any]:
        return {
            "network": network,
            "clickhouse": {
                "url": CLICKHOUSE_URL,
                "database": network,
            },
            "redis": {
                "url": f"{REDIS_URL}/{index}",
            },
            "metrics": {
                "addr": f":{CBT_METRICS_PORT_BASE + index}",
            },
        }

    def cbt_api_config(self, network: str, index: int) -> Dict[str, Any]:
        return {
            "network": network,
            "server": {
                "addr": f":{self.settings.cbt_api_port(network)}",
            },
            "clickhouse": {
                "url": CLICKHOUSE_URL,
                "database": network,
            },
            "metrics": {
                "addr": f":{CBT_API_METRICS_PORT_BASE + index}",
            },
        }

    def _write(self, name: str, content: Dict[str, Any]) -> Path:
        target = self.settings.configs_dir / f"{name}.yaml"
        custom = self.settings.custom_configs_dir / f"{name}.yaml"

        if custom.is_file():
            logger.info("Using custom config %s", custom)
            shutil.copyfile(custom, target)
        else:
            with open(target, "w", encoding="utf-8") as f:
                yaml.safe_dump(content, f, sort_keys=False)
        return target

    def generate(self) -> List[Path]:
        """
        Write every config file for the enabled networks.

        Returns
        -------
        list[Path]
            Written files, cbt before cbt-api for each network.

        Raises
        ------
        ConfigGenerationError
            No network is enabled or a file could not be written.
        """
        networks = self.settings.enabled_networks()
        if not networks:
            raise ConfigGenerationError("no networks enabled")

        written: List[Path] = []
        try:
            self.settings.configs_dir.mkdir(parents=True, exist_ok=True)
            for index, network in enumerate(networks):
                written.append(self._write(cbt_service(network), self.cbt_config(network, index)))
                written.append(self._write(cbt_api_service(network), self.cbt_api_config(network, index)))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigGenerationError(f"failed to generate configs: {e}") from e

        logger.info("Generated %d config files in %s", len(written), self.settings.configs_dir)
        return written
