"""Configuration loading from environment variables and cairn.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

DEFAULT_GATEWAY = "https://w3s.link/ipfs"
DEFAULT_BLOB_API = "http://127.0.0.1:5001"
_CONFIG_FILENAME = "cairn.toml"


@dataclass
class GatewayConfig:
    """Read-side gateway configuration."""

    url: str = DEFAULT_GATEWAY
    timeout: float = 30.0


@dataclass
class BlobStoreConfig:
    """Write-side blob store configuration and credentials."""

    api_url: str = DEFAULT_BLOB_API
    signing_key: str = ""
    delegation: str = ""
    timeout: float = 60.0


@dataclass
class IndexConfig:
    """Index history selection and write behavior."""

    root_cid: str | None = None
    agent_id: str | None = None
    write_attempts: int = 3


@dataclass
class CairnConfig:
    """Top-level Cairn configuration."""

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    blob_store: BlobStoreConfig = field(default_factory=BlobStoreConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> CairnConfig:
    """Load configuration from environment variables and optional cairn.toml.

    Priority: environment variables > cairn.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.cairn/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".cairn" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    gateway_data = file_data.get("gateway", {})
    blob_data = file_data.get("blob_store", {})
    index_data = file_data.get("index", {})

    config = CairnConfig(
        gateway=GatewayConfig(
            url=os.getenv("CAIRN_GATEWAY", gateway_data.get("url", DEFAULT_GATEWAY)).rstrip("/"),
            timeout=float(os.getenv("CAIRN_GATEWAY_TIMEOUT", gateway_data.get("timeout", 30.0))),
        ),
        blob_store=BlobStoreConfig(
            api_url=os.getenv("CAIRN_BLOB_API", blob_data.get("api_url", DEFAULT_BLOB_API)).rstrip(
                "/"
            ),
            signing_key=os.getenv("CAIRN_SIGNING_KEY", blob_data.get("signing_key", "")),
            delegation=os.getenv("CAIRN_DELEGATION", blob_data.get("delegation", "")),
            timeout=float(os.getenv("CAIRN_BLOB_TIMEOUT", blob_data.get("timeout", 60.0))),
        ),
        index=IndexConfig(
            root_cid=os.getenv("CAIRN_ROOT_CID", index_data.get("root_cid")) or None,
            agent_id=os.getenv("CAIRN_AGENT_ID", index_data.get("agent_id")) or None,
            write_attempts=int(
                os.getenv("CAIRN_WRITE_ATTEMPTS", index_data.get("write_attempts", 3))
            ),
        ),
        log_level=os.getenv("CAIRN_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
