"""Cairn: a content-addressed memory index over an IPFS blob network."""

from cairn.config import CairnConfig, load_config
from cairn.core import Cairn

__all__ = ["Cairn", "CairnConfig", "load_config"]
