"""Clients for the content-addressed blob network."""

from cairn.network.base import BlobFile, BlobStore, Gateway
from cairn.network.gateway import GatewayClient
from cairn.network.kubo import KuboBlobStore

__all__ = ["BlobFile", "BlobStore", "Gateway", "GatewayClient", "KuboBlobStore"]
