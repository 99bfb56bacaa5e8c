"""HTTPS clients for the identity provider and the remote object store."""

from portal.clients.graph_client import GraphStoreClient
from portal.clients.identity_client import IdentityProviderClient

__all__ = ["GraphStoreClient", "IdentityProviderClient"]
