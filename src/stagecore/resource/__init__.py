"""Clients for the resources provisioned under test."""

from stagecore.resource.base import ClientFactory, ConnectionDescriptor, ExecResult, ResourceClient

__all__ = ["ClientFactory", "ConnectionDescriptor", "ExecResult", "ResourceClient"]
