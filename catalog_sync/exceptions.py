# catalog_sync/exceptions.py
from __future__ import annotations

from dataclasses import dataclass


class CatalogSyncError(Exception):
    """Base class for every error raised while resolving a product record."""


class InputError(CatalogSyncError):
    """Malformed or missing input (required field, unknown store root, rewrite collision)."""


class IllegalAttributeValueError(CatalogSyncError):
    """A new select/multiselect option was needed while option creation is disabled."""

    def __init__(self, attribute_code: str, value: str):
        self.attribute_code = attribute_code
        self.value = value
        super().__init__(f"Attempted to add new attribute value '{value}'.")


class StateError(CatalogSyncError):
    """Stored metadata is not in the shape the resolvers expect."""


class StorageError(CatalogSyncError):
    """A query failed in the relational store."""


class IntegrationError(CatalogSyncError):
    """An external collaborator (media handling) failed."""


@dataclass
class SoftFailure:
    """A degraded but non-fatal outcome, recorded instead of raised."""
    component: str
    message: str
