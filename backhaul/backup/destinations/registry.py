"""
Build active StorageDestination instances from the `uploaders` settings.
"""

import logging
from typing import Any, Dict, List, Sequence

from backhaul.config import ConfigError
from backhaul.models import DestinationConfig
from .base import StorageDestination
from .gdrive import GoogleDriveApiDestination
from .rclone import RcloneDriveDestination, RcloneS3Destination
from .s3 import S3SdkDestination

logger = logging.getLogger(__name__)

DESTINATION_TYPES = {
    RcloneDriveDestination.type_name: RcloneDriveDestination,
    GoogleDriveApiDestination.type_name: GoogleDriveApiDestination,
    RcloneS3Destination.type_name: RcloneS3Destination,
    S3SdkDestination.type_name: S3SdkDestination,
}


class UnsupportedType(ConfigError):
    """Raised for a destination type with no implementation."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(
            f"Unsupported uploader type: {type_name}. "
            f"Supported types: {', '.join(sorted(DESTINATION_TYPES))}"
        )


class NoActiveDestinations(ConfigError):
    """Raised when every configured destination is disabled or none exist."""

    def __init__(self):
        super().__init__("No enabled uploaders configured")


def create_destination(type_name: str, options: Dict[str, Any]) -> StorageDestination:
    """
    Instantiate one destination by type.

    Raises:
        UnsupportedType: If type_name is unknown
        ConfigError: If a required field is missing
    """
    destination_class = DESTINATION_TYPES.get(type_name)
    if destination_class is None:
        raise UnsupportedType(type_name)
    return destination_class(options)


def build_from_config(entries: Sequence[Dict[str, Any]]) -> List[StorageDestination]:
    """
    Build the list of active destinations, in configuration order.

    Entries with "enabled": false are skipped.

    Raises:
        ConfigError: On malformed entries or missing fields
        UnsupportedType: For an unknown type
        NoActiveDestinations: If nothing is left after filtering
    """
    if not isinstance(entries, (list, tuple)):
        raise ConfigError("uploaders config must be a list")

    destinations = []
    seen_labels = set()

    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"uploader entry must be an object, got {entry!r}")

        config = DestinationConfig.from_mapping(entry)
        if not config.enabled:
            logger.info(f"Skipping disabled uploader: {config.name or config.type or '(untyped)'}")
            continue

        if not config.type:
            raise ConfigError('uploader config must have a "type" field')

        options = dict(config.options)
        if config.name:
            options['name'] = config.name

        try:
            destination = create_destination(config.type, options)
        except UnsupportedType:
            raise
        except ConfigError as e:
            raise ConfigError(f"Failed to create uploader (type: {config.type}): {e}")

        # Keep labels unique so per-destination report lines do not merge
        label = destination.label
        suffix = 2
        while label in seen_labels:
            label = f"{destination.label}-{suffix}"
            suffix += 1
        destination.label = label
        seen_labels.add(label)

        destinations.append(destination)

    if not destinations:
        raise NoActiveDestinations()

    return destinations
