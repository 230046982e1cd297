from typing import Tuple

from onemeal.core.errors import InvalidRegionKey
from onemeal.utils.rounding import format_coordinate, round_coordinate

REGION_KEY_DELIMITER = "_"


class AreaBucketer:
    """
    Spatial quantization of feed locations.

    Events are stored at `coordinate_precision` and counted per region at the
    coarser `region_precision`, so several stored events collapse into one
    region bucket.
    """

    def __init__(self, coordinate_precision: int = 3, region_precision: int = 2):
        self.coordinate_precision = coordinate_precision
        self.region_precision = region_precision

    def round_location(self, lat: float, lng: float) -> Tuple[float, float]:
        return (
            round_coordinate(lat, self.coordinate_precision),
            round_coordinate(lng, self.coordinate_precision),
        )

    def get_region_key(self, lat: float, lng: float) -> str:
        return region_key(lat, lng, self.region_precision)


def region_key(lat: float, lng: float, precision: int = 2) -> str:
    """
    Generates the region bucket identifier by rounding coordinates.

    Args:
        lat: Latitude
        lng: Longitude
        precision: Number of decimal places to round to.

    Returns:
        String representation of the bucket (e.g., "12.97_77.59")
    """
    return f"{format_coordinate(lat, precision)}{REGION_KEY_DELIMITER}{format_coordinate(lng, precision)}"


def decode_region_key(key: str) -> Tuple[float, float]:
    """Split a region key back into (lat, lng), rejecting anything malformed."""
    parts = key.split(REGION_KEY_DELIMITER)
    if len(parts) != 2:
        raise InvalidRegionKey(f"malformed region key: {key!r}")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        raise InvalidRegionKey(f"non-numeric region key: {key!r}") from None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise InvalidRegionKey(f"region key out of range: {key!r}")
    return lat, lng
