"""
Builders shared by the test modules.
"""
from common.types import CorrespondencePair, GeoPoint, PixelPoint


def make_pairs(pixels, lonlats):
    """Zip (x, y) pixels with (lon, lat) geo points into CorrespondencePairs."""
    return [
        CorrespondencePair(pixel=PixelPoint(x, y), geo=GeoPoint(lat=lat, lon=lon))
        for (x, y), (lon, lat) in zip(pixels, lonlats)
    ]
