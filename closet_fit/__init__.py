"""Closet Fit - dress a person photo with catalog garments."""

__version__ = "1.0.0"
