"""exclusive-listings - Identifier allocation and photo management for exclusive listings."""

__version__ = "0.1.0"
