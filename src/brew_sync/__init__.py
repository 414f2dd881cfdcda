"""brew-sync: cross-device sync engine for brew guide documents."""

__version__ = "1.0.0"
