"""Models and helpers for an anonymous bulletin board: holes, floors, tags, favorites, reports and notifications."""

__version__ = "2.1.0"