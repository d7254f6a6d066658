"""Utility entry points for supplementary route matcher tooling."""

from .render_map import load_tracks, render

__all__ = ["load_tracks", "render"]
