"""
Core annotation logic.

This module is framework-agnostic - it doesn't import FastAPI, Pillow,
or FFmpeg wrappers. Collaborators are passed in through protocols, so
the logic can be tested in isolation.
"""
