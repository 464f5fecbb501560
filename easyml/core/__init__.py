"""Core numerical primitives for easyml."""

from . import activations, engine, losses, optimizers, stats, types

__all__ = ["activations", "engine", "losses", "optimizers", "stats", "types"]
