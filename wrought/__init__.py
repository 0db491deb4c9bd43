"""wrought: provenance tracking for script-driven text preparation."""

__version__ = "0.1.0"
