"""Externalized validation defaults."""

from .config_loader import ValidatorConfig

__all__ = ["ValidatorConfig"]
