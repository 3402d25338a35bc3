"""Setuptools build hooks for einloop."""

from __future__ import annotations

from setuptools import setup

# Metadata lives in pyproject.toml; the project ships pure Python modules plus
# the lark grammar, so the default command classes are left in place.
setup()
