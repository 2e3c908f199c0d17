"""Collect links to read or watch later in an Atom feed."""

__version__ = "0.3.0"
HOMEPAGE = "https://github.com/linkdrop/linkdrop"
