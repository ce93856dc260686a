"""Live device trees: build, merge, resolve references and write them as source."""

__version__ = "1.4.4"