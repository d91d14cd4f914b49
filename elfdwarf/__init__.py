"""Readers for ELF images, DWARF line tables and public names, and process address-space maps."""

__version__ = "0.1.0"