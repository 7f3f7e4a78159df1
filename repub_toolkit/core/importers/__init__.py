"""Importers turning EPUB containers into `Book` objects."""

from .epub_importer import EpubPackageImporter

__all__ = [
    "EpubPackageImporter",
]
