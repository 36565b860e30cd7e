"""
Text utilities for comparing column headers.

Used by the lexical mapping matcher and for storage-safe filenames.
"""

import re
import unicodedata
from typing import Optional


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping base characters.

    - "Descripción" → "Descripcion"
    - "Categoría" → "Categoria"
    """
    # NFD decomposition separates base chars from accents
    normalized = unicodedata.normalize('NFD', text)
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def normalize_header(name: Optional[str]) -> str:
    """
    Normalize a column header for comparison.

    Splits camelCase, drops accents and punctuation, lowercases:
    - "Product Name" → "product name"
    - "productName" → "product name"
    - "item_sku" → "item sku"
    - "  Precio (USD) " → "precio usd"

    Args:
        name: Raw header text

    Returns:
        Space-separated lowercase tokens, or "" for empty input
    """
    if not name:
        return ""

    text = strip_accents(name.strip())

    # productName -> product Name, SKUCode -> SKU Code
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", text)

    text = re.sub(r"[^0-9a-zA-Z]+", " ", text)
    return " ".join(text.lower().split())


def safe_filename(filename: str) -> str:
    """
    Make a filename safe for object storage paths.

    Anything other than letters, digits, ".", "_" and "-" becomes "_".
    """
    return re.sub(r"[^a-zA-Z0-9._-]", "_", filename)


def file_stem(filename: str) -> str:
    """Filename without its last extension."""
    return re.sub(r"\.[^.]+$", "", filename)
