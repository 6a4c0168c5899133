"""
CONTENT SANITIZER
=================

Maps arbitrary text to plain 7-bit ASCII. Applied to every message we send to
the completion provider and to every delta we relay back to the client.

Steps: NFKD normalization, smart-punctuation substitution, then every
remaining non-ASCII character is dropped. Never raises.
"""

import logging
import re
import unicodedata
from typing import Optional


logger = logging.getLogger("RelayChat")

# Typographic characters the model likes to emit, with their ASCII stand-ins.
REPLACEMENTS = {
    "“": '"',    # left double quote
    "”": '"',    # right double quote
    "‘": "'",    # left single quote
    "’": "'",    # right single quote
    "—": "-",    # em dash
    "–": "-",    # en dash
    "…": "...",  # ellipsis
}

_NON_ASCII = re.compile(r"[^\x00-\x7F]")


def sanitize_content(content: Optional[str]) -> str:
    """Return an ASCII-only version of content ("" for empty or None)."""
    if not content:
        return ""

    try:
        content = unicodedata.normalize("NFKD", content)
    except (TypeError, ValueError) as e:
        logger.warning("Failed to normalize content: %s", e)

    for src, dst in REPLACEMENTS.items():
        content = content.replace(src, dst)

    return _NON_ASCII.sub("", content)
