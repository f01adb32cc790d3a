from __future__ import annotations

import unicodedata


def normalize_text(value: str) -> str:
    """Return UTF-8 safe text by collapsing surrogate-escaped bytes.

    Listing keys may carry undecodable bytes represented as lone surrogates.
    Terminal rendering rejects those, so they become replacement characters.
    Keys are also canonicalized to NFC so that both sides of a comparison
    sort unicode names the same way.
    """
    safe = value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return unicodedata.normalize("NFC", safe)
