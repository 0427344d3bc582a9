"""
vietnamese.py — Vietnamese diacritic folding for fuzzy matching and slugs.

normalize() is total and idempotent: input is NFC-composed first so that
decomposed text ("a" + combining acute) folds the same way as precomposed text.
"""
from __future__ import annotations

import re
import unicodedata

_VIETNAMESE_BASES: dict[str, str] = {
    'a': 'àáảãạăằắẳẵặâầấẩẫậ',
    'd': 'đ',
    'e': 'èéẻẽẹêềếểễệ',
    'i': 'ìíỉĩị',
    'o': 'òóỏõọôồốổỗộơờớởỡợ',
    'u': 'ùúủũụưừứửữự',
    'y': 'ỳýỷỹỵ',
}


def _build_table() -> dict[int, str]:
    table: dict[int, str] = {}
    for base, chars in _VIETNAMESE_BASES.items():
        for ch in chars:
            table[ord(ch)] = base
            table[ord(ch.upper())] = base.upper()
    return table


_FOLD_TABLE = _build_table()
_SLUG_STRIP = re.compile(r'[^a-z0-9\s-]')
_SLUG_JOIN = re.compile(r'[\s-]+')


def normalize(text: str) -> str:
    """
    Replace every Vietnamese diacritic letter with its base Latin letter.

    Case is preserved; lowercase separately if needed.

        normalize("Máy photocopy Ricoh") -> "May photocopy Ricoh"
        normalize("ĐIỆN") -> "DIEN"
    """
    if not text:
        return ''
    result = unicodedata.normalize('NFC', text).translate(_FOLD_TABLE)
    # Folding can leave a stray combining mark that recomposes into another
    # Vietnamese letter ("ơ" + U+0302 -> "o" + U+0302 -> "ô"); run to a fixed point.
    while True:
        folded = unicodedata.normalize('NFC', result).translate(_FOLD_TABLE)
        if folded == result:
            return result
        result = folded


def normalize_search_query(query: str) -> str:
    """Fold, lowercase and trim a user query for comparison."""
    return normalize(query).lower().strip()


def compare_vietnamese(a: str, b: str, case_sensitive: bool = False) -> bool:
    """True if both strings are equal once diacritics are folded."""
    na, nb = normalize(a), normalize(b)
    if case_sensitive:
        return na == nb
    return na.lower() == nb.lower()


def contains_vietnamese(text: str, query: str) -> bool:
    """True if query occurs in text, ignoring diacritics and case."""
    return normalize_search_query(query) in normalize(text).lower()


def slugify(text: str) -> str:
    """
    Locale-aware slug: fold Vietnamese, lowercase, drop anything that is not
    ASCII alphanumeric, hyphen-join the words.

        slugify("Tài liệu-Hướng dẫn sử dụng") -> "tai-lieu-huong-dan-su-dung"
    """
    folded = normalize(text)
    # Remaining non-Vietnamese accents (ñ, ç) are decomposed and dropped.
    ascii_text = unicodedata.normalize('NFKD', folded).encode('ascii', 'ignore').decode('ascii')
    slug = _SLUG_STRIP.sub('', ascii_text.lower())
    return _SLUG_JOIN.sub('-', slug).strip('-')
