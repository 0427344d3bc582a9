"""
Archive Taxonomy — Brand / Series Extraction

Deterministic recognizers for copier/printer filenames and folder names:
1. Brand whitelist matching with canonical spellings
2. Series-prefix scanning (MPC, e-Studio, iR-ADV, ...) with overlap suppression
3. Expansion of compressed model ranges ("MPC 3054-4054-5054")
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# ============================================================
# Brand Detection
# ============================================================

# Order matters: first containment hit wins.
KNOWN_BRANDS = [
    'RICOH', 'TOSHIBA', 'CANON', 'SHARP', 'HP',
    'KONICA MINOLTA', 'KONICA', 'MINOLTA',
    'KYOCERA', 'BROTHER', 'EPSON', 'XEROX', 'FUJI XEROX',
    'SAMSUNG', 'PANASONIC', 'LEXMARK', 'OKI',
]

BRAND_CANONICAL: dict[str, str] = {
    'KONICA MINOLTA': 'Konica Minolta',
    'KONICA': 'Konica Minolta',
    'MINOLTA': 'Konica Minolta',
    'FUJI XEROX': 'Xerox',
    'HP': 'HP',
}


def extract_brand(raw_text: Optional[str]) -> Optional[str]:
    """
    Return the canonical brand named anywhere in raw_text, or None.

    Whitelist-positive: noise such as "TEST", "MÁY", "A4" never matches
    because it is not on the list.
    """
    if not raw_text:
        return None
    upper = raw_text.upper()
    for known in KNOWN_BRANDS:
        if known in upper:
            return BRAND_CANONICAL.get(known, known.capitalize())
    return None

# ============================================================
# Series Patterns
# ============================================================

@dataclass(frozen=True)
class SeriesPattern:
    series: str
    brand: str
    # Anchored "<series> <numbers>" splitter used by expand_model_names
    prefix: re.Pattern
    # Unanchored scanner used on whole filenames
    scanner: re.Pattern


# Digit-led tokens joined by - / , ; a token may carry a short letter suffix
# ("5516AC", "5200S") and a later token one leading letter ("-C5210S").
# A longer letter run ("3054SERVICE") or the next series code ("-MPC 3004")
# ends the cluster.
_MODEL_TOKEN = r'\d+(?:[A-Z]{1,3}(?![A-Z]))?'
_NUMBER_CLUSTER = rf'({_MODEL_TOKEN}(?:[\-/,]+[A-Z]?{_MODEL_TOKEN})*)'


def _series(series: str, brand: str, prefix_re: str, scan_re: str) -> SeriesPattern:
    return SeriesPattern(
        series=series,
        brand=brand,
        prefix=re.compile(rf'^({prefix_re})\s*(.+)$', re.IGNORECASE),
        scanner=re.compile(rf'{scan_re}\s*{_NUMBER_CLUSTER}', re.IGNORECASE),
    )


# Longer codes are listed before the shorter codes they start with.
SERIES_PATTERNS: list[SeriesPattern] = [
    _series('MPC', 'Ricoh', r'MPC', r'MPC'),
    _series('MPW', 'Ricoh', r'MPW', r'MPW'),
    _series('MP', 'Ricoh', r'MP', r'MP'),
    _series('IM', 'Ricoh', r'IM', r'IM'),
    _series('SP', 'Ricoh', r'SP', r'SP'),
    _series('e-Studio', 'Toshiba', r'e-?Studio', r'E-?STUDIO'),
    _series('iR-ADV', 'Canon', r'iR-?ADV', r'IR-?ADV'),
    _series('iR', 'Canon', r'iR', r'IR'),
    _series('Pro C', 'Ricoh', r'Pro\s*C', r'PRO\s*C'),
]

KNOWN_SERIES: list[str] = [p.series for p in SERIES_PATTERNS]

# ============================================================
# Model Range Expansion
# ============================================================

_GENERIC_PREFIX = re.compile(r'^([a-zA-Z\s\-.]+)(\d.*)$')
_TOKEN_SPLIT = re.compile(r'[\-/,\s]+')


def _strip_series_echo(prefix: str, token: str) -> str:
    """Drop a repeated series code from the head of a token ("iR", "IR2520" -> "2520")."""
    candidates = {re.sub(r'[\s\-]', '', prefix).upper(), prefix.split()[-1].upper()}
    for cand in sorted(candidates, key=len, reverse=True):
        if not cand:
            continue
        head = r'[\s\-]?'.join(re.escape(ch) for ch in cand)
        m = re.match(rf'{head}[\s\-_]*(?=\d)', token, re.IGNORECASE)
        if m:
            return token[m.end():]
    return token


def expand_model_names(raw_input: Optional[str]) -> list[str]:
    """
    Expand a series prefix plus a delimited number cluster into full names.

        "MPC 3054-4054-5054"     -> ["MPC 3054", "MPC 4054", "MPC 5054"]
        "e-Studio 5516AC-6516AC" -> ["e-Studio 5516AC", "e-Studio 6516AC"]
        "iR 2520/2525"           -> ["iR 2520", "iR 2525"]

    Never drops information: when nothing can be split out, a non-trivial
    input comes back verbatim as a single entry.
    """
    if not raw_input or not raw_input.strip():
        return []
    raw = raw_input.strip()

    prefix = ''
    number_part = raw
    for pat in SERIES_PATTERNS:
        m = pat.prefix.match(raw)
        if m:
            prefix = pat.series
            number_part = m.group(2)
            break

    if not prefix:
        m = _GENERIC_PREFIX.match(raw)
        if m:
            prefix = m.group(1).strip()
            number_part = m.group(2)

    tokens = [t.strip() for t in _TOKEN_SPLIT.split(number_part)]
    tokens = [t for t in tokens if len(t) >= 2 and re.search(r'\d', t)]

    results: list[str] = []
    if tokens and prefix:
        for token in tokens:
            clean = _strip_series_echo(prefix, token.lstrip('-_'))
            if clean:
                results.append(f'{prefix} {clean}')
    if not results and len(raw) > 2:
        results.append(raw)

    return list(dict.fromkeys(results))

# ============================================================
# Filename Scanning
# ============================================================

@dataclass(frozen=True)
class SeriesMatch:
    position: int
    length: int
    series: str
    brand: str
    numbers: str

    @property
    def end(self) -> int:
        return self.position + self.length


@dataclass
class SeriesExtraction:
    brand: Optional[str] = None
    series_list: list[str] = field(default_factory=list)
    models: list[str] = field(default_factory=list)


def find_series_matches(text: str) -> list[SeriesMatch]:
    """All occurrences of every series pattern, in pattern order then position."""
    upper = text.upper()
    matches: list[SeriesMatch] = []
    for pat in SERIES_PATTERNS:
        for m in pat.scanner.finditer(upper):
            matches.append(SeriesMatch(
                position=m.start(),
                length=m.end() - m.start(),
                series=pat.series,
                brand=pat.brand,
                numbers=m.group(1),
            ))
    return matches


def suppress_overlaps(matches: list[SeriesMatch]) -> list[SeriesMatch]:
    """
    Keep one match per start position: the longest span, ties going to the
    pattern listed first ("MPC" over "MP", "iR-ADV" over "iR"). Matches at
    different positions are all kept, in reading order.
    """
    kept: dict[int, SeriesMatch] = {}
    for cand in matches:
        best = kept.get(cand.position)
        if best is None or cand.length > best.length:
            kept[cand.position] = cand
    return [kept[pos] for pos in sorted(kept)]


def extract_series_and_models(file_name: str) -> SeriesExtraction:
    """
    Scan a filename for every series occurrence.

    series_list holds each series once; models accumulates the expansion of
    every occurrence. brand is the whitelisted brand in the name, else the
    brand implied by the first series found.
    """
    result = SeriesExtraction(brand=extract_brand(file_name))
    if not file_name:
        return result

    for match in suppress_overlaps(find_series_matches(file_name)):
        if match.series not in result.series_list:
            result.series_list.append(match.series)
        if result.brand is None:
            result.brand = match.brand
        if match.numbers:
            result.models.extend(expand_model_names(f'{match.series} {match.numbers}'))

    result.models = list(dict.fromkeys(result.models))
    if result.series_list:
        logger.debug("Series in %r: %s -> %s", file_name, result.series_list, result.models)
    return result
