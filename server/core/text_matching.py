"""Text normalisation and fuzzy word matching shared by the discovery pipeline."""
import re
from typing import Iterable, List

_PUNCT_RE = re.compile(r"[^\w\s-]+", re.UNICODE)
_NON_ALNUM_RE = re.compile(r"[^\w]+|_", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "with", "without", "for", "of", "to", "in", "on", "near", "me",
})

DIET_WORDS = frozenset({
    "veg", "veggie", "vegetarian", "vegan", "halal", "kosher",
    "glutenfree", "gluten-free", "lactosefree", "lactose-free",
    "dairyfree", "dairy-free",
})

# Spelling variants seen on menus: dal/daal, paneer/panir, makhani/makhni
_VARIANT_RULES = (
    (re.compile(r"aa"), "a"),
    (re.compile(r"ee"), "i"),
    (re.compile(r"oo"), "u"),
    (re.compile(r"ani$"), "ni"),
    (re.compile(r"y$"), "i"),
)


def _compile_word_patterns(keywords: Iterable[str]) -> re.Pattern:
    """
    Build a single compiled regex that matches any of the keywords
    on word boundaries.  This prevents "veg" from matching inside
    "vegan" and "ham" from matching inside "hummus".
    """
    escaped = [re.escape(kw) for kw in keywords]
    pattern = r"\b(?:" + "|".join(escaped) + r")\b"
    return re.compile(pattern, re.IGNORECASE)


def normalize_text(text: str) -> str:
    """Lowercase, drop quotes and punctuation (hyphens kept), collapse spaces."""
    if not text:
        return ""
    lowered = text.lower().replace("'", "").replace('"', "")
    lowered = _PUNCT_RE.sub(" ", lowered)
    return _SPACES_RE.sub(" ", lowered).strip()


def slugify(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "-", text or "").strip("-").lower()


def _variant(word: str) -> str:
    for pattern, repl in _VARIANT_RULES:
        word = pattern.sub(repl, word)
    return word


def is_similar(first: str, second: str, positional: bool = True) -> bool:
    """Loose word equality tolerant to common menu spelling variants.

    With ``positional`` enabled, words of similar length (3+ chars, at
    most 2 apart) also match when 70% of characters agree by position.
    """
    a = _NON_ALNUM_RE.sub("", normalize_text(first))
    b = _NON_ALNUM_RE.sub("", normalize_text(second))
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True

    norm_a, norm_b = _variant(a), _variant(b)
    if norm_a == norm_b or norm_a in norm_b or norm_b in norm_a:
        return True

    if positional and abs(len(a) - len(b)) <= 2 and len(a) >= 3:
        same = sum(1 for x, y in zip(a, b) if x == y)
        return same / max(len(a), len(b)) >= 0.7
    return False


def tokenize_query(query: str) -> List[str]:
    """Split a dish query into content tokens (stopwords and diet words removed)."""
    norm = normalize_text(query)
    if not norm:
        return []
    tokens = [t.replace("-", "") for t in norm.split(" ") if t]
    return [t for t in tokens if t and t not in STOPWORDS and t not in DIET_WORDS]
