import re

_STORE_NUMBER = re.compile(r"#\s*\w*\d\w*")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_DIGITS = re.compile(r"\b\w*\d\w*\b")
_WHITESPACE = re.compile(r"\s+")

# Tokens that carry no signal for categorization.
STOPWORDS = frozenset({
    "the", "and", "of", "a", "to", "at", "in", "on", "for", "inc", "ltd",
    "co", "store", "purchase", "pos", "payment", "pmt",
})


def normalize_merchant(name: str | None) -> str:
    """
    Case-fold a merchant name and strip store numbers and punctuation.

    "TIM HORTONS #1234" and "Tim Hortons" both become "tim hortons".
    """
    if not name:
        return ""
    text = name.casefold()
    text = _STORE_NUMBER.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text)
    text = _DIGITS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str | None) -> list[str]:
    normalized = normalize_merchant(text)
    if not normalized:
        return []
    tokens: list[str] = []
    seen = set()
    for token in normalized.split(" "):
        if len(token) < 2 or token in STOPWORDS or token in seen:
            continue
        tokens.append(token)
        seen.add(token)
    return tokens


def contains_phrase(haystack: str, phrase: str) -> bool:
    """Whole-word containment on normalized text."""
    if not phrase:
        return False
    return f" {phrase} " in f" {haystack} "


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", name.casefold())
    return slug.strip("_")
