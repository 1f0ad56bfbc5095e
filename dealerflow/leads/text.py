"""Small string helpers shared by the lead analysis components."""

from __future__ import annotations


def levenshtein(a: str, b: str) -> int:
    """Return the edit distance between ``a`` and ``b``."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized similarity in ``[0, 1]`` based on :func:`levenshtein`."""

    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein(a, b)) / longer


def normalize(text: str) -> str:
    return text.strip().lower()


def contains_any(text: str, keywords) -> list[str]:
    """Return the keywords found in ``text`` (substring match)."""

    return [kw for kw in keywords if kw in text]


def customer_texts(messages) -> list[str]:
    """Return the content of customer-authored messages, oldest first."""

    return [m.content for m in messages if m.role == "customer"]


def customer_blob(messages) -> str:
    """Join customer messages into one lowercase string."""

    return " ".join(customer_texts(messages)).lower()
