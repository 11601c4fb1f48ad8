"""Text processing utilities.

Common text manipulation functions used across modules.
"""

import re

# Sentence boundary: terminal punctuation followed by whitespace or end
SENTENCE_END = re.compile(r"[.!?](?:\s|$)")


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


def capitalize_first(text: str) -> str:
    """Uppercase the first character, leaving the rest untouched."""
    text = text.strip()
    if not text:
        return text
    return text[0].upper() + text[1:]


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len characters, appending '...' when cut.

    Args:
        text: Text to truncate
        max_len: Maximum length of the returned string

    Returns:
        Original text if short enough, else a cut version ending in '...'
    """
    text = text.strip()
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)].rstrip() + "..."


def first_sentence(text: str, max_len: int = 100) -> str:
    """Extract the first sentence of a free-text observation.

    Used to turn a learner's note into a short "issue" line.

    Args:
        text: Free text (may contain several sentences)
        max_len: Maximum length of the returned sentence

    Returns:
        First sentence without trailing punctuation, capped at max_len
    """
    text = " ".join(text.split())
    if not text:
        return ""
    match = SENTENCE_END.search(text)
    sentence = text[: match.start()] if match else text
    return truncate(sentence, max_len)
