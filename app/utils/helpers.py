"""
Common text utility functions.
"""
import html
import re


def normalize_whitespace(text: str) -> str:
    """
    Collapse every run of whitespace (including newlines) to a single space.

    Args:
        text: Raw text string

    Returns:
        Single-line text
    """
    return re.sub(r'\s+', ' ', text).strip()


def normalize_key(text: str) -> str:
    """
    Normalize a niche name / problem title for exclusion matching.

    Args:
        text: Raw name or title

    Returns:
        Lowercased, whitespace-collapsed key
    """
    return normalize_whitespace(str(text)).lower()


def strip_html(text: str) -> str:
    """
    Convert the HTML the model sometimes emits into plain markdown-ish text.

    Headings become ``#`` lines, bold/italic become ``**``/``_``, list items
    become ``- `` lines, paragraphs and ``<br>`` become newlines.  Any other
    tag is dropped and common entities are unescaped.

    Args:
        text: Generated guide text

    Returns:
        Text without HTML tags
    """
    if not text:
        return ""
    flags = re.IGNORECASE | re.DOTALL
    text = re.sub(r'<h[1-6][^>]*>(.*?)</h[1-6]>', r'# \1\n\n', text, flags=flags)
    text = re.sub(r'<(?:strong|b)>(.*?)</(?:strong|b)>', r'**\1**', text, flags=flags)
    text = re.sub(r'<(?:em|i)>(.*?)</(?:em|i)>', r'_\1_', text, flags=flags)
    text = re.sub(r'<li[^>]*>(.*?)</li>', r'- \1\n', text, flags=flags)
    text = re.sub(r'<p[^>]*>(.*?)</p>', r'\1\n\n', text, flags=flags)
    text = re.sub(r'<br\s*/?>', '\n', text, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]*>', '', text)
    text = html.unescape(text)
    # Tag removal leaves ragged blank runs behind
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()
