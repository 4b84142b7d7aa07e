"""
Response normalizer: strips code-fence markers that chat models like to wrap
JSON answers in, e.g.

    ```json
    {"items": [...]}
    ```

The result is not validated; see app.pipeline.mapper for parsing.
"""

import re

_OPENING_FENCE = re.compile(r"\A```[A-Za-z0-9_+.-]*[ \t]*(?:\r?\n)?")
_CLOSING_FENCE = re.compile(r"(?:\r?\n)?[ \t]*```\Z")


def _strip_once(text: str) -> str:
    text = _OPENING_FENCE.sub("", text, count=1)
    text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def normalize(raw_text: str) -> str:
    """Remove the surrounding fence markers and whitespace from an AI response.

    Each pass removes one opening and one closing fence; passes repeat until
    nothing changes, so normalize(normalize(x)) == normalize(x) for any x.
    """
    text = raw_text.strip()
    while True:
        stripped = _strip_once(text)
        if stripped == text:
            return text
        text = stripped
