"""Neutralize unsafe content in model-emitted files.

Model output is untrusted text.  Two total functions are applied to every
generated file before it leaves a section generator:

* :func:`sanitize_path` strips ``.``/``..`` segments and collapses
  repeated separators.
* :func:`scrub_content` redacts environment-variable reads and API-key
  assignments the model may have hallucinated or echoed from training data.

Neither is a security boundary on its own: the materializer still confines
every write to its root directory.
"""

from __future__ import annotations

import re

_PARENT_SEGMENT = "../"
_SEPARATOR_RUN = re.compile(r"/{2,}")
_DOT_SEGMENTS = frozenset({".", ".."})

# process.env.SECRET, process.env["SECRET"], import.meta.env.VITE_SECRET
_ENV_ACCESS_PATTERN = re.compile(
    r"\b(?:import\.meta\.env|process\.env)"
    r"(?:\.[A-Za-z_$][\w$]*|\[\s*(['\"`])[^'\"`\]]*\1\s*\])"
)
# Whole line assigning API_KEY / API_KEYS / OPENAI_API_KEY / ...
_API_KEY_LINE_PATTERN = re.compile(
    r"^[^\n]*\b\w*API_KEYS?\b\s*=(?!=)[^\n]*(?:\r?\n|$)",
    re.MULTILINE,
)


def sanitize_path(path: str) -> str:
    """Return *path* with every traversal segment removed and separator runs collapsed.

    ``../`` removal repeats until the path is stable so that inputs like
    ``....//`` cannot reassemble a traversal segment.  Bare ``.`` and ``..``
    segments, including a trailing ``..`` with no separator after it, are
    then dropped.  Backslashes are treated as separators.  The result may be
    empty; callers decide whether an empty path is acceptable.

    Examples::

        sanitize_path("../../etc/passwd")  -> "etc/passwd"
        sanitize_path("a//b///c")          -> "a/b/c"
        sanitize_path("a/..")              -> "a"
    """
    result = path.replace("\\", "/")
    while True:
        cleaned = _SEPARATOR_RUN.sub("/", result.replace(_PARENT_SEGMENT, ""))
        if cleaned == result:
            break
        result = cleaned
    segments = [s for s in result.split("/") if s not in _DOT_SEGMENTS]
    return _SEPARATOR_RUN.sub("/", "/".join(segments))


def scrub_content(content: str) -> str:
    """Strip API-key assignment lines, then environment-variable reads.

    The line rule runs first, so ``process.env.API_KEY = "x"`` loses its
    whole line rather than just the ``process.env.API_KEY`` expression.
    Content containing neither pattern is returned unchanged.
    """
    scrubbed = _API_KEY_LINE_PATTERN.sub("", content)
    return _ENV_ACCESS_PATTERN.sub("", scrubbed)
