"""Three-way merge and diff utilities for description fields.

Uses the ``merge3`` library for three-way merging (the same algorithm used
by Bazaar/Breezy) and ``difflib`` for unified diff generation.

Key design choices:

* Merge operates on **canonical descriptions** (acceptance criteria already
  stripped, whitespace normalised), so the base is the local baseline.
* Conflict markers follow Git convention with custom labels:
  ``<<<<<<< LOCAL``, ``=======``, ``>>>>>>> REMOTE``.
* ``generate_diff`` is a thin wrapper around ``difflib.unified_diff``
  used when presenting a description conflict.
"""

from __future__ import annotations

import difflib

from merge3 import Merge3

START_MARKER = "<<<<<<< LOCAL"


def _lines(text: str) -> list[str]:
    # A trailing newline keeps the last line comparable across sides.
    if text and not text.endswith("\n"):
        text += "\n"
    return text.splitlines(True)


def attempt_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Perform a three-way merge of local and remote changes against a base.

    Args:
        base_content: The baseline description.
        local_content: The current local description.
        remote_content: The current remote description.

    Returns:
        A tuple of ``(merged_text, has_conflicts)`` where *merged_text* is
        the result of the merge (possibly containing conflict markers) and
        *has_conflicts* is ``True`` if conflict markers are present.
    """
    m3 = Merge3(
        _lines(base_content), _lines(local_content), _lines(remote_content)
    )
    merged_text = "".join(
        m3.merge_lines(
            name_a="LOCAL",
            name_b="REMOTE",
            start_marker="<<<<<<<",
            mid_marker="=======",
            end_marker=">>>>>>>",
        )
    )
    return merged_text, START_MARKER in merged_text


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "local",
    label_new: str = "remote",
) -> str:
    """Generate a unified diff between two strings.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    return "".join(
        difflib.unified_diff(
            _lines(old_content),
            _lines(new_content),
            fromfile=label_old,
            tofile=label_new,
        )
    )
