# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Version Comparison

Versions follow the ``[epoch:]version[-release]`` layout used by binary
package catalogs (e.g. ``2:643.2b-43``, ``1.10.0_patch1-1``).

Two comparisons are provided:
- vercmp(): loose comparison used when matching dependency constraints.
  Releases only count when both sides carry one, so ``1.0`` equals ``1.0-2``.
- Version: strict total order used for sorting and picking the best candidate.
"""

import functools
from typing import Optional, Tuple


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_alpha(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def _is_alnum(ch: str) -> bool:
    return _is_digit(ch) or _is_alpha(ch)


def parse_evr(text: str) -> Tuple[Optional[str], str, Optional[str]]:
    """
    Split a version string into epoch, version and release.

    Args:
        text: Full version string

    Returns:
        (epoch, version, release) where epoch and release are None when absent
    """
    epoch = None
    rest = text
    colon = text.find(":")
    if colon > 0:
        epoch = text[:colon]
        rest = text[colon + 1:]

    # Release starts at the first hyphen after the epoch
    hyphen = rest.find("-")
    if hyphen > 0 or (hyphen == 0 and epoch is not None):
        return epoch, rest[:hyphen], rest[hyphen + 1:]
    return epoch, rest, None


def segment_compare(a: str, b: str) -> int:
    """
    Compare two version fragments segment by segment.

    Numeric segments compare numerically and are newer than alphabetic ones.
    A trailing alphabetic segment is older than nothing ("1.0a" < "1.0"),
    any other trailing segment is newer ("1.0" < "1.0.1").

    Returns:
        -1, 0 or 1
    """
    if a == b:
        return 0

    one = two = 0
    ptr1 = ptr2 = 0
    len1, len2 = len(a), len(b)

    while one < len1 and two < len2:
        while one < len1 and not _is_alnum(a[one]):
            one += 1
        while two < len2 and not _is_alnum(b[two]):
            two += 1

        if one >= len1 or two >= len2:
            break

        # Separator runs of different length decide the comparison
        if (one - ptr1) != (two - ptr2):
            return -1 if (one - ptr1) < (two - ptr2) else 1

        ptr1, ptr2 = one, two
        if _is_digit(a[ptr1]):
            while ptr1 < len1 and _is_digit(a[ptr1]):
                ptr1 += 1
            while ptr2 < len2 and _is_digit(b[ptr2]):
                ptr2 += 1
            is_num = True
        else:
            while ptr1 < len1 and _is_alpha(a[ptr1]):
                ptr1 += 1
            while ptr2 < len2 and _is_alpha(b[ptr2]):
                ptr2 += 1
            is_num = False

        seg1 = a[one:ptr1]
        seg2 = b[two:ptr2]

        # Segment types differ: numeric wins over alphabetic
        if not seg2:
            return 1 if is_num else -1

        if is_num:
            seg1 = seg1.lstrip("0")
            seg2 = seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1

        if seg1 != seg2:
            return -1 if seg1 < seg2 else 1

        one, two = ptr1, ptr2

    if one >= len1 and two >= len2:
        return 0

    if (one >= len1 and not _is_alpha(b[two])) or (one < len1 and _is_alpha(a[one])):
        return -1
    return 1


def vercmp(a: str, b: str) -> int:
    """
    Compare two full version strings (loose).

    Epochs are compared first, then versions; releases are only compared
    when both strings have one.

    Args:
        a: First version
        b: Second version

    Returns:
        -1 if a is older than b, 0 if equivalent, 1 if a is newer
    """
    if a == b:
        return 0

    epoch1, version1, release1 = parse_evr(a)
    epoch2, version2, release2 = parse_evr(b)

    ret = segment_compare(epoch1 or "0", epoch2 or "0")
    if ret == 0:
        ret = segment_compare(version1, version2)
        if ret == 0 and release1 is not None and release2 is not None:
            ret = segment_compare(release1, release2)
    return ret


@functools.total_ordering
class Version:
    """
    Version with a strict total order.

    Ordering: epoch, version, release (a missing release sorts before any
    release), then the raw text as the final tie breaker. Equality and
    hashing use the raw text.
    """

    __slots__ = ("raw", "epoch", "version", "release")

    def __init__(self, raw: str):
        if not raw:
            raise ValueError("Version cannot be empty")
        self.raw = raw
        self.epoch, self.version, self.release = parse_evr(raw)

    def compare(self, other: "Version") -> int:
        ret = segment_compare(self.epoch or "0", other.epoch or "0")
        if ret:
            return ret

        ret = segment_compare(self.version, other.version)
        if ret:
            return ret

        if self.release is None or other.release is None:
            if self.release is not None:
                return 1
            if other.release is not None:
                return -1
        else:
            ret = segment_compare(self.release, other.release)
            if ret:
                return ret

        if self.raw == other.raw:
            return 0
        return -1 if self.raw < other.raw else 1

    def __eq__(self, other) -> bool:
        if isinstance(other, str):
            other = Version(other)
        if not isinstance(other, Version):
            return NotImplemented
        return self.raw == other.raw

    def __lt__(self, other) -> bool:
        if isinstance(other, str):
            other = Version(other)
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash(self.raw)

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"Version({self.raw!r})"
