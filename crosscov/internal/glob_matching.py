import os
import typing as t


class GlobMatcher:
    """Match paths against a glob pattern.

    ``?`` matches one character and ``*`` any run of characters, path
    separators included, so ``**`` behaves like ``*``. Subjects are matched
    with forward slashes whatever the platform separator is.
    """

    __slots__ = "pattern"

    def __init__(self, pattern):
        # type: (str) -> None
        self.pattern = pattern.replace(os.sep, "/")

    def __repr__(self):
        return "GlobMatcher(%r)" % self.pattern

    def match(self, subject):
        # type: (str) -> bool
        pattern = self.pattern
        subject = subject.replace(os.sep, "/")
        px = 0
        sx = 0
        nextPx = 0
        nextSx = 0

        while px < len(pattern) or sx < len(subject):
            if px < len(pattern):
                char = pattern[px]
                if sx < len(subject) and subject[sx] == char:
                    px += 1
                    sx += 1
                    continue

                elif char == "?":
                    if sx < len(subject):
                        px += 1
                        sx += 1
                        continue

                elif char == "*":
                    nextPx = px
                    nextSx = sx + 1
                    px += 1
                    continue

            if 0 < nextSx and nextSx <= len(subject):
                px = nextPx
                sx = nextSx
                continue

            return False
        return True


def compile_patterns(patterns):
    # type: (t.Iterable[str]) -> t.List[GlobMatcher]
    """Compile glob patterns, a leading ``**/`` also matching at the top level."""
    matchers = []  # type: t.List[GlobMatcher]
    for pattern in patterns:
        if not pattern:
            continue
        matchers.append(GlobMatcher(pattern))
        if pattern.startswith("**/"):
            matchers.append(GlobMatcher(pattern[3:]))
    return matchers


def match_any(matchers, subject):
    # type: (t.Iterable[GlobMatcher], str) -> bool
    return any(m.match(subject) for m in matchers)
