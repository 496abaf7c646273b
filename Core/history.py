from collections import deque

from config import HISTORY_CAPACITY, SEARCH_LIMIT


def longest_common_substring(a, b):
    """Length of the longest contiguous run shared by a and b"""
    if not a or not b:
        return 0
    best = 0
    prev = [0] * (len(b) + 1)
    for ca in a:
        cur = [0] * (len(b) + 1)
        for j, cb in enumerate(b, 1):
            if ca == cb:
                cur[j] = prev[j - 1] + 1
                if cur[j] > best:
                    best = cur[j]
        prev = cur
    return best


def match_score(term, entry):
    """
    Case-insensitive fuzzy score of entry against term.
    An entry containing the whole term scores len(term), the maximum.
    """
    term, entry = term.lower(), entry.lower()
    if term in entry:
        return len(term)
    return longest_common_substring(term, entry)


class History:
    """Bounded command history, oldest entries evicted first."""

    def __init__(self, capacity=HISTORY_CAPACITY):
        self.entries = deque(maxlen=capacity)

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def append(self, line):
        """Add a line unless it is empty or repeats the previous entry"""
        if not line or (self.entries and self.entries[-1] == line):
            return False
        self.entries.append(line)
        return True

    def _scored(self, term):
        # Most recent first
        for entry in reversed(self.entries):
            score = match_score(term, entry)
            if score:
                yield score, entry

    def reverse_search(self, term):
        """
        Best match for term, scanning from the most recent entry.
        Ties go to the more recent entry.
        Returns: entry or None
        """
        if not term:
            return None
        best, best_score = None, 0
        for score, entry in self._scored(term):
            if score > best_score:
                best, best_score = entry, score
                if score == len(term):
                    break
        return best

    def search_all(self, term, limit=SEARCH_LIMIT):
        """
        Up to limit distinct matches ranked by score, recency breaking ties.
        Returns: list of entries
        """
        if not term:
            return []
        seen, ranked = set(), []
        for order, (score, entry) in enumerate(self._scored(term)):
            if entry in seen:
                continue
            seen.add(entry)
            ranked.append((-score, order, entry))
        ranked.sort()
        return [entry for _, _, entry in ranked[:limit]]

    def has_tied_matches(self, term):
        """True when more than one distinct entry shares the best score"""
        if not term:
            return False
        top, count = 0, 0
        seen = set()
        for score, entry in self._scored(term):
            if entry in seen:
                continue
            seen.add(entry)
            if score > top:
                top, count = score, 1
            elif score == top:
                count += 1
        return count > 1

    def show(self):
        """Numbered listing, oldest first"""
        return "\n".join(f"{i}\t{entry}" for i, entry in enumerate(self.entries, 1))
