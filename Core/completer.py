import os
from dataclasses import dataclass, field


@dataclass
class Completion:
    """
    Outcome of completing one word.
    text is the replacement for the word (unchanged when nothing matched),
    matches lists every candidate when there was more than one.
    """

    word: str
    text: str
    matches: list = field(default_factory=list)

    @property
    def changed(self):
        return self.text != self.word


def common_prefix(names):
    return os.path.commonprefix(list(names)) if names else ""


def list_candidates(word, cwd=None):
    """
    Directory entries that start with word.
    A word like 'src/ma' is completed inside 'src/'. Dotfiles only show up
    when the typed name itself starts with '.'.
    """
    directory, _, prefix = word.rpartition("/")
    if directory or word.startswith("/"):
        base = directory + "/" if directory else "/"
    else:
        base = ""
    search_dir = os.path.join(cwd or os.getcwd(), base) if base else (cwd or os.getcwd())

    try:
        names = os.listdir(search_dir)
    except OSError:
        return []

    show_hidden = prefix.startswith(".")
    return sorted(
        base + name for name in names
        if name.startswith(prefix) and (show_hidden or not name.startswith("."))
    )


def complete(word, at_end=True, cwd=None):
    """
    Complete a partial file name.
    One match replaces the word (plus a space when the cursor is at the end
    of the line). Several matches extend the word to their longest common
    prefix and are all returned. No match leaves the word alone.
    Returns: Completion
    """
    matches = list_candidates(word, cwd)
    if not matches:
        return Completion(word=word, text=word)
    if len(matches) == 1:
        text = matches[0]
        if at_end:
            text += " "
        return Completion(word=word, text=text)

    prefix = common_prefix(matches)
    text = prefix if len(prefix) > len(word) else word
    return Completion(word=word, text=text, matches=matches)
