from typing import Callable, List

import regex


# Heuristic: End of sentence must be two letters or more, with the last letter lowercase,
# followed by a period, exclamation point, question mark. A final or preceding parenthesis
# or quote is allowed. Abbreviations like "e.g." and sentences ending in numerals or
# capitals don't break, which errs on the side of fewer, longer sentences.
SENTENCE_RE = regex.compile(r"(\b\p{L}+[\p{Ll}])([.?!]['\"’”)]?|['\"’”)][.?!]) *$")

# Very short fragments are kept with the following sentence.
SENTENCE_MIN_LENGTH = 15


def heuristic_end_of_sentence(word: str) -> bool:
    return bool(SENTENCE_RE.search(word))


def split_sentences(
    text: str,
    heuristic: Callable[[str], bool] = heuristic_end_of_sentence,
    min_length: int = SENTENCE_MIN_LENGTH,
) -> List[str]:
    """
    Split text into sentences using an approximate, fast regex heuristic (English).
    Conservative rather than perfect. Whitespace within a sentence is collapsed to
    single spaces.
    """
    words = text.split()
    sentences: List[str] = []
    sentence: List[str] = []
    words_len = 0
    for word in words:
        sentence.append(word)
        words_len += len(word)
        sentence_len = words_len + len(sentence) - 1
        if heuristic(word) and sentence_len >= min_length:
            sentences.append(" ".join(sentence))
            sentence = []
            words_len = 0
    if sentence:
        sentences.append(" ".join(sentence))
    return sentences


# Looser: any word ending in terminal punctuation, including `CLI.` and `v2.`, except
# common abbreviations and initialisms like `e.g.` or `U.S.`.
LOOSE_SENTENCE_RE = regex.compile(r"[\p{L}\p{N})\]`'\"’”*_][.?!]+['\"’”)*_]*$")

ABBREVIATIONS = {"e.g", "i.e", "etc", "vs", "cf", "approx", "fig", "mr", "mrs", "ms", "dr"}

_initialism_re = regex.compile(r"^(?:\p{L}\.)+\p{L}?$")


def loose_end_of_sentence(word: str) -> bool:
    if not LOOSE_SENTENCE_RE.search(word):
        return False
    stem = word.lstrip("([\"'“‘*_").rstrip(".?!'\"’”)*_")
    return not (stem.lower() in ABBREVIATIONS or _initialism_re.match(stem + "."))


def split_sentences_loose(text: str) -> List[str]:
    """
    Split on every plausible sentence end, keeping short sentences on their own. Better
    than `split_sentences` when sentences are compared rather than read.
    """
    return split_sentences(text, heuristic=loose_end_of_sentence, min_length=0)


def word_count(text: str) -> int:
    return len(regex.findall(r"[\p{L}\p{N}]+(?:['’][\p{L}]+)?", text))


## Tests


def test_split_sentences():
    text = (
        "Run make setup to install dependencies. Then run the tests!\n"
        "Is it done? See the guide (e.g. the FAQ) for more."
    )
    assert split_sentences(text) == [
        "Run make setup to install dependencies.",
        "Then run the tests!",
        "Is it done? See the guide (e.g. the FAQ) for more.",
    ]
    assert split_sentences("") == []
    assert split_sentences("No terminal punctuation here") == ["No terminal punctuation here"]


def test_word_count():
    assert word_count("Hello, world! It's 2024.") == 4
    assert word_count("# Title\n\n- one\n- two") == 3
    assert word_count("") == 0


def test_split_sentences_loose():
    text = "Deploy everything with the CLI. Upgrade to v2. Run make. See e.g. the FAQ (U.S. only)."
    assert split_sentences_loose(text) == [
        "Deploy everything with the CLI.",
        "Upgrade to v2.",
        "Run make.",
        "See e.g. the FAQ (U.S. only).",
    ]
    assert split_sentences_loose("Is it **done?** Yes!") == ["Is it **done?**", "Yes!"]
    assert split_sentences_loose("No ending") == ["No ending"]
