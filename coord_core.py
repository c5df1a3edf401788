from __future__ import annotations

import hashlib
import logging
import random
import re
from dataclasses import dataclass
from itertools import cycle
from typing import IO, Iterable, Iterator, NamedTuple, Optional, Protocol, Union

# Logging setup
logger = logging.getLogger(__name__)

# ----------------------------
# Format constants
# ----------------------------

NOT_FOUND = "#"
SEPARATOR = ","

# Skip counts are drawn from this inclusive range for every enciphered character
SKIP_MIN = 1
SKIP_MAX = 10

# C isspace() class, applied byte-wise
WHITESPACE = b" \t\n\r\x0b\x0c"
_WHITESPACE_CHARS = WHITESPACE.decode("ascii")
_DIGITS = "0123456789"

_WORD_RE = re.compile(rb"[^ \t\n\r\x0b\x0c]+")

MAX_KEY_FILE_SIZE = 64 * 1024 * 1024


# ----------------------------
# Errors
# ----------------------------


class CipherError(ValueError):
    """Base class for every failure raised by the coordinate cipher."""


class InvalidInput(CipherError):
    pass


class CapacityExceeded(CipherError):
    pass


class OutOfRange(CipherError, IndexError):
    pass


class MalformedCiphertext(CipherError):
    def __init__(self, message: str, position: int) -> None:
        super().__init__(f"{message} (at offset {position})")
        self.position = position


class KeyFileTooLarge(CipherError):
    pass


# ----------------------------
# Gutenberg auto-clean helpers
# ----------------------------

_START_RE = re.compile(
    rb"\*\*\*\s*START OF (THE|THIS) PROJECT GUTENBERG EBOOK.*?\*\*\*",
    re.IGNORECASE | re.DOTALL,
)
_END_RE = re.compile(
    rb"\*\*\*\s*END OF (THE|THIS) PROJECT GUTENBERG EBOOK.*?\*\*\*",
    re.IGNORECASE | re.DOTALL,
)


def clean_gutenberg_headers(buffer: bytes) -> bytes:
    """Remove Project Gutenberg headers/footers if markers exist."""
    m1 = _START_RE.search(buffer)
    m2 = _END_RE.search(buffer)
    if m1 and m2 and m2.start() > m1.end():
        return buffer[m1.end() : m2.start()].strip(WHITESPACE)
    return buffer


# ----------------------------
# Key corpus and word table
# ----------------------------


@dataclass(frozen=True)
class Word:
    offset: int
    length: int


class Coordinate(NamedTuple):
    word_index: int
    char_index: int


@dataclass(frozen=True)
class KeyCorpus:
    buffer: bytes  # normalized (lower-cased) key bytes
    words: tuple[Word, ...]
    sha256: bytes  # 32 bytes

    @property
    def word_count(self) -> int:
        return len(self.words)

    @property
    def fingerprint(self) -> str:
        return self.sha256.hex()[:16]

    def word(self, index: int) -> bytes:
        if index < 0 or index >= len(self.words):
            raise OutOfRange(f"Word index out of range: {index} (corpus has {len(self.words)} words)")
        w = self.words[index]
        return self.buffer[w.offset : w.offset + w.length]

    def char_at(self, word_index: int, char_index: int) -> str:
        w = self.word(word_index)
        if char_index < 0 or char_index >= len(w):
            raise OutOfRange(
                f"Char index out of range: {char_index} (word {word_index} has {len(w)} chars)"
            )
        return chr(w[char_index])

    def iter_words(self) -> Iterator[bytes]:
        for w in self.words:
            yield self.buffer[w.offset : w.offset + w.length]


def count_words(buffer: Optional[bytes]) -> int:
    """Sizing pass: number of whitespace-delimited words in ``buffer``."""
    if buffer is None:
        raise InvalidInput("Key buffer is required.")
    return sum(1 for _ in _WORD_RE.finditer(buffer))


def tokenize(buffer: Optional[bytes], capacity: Optional[int] = None) -> tuple[Word, ...]:
    """
    Split ``buffer`` into maximal runs of non-whitespace bytes.

    Args:
        buffer: Raw key bytes
        capacity: Word count from an earlier count_words() pass, if the caller
            sized its table that way. Finding more words than this raises
            CapacityExceeded.

    Returns a tuple of Word views (offset, length) into ``buffer``.
    """
    if buffer is None:
        raise InvalidInput("Key buffer is required.")

    words = []
    for m in _WORD_RE.finditer(buffer):
        if capacity is not None and len(words) >= capacity:
            raise CapacityExceeded(f"Key holds more words than the table capacity ({capacity}).")
        words.append(Word(offset=m.start(), length=m.end() - m.start()))
    return tuple(words)


def build_corpus(buffer: Union[bytes, bytearray, str, None], autoclean: bool = False) -> KeyCorpus:
    if buffer is None:
        raise InvalidInput("Key buffer is required.")
    if isinstance(buffer, str):
        # single-byte model: anything outside latin-1 cannot be addressed anyway
        buffer = buffer.encode("latin-1", errors="replace")

    raw = bytes(buffer)
    if autoclean:
        raw = clean_gutenberg_headers(raw)

    normalized = raw.lower()
    words = tokenize(normalized)
    corpus = KeyCorpus(
        buffer=normalized,
        words=words,
        sha256=hashlib.sha256(normalized).digest(),
    )
    logger.debug(f"Built key corpus: {corpus.word_count} words, {len(normalized)} bytes, sha256 {corpus.fingerprint}")
    return corpus


# ----------------------------
# Skip-count providers
# ----------------------------


class SkipProvider(Protocol):
    def next(self, low: int, high: int) -> int: ...


class ProcessSkip:
    """Draws skip counts from the process-wide ``random`` generator."""

    def next(self, low: int, high: int) -> int:
        return random.randint(low, high)


class SeededSkip:
    """Private generator; the same seed gives the same ciphertext for the same key."""

    def __init__(self, seed: Union[int, str, bytes, None] = None) -> None:
        self._rng = random.Random(seed)

    def next(self, low: int, high: int) -> int:
        return self._rng.randint(low, high)


class SequenceSkip:
    """Replays a fixed sequence of skip counts, cycling when it runs out."""

    def __init__(self, values: Iterable[int]) -> None:
        values = list(values)
        if not values:
            raise InvalidInput("SequenceSkip needs at least one value.")
        self._values = cycle(values)

    def next(self, low: int, high: int) -> int:
        return next(self._values)


DEFAULT_SKIP = ProcessSkip()


# ----------------------------
# Occurrence locator
# ----------------------------


def _fold(ch: str) -> str:
    # ASCII only, to match bytes.lower() on the key
    if "A" <= ch <= "Z":
        return chr(ord(ch) + 32)
    return ch


def _as_byte(character: Union[int, str]) -> Optional[int]:
    if isinstance(character, int):
        if not 0 <= character <= 0xFF:
            raise InvalidInput(f"Character code out of byte range: {character}")
        return character
    if len(character) != 1:
        raise InvalidInput(f"Expected a single character, got {character!r}")
    code = ord(character)
    return code if code <= 0xFF else None


def locate(corpus: KeyCorpus, character: Union[int, str], occurrence: int) -> Optional[Coordinate]:
    """
    Find the ``occurrence``-th match of ``character`` in word-table order.

    Matching is case-sensitive. When the character occurs fewer than
    ``occurrence`` times the last occurrence is returned; when it never
    occurs the result is None.
    """
    if corpus is None:
        raise InvalidInput("Key corpus is required.")
    if occurrence < 1:
        raise InvalidInput(f"Occurrence must be a positive integer, got {occurrence}")

    code = _as_byte(character)
    if code is None:
        return None

    needle = bytes([code])
    buf = corpus.buffer
    remaining = occurrence
    last = None

    for word_index, w in enumerate(corpus.words):
        end = w.offset + w.length
        pos = buf.find(needle, w.offset, end)
        while pos != -1:
            last = Coordinate(word_index, pos - w.offset)
            remaining -= 1
            if remaining == 0:
                return last
            pos = buf.find(needle, pos + 1, end)

    if last is not None:
        logger.debug(f"Only {occurrence - remaining} occurrence(s) of {chr(code)!r}; using the last one")
    return last


# ----------------------------
# Encoder
# ----------------------------


def _drop_separator(out: list[str]) -> None:
    if out and out[-1].endswith(SEPARATOR):
        out[-1] = out[-1][:-1]


def encode(corpus: KeyCorpus, plaintext: str, skip: Optional[SkipProvider] = None) -> str:
    """
    Encipher ``plaintext`` into coordinate text.

    Args:
        corpus: KeyCorpus built from the key file
        plaintext: Message to encipher
        skip: Skip-count provider (defaults to the process-wide generator)

    Whitespace is copied through, every other character becomes
    ``word,char`` or ``#`` when the key never contains it. Letters are
    folded to lower case first.

    Raises InvalidInput if the corpus or plaintext is missing or the corpus is empty.
    """
    if corpus is None or plaintext is None:
        raise InvalidInput("Key corpus and plaintext are required.")
    if not corpus.words:
        raise InvalidInput("Key corpus has no words.")

    skip = skip or DEFAULT_SKIP
    out: list[str] = []
    missing = 0

    for ch in plaintext:
        if ch in _WHITESPACE_CHARS:
            _drop_separator(out)
            out.append(ch)
            continue

        coord = locate(corpus, _fold(ch), skip.next(SKIP_MIN, SKIP_MAX))
        if coord is None:
            missing += 1
            out.append(NOT_FOUND + SEPARATOR)
        else:
            out.append(f"{coord.word_index}{SEPARATOR}{coord.char_index}{SEPARATOR}")

    _drop_separator(out)

    if missing:
        logger.warning(f"{missing} character(s) not found in key corpus; encoded as {NOT_FOUND!r}")

    result = "".join(out)
    logger.debug(f"Enciphered {len(plaintext)} chars into {len(result)} chars")
    return result


# ----------------------------
# Decoder
# ----------------------------


def _read_index(text: str, pos: int, bound: int, label: str) -> tuple[int, int]:
    """
    Parse the decimal run at ``pos``; ``bound`` is the exclusive upper limit.

    Runs with more significant digits than ``bound`` are rejected before
    conversion, so arbitrarily long runs never reach int().
    """
    end = pos
    while end < len(text) and text[end] in _DIGITS:
        end += 1
    if end == pos:
        raise MalformedCiphertext("Expected a decimal index", pos)
    digits = text[pos:end].lstrip("0") or "0"
    if len(digits) > len(str(bound)):
        raise OutOfRange(f"{label} index out of range: {len(digits)}-digit value at offset {pos}")
    return int(digits), end


def iter_decode(corpus: KeyCorpus, ciphertext: str) -> Iterator[str]:
    """Yield the deciphered characters of ``ciphertext`` one at a time."""
    if corpus is None or ciphertext is None:
        raise InvalidInput("Key corpus and ciphertext are required.")
    return _iter_tokens(corpus, ciphertext)


def _iter_tokens(corpus: KeyCorpus, ciphertext: str) -> Iterator[str]:
    longest = max((w.length for w in corpus.words), default=0)
    pos = 0
    end = len(ciphertext)
    while pos < end:
        ch = ciphertext[pos]

        if ch in _WHITESPACE_CHARS:
            yield ch
            pos += 1

        elif ch == NOT_FOUND:
            yield NOT_FOUND
            pos += 1
            if pos < end and ciphertext[pos] == SEPARATOR:
                pos += 1

        elif ch in _DIGITS:
            if not corpus.words:
                raise InvalidInput("Key corpus has no words.")
            word_index, pos = _read_index(ciphertext, pos, corpus.word_count, "Word")
            if pos >= end or ciphertext[pos] != SEPARATOR:
                raise MalformedCiphertext("Expected ',' between word and char index", pos)
            char_index, pos = _read_index(ciphertext, pos + 1, longest, "Char")
            yield corpus.char_at(word_index, char_index)
            if pos < end and ciphertext[pos] == SEPARATOR:
                pos += 1

        else:
            raise MalformedCiphertext(f"Unexpected character {ch!r}", pos)


def decode(corpus: KeyCorpus, ciphertext: str) -> str:
    """
    Decipher coordinate text back into (lower-cased) plaintext.

    Raises OutOfRange for coordinates outside the corpus and
    MalformedCiphertext for text that does not follow the token grammar.
    """
    result = "".join(iter_decode(corpus, ciphertext))
    logger.debug(f"Deciphered {len(ciphertext)} chars into {len(result)} chars")
    return result


def decode_to_stream(corpus: KeyCorpus, ciphertext: str, stream: IO[str]) -> None:
    """Decipher onto a text stream, finishing with a newline."""
    # nothing is written when the ciphertext is rejected
    stream.write(decode(corpus, ciphertext))
    stream.write("\n")
