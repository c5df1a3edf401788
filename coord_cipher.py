#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import IO, Callable, Optional

import coord_core
from coord_core import CipherError, KeyCorpus

# Logging setup
logger = logging.getLogger(__name__)

MENU_QUIT = 4
PAGE_BREAK = "*" * 81


# ----------------------------
# File collaborators
# ----------------------------


def load_key_file(path: Path, autoclean: bool = False) -> KeyCorpus:
    """Read a key text file as raw bytes and index it."""
    size = path.stat().st_size
    if size > coord_core.MAX_KEY_FILE_SIZE:
        raise coord_core.KeyFileTooLarge(
            f"Key file too large: {size} bytes (limit {coord_core.MAX_KEY_FILE_SIZE})"
        )
    corpus = coord_core.build_corpus(path.read_bytes(), autoclean=autoclean)
    logger.info(f"Loaded key {path}: {corpus.word_count} words")
    return corpus


def read_ciphertext_file(path: Path) -> str:
    return path.read_text(encoding="ascii", errors="replace")


def write_ciphertext_file(path: Path, ciphertext: str) -> None:
    path.write_text(ciphertext, encoding="ascii")


# ----------------------------
# Interactive menu
# ----------------------------


class MenuSession:
    """
    Numbered menu loop: load a key, encipher a message into a file,
    decipher a file onto the console, quit.

    Core and I/O failures are reported on ``err`` and the loop keeps going.
    """

    def __init__(
        self,
        corpus: Optional[KeyCorpus] = None,
        *,
        autoclean: bool = False,
        skip: Optional[coord_core.SkipProvider] = None,
        input_fn: Callable[[str], str] = input,
        out: Optional[IO[str]] = None,
        err: Optional[IO[str]] = None,
    ) -> None:
        self.corpus = corpus
        self.autoclean = autoclean
        self.skip = skip
        self._input = input_fn
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def prompt_for(self, prompt: str) -> str:
        self.out.write(prompt)
        self.out.flush()
        line = self._input("")
        self._print()
        return line

    def prompt_for_int(self, low: int, high: int, prompt: str) -> int:
        while True:
            raw = self.prompt_for(prompt).strip()
            try:
                value = int(raw)
            except ValueError:
                value = None
            if value is not None and low <= value <= high:
                return value
            self._print()
            self._print(f"An integer between {low} and {high} was expected.")
            self._print()

    def print_menu(self) -> None:
        self._print("***** Menu Options ******")
        self._print("1) Enter a text file to use as a cipher key")
        self._print("2) Enter a message to encipher")
        self._print("3) Enter a text file to decipher")
        self._print("4) Quit the program")
        self._print()

    def read_cipher_key(self) -> KeyCorpus:
        name = self.prompt_for("Enter the name of the cipher key text file: ")
        self.corpus = load_key_file(Path(name), autoclean=self.autoclean)
        self._print(f"Key loaded: {self.corpus.word_count} words (sha256 {self.corpus.fingerprint})")
        return self.corpus

    def _require_corpus(self) -> KeyCorpus:
        if self.corpus is None:
            return self.read_cipher_key()
        return self.corpus

    def encipher_file(self) -> None:
        corpus = self._require_corpus()
        message = self.prompt_for("Enter a message to encipher:\n")
        result = coord_core.encode(corpus, message, skip=self.skip)
        name = self.prompt_for("Enter the name of the text file to store the results in: ")
        write_ciphertext_file(Path(name), result)

    def decipher_file(self) -> None:
        corpus = self._require_corpus()
        name = self.prompt_for("Enter the name of the text file to decipher: ")
        coord_core.decode_to_stream(corpus, read_ciphertext_file(Path(name)), self.out)

    def run(self) -> int:
        actions = {
            1: ("read file", self.read_cipher_key),
            2: ("encipher message", self.encipher_file),
            3: ("decipher file", self.decipher_file),
        }
        try:
            while True:
                self.print_menu()
                option = self.prompt_for_int(1, MENU_QUIT, "Enter a menu option (#): ")
                self._print(PAGE_BREAK)
                self._print()

                if option == MENU_QUIT:
                    self._print("Cipher task completed successfully. Self destructing in 3...2...1...")
                    return 0

                label, action = actions[option]
                try:
                    action()
                except (CipherError, OSError) as e:
                    logger.error(f"Menu action {label!r} failed: {e}")
                    print(f"Could not {label}: {e}", file=self.err)

                self._print(PAGE_BREAK)
                self._print()
        except EOFError:
            self._print()
            return 0


# ----------------------------
# Command line
# ----------------------------


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        prog="coordcipher",
        description="Homophonic book cipher: every letter becomes a word,char coordinate into a key text.",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    enc = sub.add_parser("encrypt", help="Encipher a message")
    enc.add_argument("--book", required=True, help="Path to the key text file")
    enc.add_argument("--message", help="Message to encipher (if omitted, you'll be prompted)")
    enc.add_argument("--output", help="Write the ciphertext to this file instead of stdout")
    enc.add_argument("--key", default="", help="Optional seed for repeatable encryption")
    enc.add_argument("--autoclean", action="store_true", help="Strip Project Gutenberg header/footer from the key")

    dec = sub.add_parser("decrypt", help="Decipher coordinate text")
    dec.add_argument("--book", required=True, help="Path to the key text file")
    src = dec.add_mutually_exclusive_group()
    src.add_argument("--cipher", help="Ciphertext. If omitted (and no --input), you'll be prompted.")
    src.add_argument("--input", help="File holding the ciphertext")
    dec.add_argument("--autoclean", action="store_true", help="Strip Project Gutenberg header/footer from the key")

    menu = sub.add_parser("menu", help="Interactive menu session")
    menu.add_argument("--book", help="Key text file to load before the first prompt")
    menu.add_argument("--autoclean", action="store_true", help="Strip Project Gutenberg header/footer from keys")

    args = ap.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        corpus = load_key_file(Path(args.book), autoclean=args.autoclean) if args.book else None

        if args.cmd == "menu":
            return MenuSession(corpus, autoclean=args.autoclean).run()

        if args.cmd == "encrypt":
            skip = coord_core.SeededSkip(args.key) if args.key else None
            msg = args.message if args.message is not None else input("Message to encipher: ")
            result = coord_core.encode(corpus, msg, skip=skip)
            if args.output:
                write_ciphertext_file(Path(args.output), result)
            else:
                print(result)
            return 0

        if args.cmd == "decrypt":
            if args.input:
                c = read_ciphertext_file(Path(args.input))
            elif args.cipher is not None:
                c = args.cipher
            else:
                c = input("Paste ciphertext: ")
            coord_core.decode_to_stream(corpus, c, sys.stdout)
            return 0
    except EOFError:
        logger.error(f"{args.cmd} failed: no input")
        print("error: no input", file=sys.stderr)
        return 1
    except (CipherError, OSError) as e:
        logger.error(f"{args.cmd} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
