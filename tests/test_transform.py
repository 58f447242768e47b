#!/usr/bin/env python3
"""
Tests for the CRLF rewriting rules in crlfify.py.
"""

import random
import sys
import unittest
from pathlib import Path

# Add parent directory to path to import crlfify module
sys.path.insert(0, str(Path(__file__).parent.parent))
import crlfify  # pylint: disable=wrong-import-position


class TestCrlfTransformer(unittest.TestCase):
    def test_lf_becomes_crlf(self) -> None:
        """Test that a bare LF gets a CR inserted before it."""
        self.assertEqual(crlfify.crlfify(b"Line 1\nLine 2\n"), b"Line 1\r\nLine 2\r\n")

    def test_existing_crlf_untouched(self) -> None:
        """Test that CRLF pairs pass through unchanged."""
        self.assertEqual(crlfify.crlfify(b"Line 1\r\nLine 2\r\n"), b"Line 1\r\nLine 2\r\n")

    def test_lone_cr_untouched(self) -> None:
        """Test that a CR not followed by LF is passed through."""
        self.assertEqual(crlfify.crlfify(b"progress 10%\rprogress 20%\r"), b"progress 10%\rprogress 20%\r")

    def test_mixed_endings(self) -> None:
        """Test the documented a/b/c scenario."""
        self.assertEqual(crlfify.crlfify(b"a\nb\r\nc"), b"a\r\nb\r\nc")

    def test_consecutive_lfs(self) -> None:
        """Test that each LF in a run gets its own CR."""
        self.assertEqual(crlfify.crlfify(b"\n\n\n"), b"\r\n\r\n\r\n")
        self.assertEqual(crlfify.crlfify(b"\r\n\n"), b"\r\n\r\n")

    def test_cr_cr_lf(self) -> None:
        """Test that only the byte directly before the LF matters."""
        self.assertEqual(crlfify.crlfify(b"\r\r\n"), b"\r\r\n")
        self.assertEqual(crlfify.crlfify(b"\rx\n"), b"\rx\r\n")

    def test_empty_input(self) -> None:
        """Test that empty input yields empty output."""
        self.assertEqual(crlfify.crlfify(b""), b"")

    def test_idempotent(self) -> None:
        """Test that normalizing twice is the same as once."""
        samples = [b"a\nb\r\nc", b"\n\r\r\n\n", b"no newline", b"\r", b"x\n\ry\n"]
        for sample in samples:
            once = crlfify.crlfify(sample)
            self.assertEqual(crlfify.crlfify(once), once, f"Not idempotent for {sample!r}")

    def test_only_cr_added(self) -> None:
        """Test that removing inserted CRs restores the input exactly."""
        rng = random.Random(1234)
        for _ in range(200):
            data = bytes(rng.choice(b"ab\r\n") for _ in range(rng.randint(0, 40)))
            out = crlfify.crlfify(data)
            # Every LF in the output is preceded by CR
            for i, byte in enumerate(out):
                if byte == crlfify.LF:
                    self.assertGreater(i, 0)
                    self.assertEqual(out[i - 1], crlfify.CR)
            # Extra bytes are exactly the bare LFs of the input
            bare = sum(
                1
                for i, byte in enumerate(data)
                if byte == crlfify.LF and (i == 0 or data[i - 1] != crlfify.CR)
            )
            self.assertEqual(len(out), len(data) + bare)
            self.assertEqual(out.replace(b"\r", b""), data.replace(b"\r", b""))

    def test_chunk_boundaries_do_not_matter(self) -> None:
        """Test that splitting input across chunks never changes the output."""
        data = b"one\r\ntwo\nthree\r\r\nfour\n\r\n\n"
        expected = crlfify.crlfify(data)
        for split in range(len(data) + 1):
            transformer = crlfify.CrlfTransformer()
            out = transformer.transform(data[:split]) + transformer.transform(data[split:])
            self.assertEqual(out, expected, f"Mismatch when split at {split}")

    def test_cr_at_end_of_chunk(self) -> None:
        """Test that a CR ending one chunk pairs with an LF starting the next."""
        transformer = crlfify.CrlfTransformer()
        self.assertEqual(transformer.transform(b"abc\r"), b"abc\r")
        self.assertEqual(transformer.transform(b"\ndef"), b"\ndef")

    def test_feed_tracks_previous_byte(self) -> None:
        """Test that feed records every byte it sees."""
        transformer = crlfify.CrlfTransformer()
        self.assertIsNone(transformer.prev)
        self.assertEqual(transformer.feed(crlfify.LF), b"\r\n")
        self.assertEqual(transformer.prev, crlfify.LF)
        self.assertEqual(transformer.feed(crlfify.CR), b"\r")
        self.assertEqual(transformer.feed(crlfify.LF), b"\n")


if __name__ == "__main__":
    unittest.main()
