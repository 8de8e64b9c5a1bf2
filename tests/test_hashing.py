"""Tests for content fingerprints and id generation."""

from __future__ import annotations

import unittest

from bookmark_sync.core.hashing import ID_ALPHABET, content_hash, generate_id, hash_string


class TestHashString(unittest.TestCase):
    def test_empty_string_is_seed(self):
        assert hash_string("") == format(5381, "x")

    def test_single_character(self):
        # (5381 * 33) ^ ord("a")
        assert hash_string("a") == format((5381 * 33) ^ 97, "x")

    def test_stays_within_32_bits(self):
        value = int(hash_string("x" * 10_000), 16)
        assert 0 <= value <= 0xFFFFFFFF

    def test_deterministic(self):
        assert hash_string("hello world") == hash_string("hello world")


class TestContentHash(unittest.TestCase):
    def test_insensitive_to_tracking_params_and_title_padding(self):
        assert content_hash("https://x.com/a", "A") == content_hash(
            "https://x.com/a?utm_source=feed", "  A  "
        )

    def test_changes_with_title(self):
        assert content_hash("https://x.com/a", "A") != content_hash("https://x.com/a", "B")

    def test_changes_with_url(self):
        assert content_hash("https://x.com/a", "A") != content_hash("https://x.com/b", "A")

    def test_none_title_equals_empty_title(self):
        assert content_hash("https://x.com/a", None) == content_hash("https://x.com/a", "")


class TestGenerateId(unittest.TestCase):
    def test_default_length_and_alphabet(self):
        value = generate_id()
        assert len(value) == 21
        assert set(value) <= set(ID_ALPHABET)

    def test_ids_are_unique(self):
        assert len({generate_id() for _ in range(500)}) == 500


if __name__ == "__main__":
    unittest.main()
