import unittest

from s3_vfs.paths import (
    as_prefix,
    has_trailing_separator,
    is_root,
    join_key,
    normalize_path,
    split_authority,
    split_segments,
)


class NormalizePathTests(unittest.TestCase):
    def test_degenerate_input_becomes_root(self):
        self.assertEqual("/", normalize_path(""))
        self.assertEqual("/", normalize_path(None))
        self.assertEqual("/", normalize_path("/"))
        self.assertEqual("/", normalize_path("\\"))

    def test_backslashes_and_runs_collapse(self):
        self.assertEqual("/bucket/a/b", normalize_path("bucket\\a\\\\b"))
        self.assertEqual("/bucket/a/", normalize_path("/bucket///a//"))

    def test_authority_marker_is_kept(self):
        self.assertEqual("//bucket/key", normalize_path("//bucket//key"))
        self.assertEqual("//bucket/key", normalize_path("////bucket/key"))
        self.assertEqual("//bucket/key", normalize_path("\\\\bucket\\key"))

    def test_normalization_is_idempotent(self):
        samples = ["", "a", "/a//b/", "\\\\x\\y", "//@conn/prod//b", "@conn:prod/b/k", "///"]
        for sample in samples:
            once = normalize_path(sample)
            self.assertEqual(once, normalize_path(once), sample)
            self.assertEqual(once, normalize_path(sample.replace("\\", "/")), sample)


class SegmentHelperTests(unittest.TestCase):
    def test_split_authority(self):
        self.assertEqual(("bucket", "/key/x"), split_authority("//bucket/key/x"))
        self.assertEqual(("bucket", "/"), split_authority("//bucket"))
        self.assertEqual(("", "/bucket"), split_authority("/bucket"))

    def test_segments_and_keys(self):
        segments = split_segments("/bucket/a/b.txt")

        self.assertEqual(["bucket", "a", "b.txt"], segments)
        self.assertEqual("a/b.txt", join_key(segments))
        self.assertEqual("", join_key(["bucket"]))

    def test_prefix_and_predicates(self):
        self.assertEqual("a/", as_prefix("a"))
        self.assertEqual("a/", as_prefix("a/"))
        self.assertEqual("", as_prefix(""))
        self.assertTrue(is_root("/"))
        self.assertFalse(is_root("/b"))
        self.assertTrue(has_trailing_separator("/b/a/"))


if __name__ == "__main__":
    unittest.main()
