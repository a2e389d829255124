import unittest

from dat_backend.forwards import (
    SlugForwardMap,
    build_forward_map,
    follow_chain,
    parse_forward_csv,
)
from dat_backend.slugs import match_alumni_path, slugify, split_aliases


class SlugHelperTests(unittest.TestCase):
    def test_slugify_folds_accents_and_ampersands(self):
        self.assertEqual(slugify("José  Núñez & Co"), "jose-nunez-and-co")

    def test_split_aliases_accepts_mixed_delimiters(self):
        self.assertEqual(split_aliases("Jane-D, JD;jane  jane-d"), ["jane-d", "jd", "jane"])

    def test_match_alumni_path(self):
        self.assertEqual(match_alumni_path("/Alumni/Old-Name/extra"), "Old-Name")
        self.assertIsNone(match_alumni_path("/api/alumni/old-name"))
        self.assertIsNone(match_alumni_path("/alumni"))


class ParseForwardCsvTests(unittest.TestCase):
    def test_named_headers_trim_and_lowercase(self):
        rules = parse_forward_csv(
            "fromSlug,toSlug,createdAt\n Old-Name ,NEW-NAME,2024-01-01T00:00:00Z\n"
        )
        self.assertEqual(len(rules), 1)
        self.assertEqual((rules[0].from_slug, rules[0].to_slug), ("old-name", "new-name"))
        self.assertIsNotNone(rules[0].created_at)

    def test_blank_and_self_rows_are_dropped(self):
        rules = parse_forward_csv("fromSlug,toSlug\na,a\n,b\nc,\nd,e\n")
        self.assertEqual([(r.from_slug, r.to_slug) for r in rules], [("d", "e")])

    def test_two_unknown_headers_read_positionally(self):
        rules = parse_forward_csv("Old Slug,New Slug\nx,y\n")
        self.assertEqual([(r.from_slug, r.to_slug) for r in rules], [("x", "y")])

    def test_unrecognized_headers_yield_nothing(self):
        self.assertEqual(parse_forward_csv("foo,bar,baz\na,b,c\n"), [])


class BuildForwardMapTests(unittest.TestCase):
    def test_latest_created_at_wins_regardless_of_order(self):
        rules = parse_forward_csv(
            "fromSlug,toSlug,createdAt\n"
            "a,b,2024-05-01T00:00:00Z\n"
            "a,c,2024-01-01T00:00:00Z\n"
        )
        self.assertEqual(build_forward_map(rules), {"a": "b"})

    def test_later_row_wins_without_timestamps(self):
        rules = parse_forward_csv("fromSlug,toSlug\na,b\na,c\n")
        self.assertEqual(build_forward_map(rules), {"a": "c"})


class FollowChainTests(unittest.TestCase):
    def test_multi_hop_chain_collapses(self):
        self.assertEqual(follow_chain({"a": "b", "b": "c"}, "a"), ["a", "b", "c"])

    def test_cycle_settles_on_smallest_member(self):
        forward = {"a": "b", "b": "a", "x": "b"}
        self.assertEqual(follow_chain(forward, "a"), ["a"])
        self.assertEqual(follow_chain(forward, "b"), ["b", "a"])
        self.assertEqual(follow_chain(forward, "x"), ["x", "b", "a"])

    def test_longer_cycle_entered_midway(self):
        forward = {"c": "d", "d": "b", "b": "c", "z": "d"}
        self.assertEqual(follow_chain(forward, "z")[-1], "b")
        self.assertEqual(follow_chain(forward, "c")[-1], "b")
        self.assertEqual(follow_chain(forward, "b"), ["b"])

    def test_hop_limit_bounds_the_walk(self):
        forward = {f"s{i}": f"s{i + 1}" for i in range(10)}
        self.assertEqual(len(follow_chain(forward, "s0", max_hops=3)), 4)


class SlugForwardMapTests(unittest.TestCase):
    def test_lookup_and_reverse_source(self):
        forwards = SlugForwardMap(
            source=lambda: "fromSlug,toSlug\nzed,target\nalpha,target\nold,new\n"
        )
        self.assertEqual(forwards.get_slug_forward(" OLD "), "new")
        self.assertIsNone(forwards.get_slug_forward("missing"))
        self.assertEqual(forwards.reverse_source("target"), "alpha")
        self.assertIsNone(forwards.reverse_source("nobody"))

    def test_missing_url_is_an_empty_map(self):
        self.assertEqual(SlugForwardMap(csv_url="").load_slug_forward_map(), {})

    def test_reloads_on_every_call(self):
        calls = []

        def source():
            calls.append(1)
            return "fromSlug,toSlug\na,b\n"

        forwards = SlugForwardMap(source=source)
        forwards.get_slug_forward("a")
        forwards.get_slug_forward("a")
        self.assertEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
