import unittest

from dat_backend.aliases import SlugAliasStore
from dat_backend.alumni import AlumniDirectory
from dat_backend.cache import InMemoryKeyValueCache
from dat_backend.csv_loader import CsvLoadError
from dat_backend.forwards import SlugForwardMap

ALUMNI_CSV = (
    "Name,Slug,Show on Profile?,Previous Slugs,Old Slugs\n"
    "Jane Doe,jane-doe,YES,\"jdoe; Jane-D\",jane-doe\n"
    "Janet Doe,janet-doe,YES,jdoe,\n"
    "Hidden,hidden-one,,,\n"
)


class CountingSource:
    def __init__(self, text):
        self.text = text
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.text


class SlugAliasStoreTests(unittest.TestCase):
    def setUp(self):
        self.forward_source = CountingSource("fromSlug,toSlug\nold-jane,jd-2\njd-2,jane-doe\n")
        self.cache = InMemoryKeyValueCache()
        self.store = SlugAliasStore(
            AlumniDirectory(source=lambda: ALUMNI_CSV),
            forwards=SlugForwardMap(source=self.forward_source),
            cache=self.cache,
        )

    def test_row_aliases_and_forward_sources_are_merged(self):
        aliases = self.store.get_slug_aliases(" Jane-Doe ")
        self.assertEqual(aliases, {"jdoe", "jane-d", "old-jane", "jd-2"})

    def test_canonical_slug_is_never_its_own_alias(self):
        self.assertNotIn("jane-doe", self.store.get_slug_aliases("jane-doe"))

    def test_unknown_slug_has_no_aliases(self):
        self.assertEqual(self.store.get_slug_aliases("nobody"), set())
        self.assertEqual(self.store.get_slug_aliases(""), set())

    def test_results_are_cached_until_invalidated(self):
        self.store.get_slug_aliases("jane-doe")
        self.store.get_slug_aliases("jane-doe")
        self.assertEqual(self.forward_source.calls, 1)

        self.store.invalidate_slug_aliases_cache("jane-doe")
        self.store.get_slug_aliases("jane-doe")
        self.assertEqual(self.forward_source.calls, 2)

    def test_returned_set_is_a_copy(self):
        self.store.get_slug_aliases("jane-doe").add("mutated")
        self.assertNotIn("mutated", self.store.get_slug_aliases("jane-doe"))

    def test_first_row_claims_a_shared_alias(self):
        self.assertEqual(self.store.find_canonical_for_alias("JDOE"), "jane-doe")
        self.assertIsNone(self.store.find_canonical_for_alias("hidden-one"))

    def test_invalidate_all_empties_the_cache(self):
        self.store.get_slug_aliases("jane-doe")
        self.store.find_canonical_for_alias("jdoe")
        self.assertGreater(len(self.cache), 0)
        self.store.invalidate_slug_aliases_cache()
        self.assertEqual(len(self.cache), 0)

    def test_upstream_failure_propagates(self):
        def broken():
            raise CsvLoadError("no alumni csv")

        store = SlugAliasStore(AlumniDirectory(source=broken))
        with self.assertRaises(CsvLoadError):
            store.get_slug_aliases("jane-doe")


if __name__ == "__main__":
    unittest.main()
