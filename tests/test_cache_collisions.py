import unittest

from openalex_cache.cache.collisions import (
    has_collision,
    merge_collision,
    migrate_legacy_entry,
    reconstruct_possible_collisions,
    validate_file_entry,
)
from openalex_cache.cache.models import CollisionInfo, FileEntry
from openalex_cache.cache.paths import relative_cache_path

PRIMARY = "https://api.openalex.org/works?filter=publication_year:2020"
VARIANT = PRIMARY + "&api_key=ABC"
RETRIEVED = "2026-01-01T00:00:00Z"


def _entry() -> FileEntry:
    return FileEntry(
        primary_url=PRIMARY,
        equivalent_urls=[PRIMARY],
        ref="./filter__3D__publication_year__3A__2020.json",
        last_retrieved=RETRIEVED,
        content_hash="0123456789abcdef",
        url_timestamps={PRIMARY: RETRIEVED},
    )


class HasCollisionTests(unittest.TestCase):
    def test_identity_variant_collides(self) -> None:
        self.assertTrue(has_collision(_entry(), VARIANT))

    def test_known_and_unrelated_urls_do_not_collide(self) -> None:
        entry = _entry()

        self.assertFalse(has_collision(entry, PRIMARY))
        self.assertFalse(has_collision(entry, "https://api.openalex.org/works?filter=publication_year:2021"))
        self.assertFalse(has_collision(entry, "https://example.org/works?filter=publication_year:2020"))

    def test_invalid_inputs_do_not_collide(self) -> None:
        self.assertFalse(has_collision(None, VARIANT))
        self.assertFalse(has_collision(_entry(), ""))
        self.assertFalse(has_collision(_entry(), "not a url"))


class MergeCollisionTests(unittest.TestCase):
    def test_merge_appends_and_counts(self) -> None:
        entry = merge_collision(_entry(), VARIANT, now="2026-01-02T00:00:00Z")

        self.assertEqual(entry.equivalent_urls, [PRIMARY, VARIANT])
        self.assertEqual(entry.collision_info.merged_count, 1)
        self.assertEqual(entry.collision_info.first_collision, "2026-01-02T00:00:00Z")
        self.assertEqual(entry.collision_info.last_merge, "2026-01-02T00:00:00Z")
        self.assertEqual(entry.url_timestamps[VARIANT], "2026-01-02T00:00:00Z")

    def test_merge_is_idempotent(self) -> None:
        once = merge_collision(_entry(), VARIANT, now="2026-01-02T00:00:00Z")
        twice = merge_collision(merge_collision(_entry(), VARIANT, now="2026-01-02T00:00:00Z"), VARIANT, now="2026-01-03T00:00:00Z")

        self.assertEqual(once.equivalent_urls, twice.equivalent_urls)
        self.assertEqual(once.collision_info, twice.collision_info)

    def test_primary_stays_first_and_count_tracks_urls(self) -> None:
        entry = _entry()
        merge_collision(entry, VARIANT, now="2026-01-02T00:00:00Z")
        merge_collision(entry, PRIMARY + "&mailto=me@example.org", now="2026-01-03T00:00:00Z")

        self.assertEqual(entry.equivalent_urls[0], entry.primary_url)
        self.assertEqual(entry.collision_info.merged_count, len(entry.equivalent_urls) - 1)
        self.assertEqual(entry.collision_info.first_collision, "2026-01-02T00:00:00Z")
        self.assertEqual(entry.collision_info.last_merge, "2026-01-03T00:00:00Z")
        self.assertTrue(validate_file_entry(entry))


class ReconstructPossibleCollisionsTests(unittest.TestCase):
    def test_query_file_variants(self) -> None:
        urls = reconstruct_possible_collisions("filter__3D__year__3A__2020.json", "works")

        self.assertEqual(
            urls,
            [
                "https://api.openalex.org/works?filter=year:2020",
                "https://api.openalex.org/works?filter=year:2020&api_key=dummy",
                "https://api.openalex.org/works?filter=year:2020&mailto=test@example.com",
            ],
        )
        self.assertEqual(len({relative_cache_path(url) for url in urls}), 1)

    def test_empty_filename_gives_bare_collection_variants(self) -> None:
        self.assertEqual(
            reconstruct_possible_collisions("", "authors"),
            [
                "https://api.openalex.org/authors",
                "https://api.openalex.org/authors?api_key=dummy",
                "https://api.openalex.org/authors?mailto=test@example.com",
            ],
        )

    def test_opaque_filename_gives_nothing(self) -> None:
        self.assertEqual(reconstruct_possible_collisions("_hash_abcdef.json", "works"), [])


class ValidateFileEntryTests(unittest.TestCase):
    def test_fresh_entry_is_valid(self) -> None:
        self.assertTrue(validate_file_entry(_entry()))

    def test_rejects_broken_entries(self) -> None:
        reordered = merge_collision(_entry(), VARIANT, now=RETRIEVED)
        reordered.equivalent_urls.reverse()

        duplicated = _entry()
        duplicated.equivalent_urls.append(PRIMARY)
        duplicated.collision_info = CollisionInfo(merged_count=1, first_collision=RETRIEVED, last_merge=RETRIEVED)

        foreign = merge_collision(_entry(), "https://api.openalex.org/works?filter=publication_year:1999", now=RETRIEVED)

        miscounted = merge_collision(_entry(), VARIANT, now=RETRIEVED)
        miscounted.collision_info.merged_count = 3

        untimed = merge_collision(_entry(), VARIANT, now=RETRIEVED)
        del untimed.url_timestamps[VARIANT]

        empty = _entry()
        empty.equivalent_urls = []

        for name, entry in [
            ("reordered", reordered),
            ("duplicated", duplicated),
            ("foreign", foreign),
            ("miscounted", miscounted),
            ("untimed", untimed),
            ("empty", empty),
        ]:
            with self.subTest(name=name):
                self.assertFalse(validate_file_entry(entry))


class MigrateLegacyEntryTests(unittest.TestCase):
    def test_single_url_entry_is_migrated(self) -> None:
        migrated = migrate_legacy_entry(
            {
                "url": "https://api.openalex.org/authors/A1",
                "$ref": "./A1.json",
                "lastRetrieved": RETRIEVED,
                "contentHash": "abc",
            }
        )

        self.assertEqual(migrated["primaryUrl"], "https://api.openalex.org/authors/A1")
        self.assertEqual(migrated["equivalentUrls"], ["https://api.openalex.org/authors/A1"])
        self.assertEqual(migrated["urlTimestamps"], {"https://api.openalex.org/authors/A1": RETRIEVED})
        self.assertNotIn("url", migrated)

    def test_current_entries_pass_through(self) -> None:
        payload = {"primaryUrl": PRIMARY, "equivalentUrls": [PRIMARY]}

        self.assertIs(migrate_legacy_entry(payload), payload)


if __name__ == "__main__":
    unittest.main()
