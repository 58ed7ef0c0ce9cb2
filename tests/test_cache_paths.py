import unittest
from pathlib import Path

from openalex_cache.cache.models import OpaqueHashKey, QueryKey, SingleEntityKey
from openalex_cache.cache.paths import (
    OPAQUE_PREFIX,
    classify_cache_file,
    decode_filename,
    encode_filename,
    filename_stem,
    map_to_cache_path,
    reconstruct_url,
    relative_cache_path,
)
from openalex_cache.cache.urls import canonical_url

ROOT = Path("/cache")


class MapToCachePathTests(unittest.TestCase):
    def test_single_entity(self) -> None:
        self.assertEqual(
            map_to_cache_path("https://api.openalex.org/works/W123", ROOT),
            ROOT / "works" / "W123.json",
        )

    def test_collection_query(self) -> None:
        self.assertEqual(
            map_to_cache_path("https://api.openalex.org/works?filter=year:2020", ROOT),
            ROOT / "works" / "queries" / "filter__3D__year__3A__2020.json",
        )

    def test_entity_query(self) -> None:
        self.assertEqual(
            map_to_cache_path("https://api.openalex.org/works/W123?select=id", ROOT),
            ROOT / "works" / "W123" / "queries" / "select__3D__id.json",
        )

    def test_bare_collection_and_identity_only_query(self) -> None:
        expected = ROOT / "works.json"

        self.assertEqual(map_to_cache_path("https://api.openalex.org/works", ROOT), expected)
        self.assertEqual(map_to_cache_path("https://api.openalex.org/works?api_key=x&mailto=a@b.org", ROOT), expected)

    def test_nested_path(self) -> None:
        self.assertEqual(
            map_to_cache_path("https://api.openalex.org/works/W123/authors", ROOT),
            ROOT / "works" / "W123" / "authors.json",
        )

    def test_identity_variants_share_a_path(self) -> None:
        base = "https://api.openalex.org/works?filter=publication_year:2020"

        self.assertEqual(
            map_to_cache_path(base, ROOT),
            map_to_cache_path(base + "&api_key=ABC&mailto=me@example.org", ROOT),
        )

    def test_unclassifiable_urls_give_none(self) -> None:
        for url in [
            "https://api.openalex.org/",
            "https://api.openalex.org/unknown/X1",
            "https://example.org/works/W1",
            "https://api.openalex.org/works/index",
            "https://api.openalex.org/works/queries",
            "not a url",
        ]:
            with self.subTest(url=url):
                self.assertIsNone(map_to_cache_path(url, ROOT))

    def test_long_queries_use_opaque_names(self) -> None:
        url = "https://api.openalex.org/works?filter=" + "|".join(f"W{i}" for i in range(200))

        path = map_to_cache_path(url, ROOT)

        self.assertIsNotNone(path)
        self.assertTrue(path.name.startswith(OPAQUE_PREFIX))
        self.assertEqual(path.parent, ROOT / "works" / "queries")
        self.assertEqual(path, map_to_cache_path(url + "&api_key=x", ROOT))


class FilenameCodecTests(unittest.TestCase):
    def test_encodes_unsafe_ascii_as_hex(self) -> None:
        self.assertEqual(encode_filename("filter=year:2020"), "filter__3D__year__3A__2020")
        self.assertEqual(encode_filename("search=artificial+intelligence"), "search__3D__artificial__2B__intelligence")
        self.assertEqual(encode_filename("cursor=*&filter=x"), "cursor__3D____2A____26__filter__3D__x")

    def test_keeps_safe_and_non_ascii_characters(self) -> None:
        self.assertEqual(encode_filename("W1_a-b.c(d)[e]"), "W1_a-b.c(d)[e]")
        self.assertEqual(encode_filename("café"), "café")

    def test_decode_reverses_encode(self) -> None:
        for text in ["filter=publication_year:2020,type:article", "cursor=*", "a_:b", "x__=y", "search=a+b"]:
            with self.subTest(text=text):
                self.assertEqual(decode_filename(encode_filename(text)), text)

    def test_filename_stem_hashes_long_names(self) -> None:
        stem = filename_stem("x" * 300)

        self.assertTrue(stem.startswith(OPAQUE_PREFIX))
        self.assertEqual(len(stem), len(OPAQUE_PREFIX) + 32)
        self.assertEqual(stem, filename_stem("x" * 300))


class ClassifyAndReconstructTests(unittest.TestCase):
    def test_query_file(self) -> None:
        key = classify_cache_file(["works", "queries"], "filter__3D__year__3A__2020.json")

        self.assertEqual(key, QueryKey(resource_path="works", query="filter=year:2020"))
        self.assertEqual(reconstruct_url(key), "https://api.openalex.org/works?filter=year:2020")

    def test_entity_and_root_collection_files(self) -> None:
        self.assertEqual(classify_cache_file(["authors"], "A1.json"), SingleEntityKey(resource_path="authors", entity_id="A1"))
        self.assertEqual(classify_cache_file([], "works.json"), SingleEntityKey(resource_path="", entity_id="works"))
        self.assertEqual(reconstruct_url(SingleEntityKey(resource_path="", entity_id="works")), "https://api.openalex.org/works")

    def test_unknown_files_are_not_classified(self) -> None:
        self.assertIsNone(classify_cache_file([], "notes.json"))
        self.assertIsNone(classify_cache_file(["misc"], "A1.json"))
        self.assertIsNone(classify_cache_file(["queries"], "a__3D__b.json"))

    def test_opaque_names_cannot_be_reconstructed(self) -> None:
        key = classify_cache_file(["works", "queries"], "_hash_abc123.json")

        self.assertEqual(key, OpaqueHashKey(digest="abc123"))
        self.assertIsNone(reconstruct_url(key))

    def test_mapped_paths_reconstruct_to_the_canonical_url(self) -> None:
        for url in [
            "https://api.openalex.org/works/W123",
            "https://api.openalex.org/works",
            "https://api.openalex.org/works?search=machine learning&filter=publication_year:2020",
            "https://api.openalex.org/works/W123?select=id,title",
            "https://api.openalex.org/works/W123/authors",
            "https://api.openalex.org/authors?cursor=*&per_page=200&api_key=k",
        ]:
            with self.subTest(url=url):
                relative = relative_cache_path(url)
                key = classify_cache_file(relative.parts[:-1], relative.name)
                self.assertEqual(reconstruct_url(key), canonical_url(url))


if __name__ == "__main__":
    unittest.main()
