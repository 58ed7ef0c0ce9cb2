import unittest

from openalex_cache.cache.urls import ParseError, absolute_url, canonical_url, normalize_url, urls_equivalent


class NormalizeUrlTests(unittest.TestCase):
    def test_sorts_parameters_and_strips_identity_parameters(self) -> None:
        url = (
            "https://api.openalex.org/works?sort=cited_by_count:desc&mailto=me@example.org"
            "&filter=publication_year:2020&api_key=ABC"
        )

        self.assertEqual(normalize_url(url), "/works?filter=publication_year:2020&sort=cited_by_count:desc")

    def test_repeated_keys_are_ordered_by_value(self) -> None:
        self.assertEqual(
            normalize_url("https://api.openalex.org/works?select=title&select=id"),
            "/works?select=id&select=title",
        )

    def test_percent_encoding_variants_normalize_identically(self) -> None:
        encoded = normalize_url("https://api.openalex.org/works?filter=publication_year%3A2020")
        literal = normalize_url("https://api.openalex.org/works?filter=publication_year:2020")

        self.assertEqual(encoded, literal)

    def test_spaces_render_as_plus_and_plus_is_escaped(self) -> None:
        self.assertEqual(
            normalize_url("https://api.openalex.org/works?search=artificial%20intelligence"),
            "/works?search=artificial+intelligence",
        )
        self.assertEqual(
            normalize_url("https://api.openalex.org/works?search=c%2B%2B"),
            "/works?search=c%2B%2B",
        )

    def test_identity_only_query_collapses_to_bare_path(self) -> None:
        self.assertEqual(normalize_url("https://api.openalex.org/works?api_key=x&mailto=y@z.org"), "/works")

    def test_relative_paths_resolve_against_base(self) -> None:
        self.assertEqual(normalize_url("/authors/A1?select=id"), "/authors/A1?select=id")

    def test_is_deterministic(self) -> None:
        url = "https://api.openalex.org/works?per_page=50&filter=type:article,is_oa:true&page=2"

        self.assertEqual(normalize_url(url), normalize_url(url))

    def test_malformed_urls_raise_parse_error(self) -> None:
        for url in ["", "   ", "not a url", "ftp://api.openalex.org/works", "https:///works", "http://[::1/works"]:
            with self.subTest(url=url):
                with self.assertRaises(ParseError):
                    normalize_url(url)


class CanonicalUrlTests(unittest.TestCase):
    def test_canonical_url_is_absolute_https(self) -> None:
        self.assertEqual(
            canonical_url("http://API.openalex.org/works/?b=2&a=1"),
            "https://api.openalex.org/works?a=1&b=2",
        )

    def test_absolute_url_keeps_the_query_as_sent(self) -> None:
        self.assertEqual(
            absolute_url("/works?sort=x&api_key=ABC", base_url="http://localhost:8080/"),
            "http://localhost:8080/works?sort=x&api_key=ABC",
        )
        self.assertEqual(absolute_url("https://api.openalex.org/works/W1"), "https://api.openalex.org/works/W1")

    def test_identity_variants_are_equivalent(self) -> None:
        base = "https://api.openalex.org/works?filter=publication_year:2020"

        self.assertTrue(urls_equivalent(base, base + "&api_key=ABC"))
        self.assertFalse(urls_equivalent(base, "https://example.org/works?filter=publication_year:2020"))
        self.assertFalse(urls_equivalent(base, "not a url"))


if __name__ == "__main__":
    unittest.main()
