"""Unit tests for VersionCatalog and version ordering."""

import pytest

from aosgit.core.catalog import (
    CatalogEntry,
    CatalogError,
    CatalogParseError,
    VersionCatalog,
    parse_version,
    version_key,
)

URL = "https://opensource.apple.com/tarballs/{0}/{0}-{1}.tar.gz"


def entry(component: str, label: str, available: bool = True) -> CatalogEntry:
    return CatalogEntry(component, label, URL.format(component, label), available)


def ordered(labels) -> list:
    return sorted(labels, key=version_key)


class TestParseVersion:
    """Test splitting labels into runs."""

    def test_numeric_runs(self) -> None:
        assert parse_version("7195.50.1") == (
            (0, 7195), (1, "."), (0, 50), (1, "."), (0, 1),
        )

    def test_mixed_runs(self) -> None:
        assert parse_version("10.4.11.x86") == (
            (0, 10), (1, "."), (0, 4), (1, "."), (0, 11), (1, ".x"), (0, 86),
        )

    def test_arbitrary_width(self) -> None:
        big = "1" + "0" * 40
        assert parse_version(big) == ((0, 10 ** 40),)

    def test_empty_label(self) -> None:
        with pytest.raises(CatalogParseError):
            parse_version("")

    def test_label_without_digits(self) -> None:
        with pytest.raises(CatalogParseError, match="no numeric"):
            parse_version("beta")


class TestVersionKey:
    """Test the total order over labels."""

    def test_numeric_not_lexical(self) -> None:
        """Test 7195.50.1 < 7195.121.3 < 7195.141.2."""
        labels = ["7195.121.3", "7195.141.2", "7195.50.1"]
        assert ordered(labels) == ["7195.50.1", "7195.121.3", "7195.141.2"]
        # plain string sort disagrees
        assert sorted(labels) != ordered(labels)

    def test_prefix_sorts_first(self) -> None:
        assert ordered(["1.0.1", "1.0", "1"]) == ["1", "1.0", "1.0.1"]

    def test_text_suffix_after_prefix(self) -> None:
        assert ordered(["1.0b1", "1.0"]) == ["1.0", "1.0b1"]

    def test_numeric_before_text_at_same_position(self) -> None:
        assert ordered(["a1", "1a"]) == ["1a", "a1"]

    def test_ties_broken_by_label(self) -> None:
        """Test that 01 and 1 get distinct, stable positions."""
        assert version_key("01") != version_key("1")
        assert ordered(["1", "01"]) == ["01", "1"]

    def test_unparseable_after_parsed(self) -> None:
        assert ordered(["beta", "2", "alpha", "10"]) == ["2", "10", "alpha", "beta"]

    def test_large_numbers(self) -> None:
        assert ordered(["99999999999999999999", "100000000000000000000"]) == [
            "99999999999999999999",
            "100000000000000000000",
        ]


class TestVersionCatalogBuild:
    """Test building the catalog from discovery records."""

    def test_orders_versions(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([
            entry("xnu", "7195.121.3"),
            entry("xnu", "7195.141.2"),
            entry("xnu", "7195.50.1"),
        ])
        assert [v.label for v in result["xnu"]] == ["7195.50.1", "7195.121.3", "7195.141.2"]

    def test_components_sorted(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([entry("xnu", "1"), entry("dyld", "1"), entry("Libc", "1")])
        assert list(result) == ["Libc", "dyld", "xnu"]
        assert catalog.components() == ["Libc", "dyld", "xnu"]

    def test_deduplicates_keeping_first_url(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([
            CatalogEntry("xnu", "1.0", "https://first"),
            CatalogEntry("xnu", "1.0", "https://second"),
        ])
        assert len(result["xnu"]) == 1
        assert result["xnu"][0].url == "https://first"
        assert catalog.duplicates == [("xnu", "1.0")]

    def test_same_label_different_components(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([entry("a", "1.0"), entry("b", "1.0")])
        assert len(result["a"]) == 1
        assert len(result["b"]) == 1

    def test_unavailable_retained(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([
            entry("xnu", "3.0"),
            entry("xnu", "2.0", available=False),
            entry("xnu", "1.0"),
        ])
        assert [(v.label, v.available) for v in result["xnu"]] == [
            ("1.0", True),
            ("2.0", False),
            ("3.0", True),
        ]

    def test_unparseable_label_reported_not_fatal(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([entry("x", "snapshot"), entry("x", "1.2")])
        assert [v.label for v in result["x"]] == ["1.2", "snapshot"]
        assert catalog.parse_failures == [("x", "snapshot")]

    def test_three_tuple_records(self) -> None:
        catalog = VersionCatalog()
        result = catalog.build([("xnu", "1.0", "https://u")])
        assert result["xnu"][0].available is True

    def test_missing_component_fatal(self) -> None:
        with pytest.raises(CatalogError, match="no component"):
            VersionCatalog().build([CatalogEntry("", "1.0", "https://u")])

    def test_missing_url_fatal(self) -> None:
        with pytest.raises(CatalogError, match="no source URL"):
            VersionCatalog().build([CatalogEntry("xnu", "1.0", "")])

    def test_deterministic_regardless_of_input_order(self) -> None:
        records = [entry("xnu", label) for label in ["2", "10", "1.5", "1", "1b"]]
        first = VersionCatalog().build(records)
        second = VersionCatalog().build(list(reversed(records)))
        assert [v.label for v in first["xnu"]] == [v.label for v in second["xnu"]]

    def test_versions_accessor(self) -> None:
        catalog = VersionCatalog()
        catalog.build([entry("xnu", "2"), entry("xnu", "1")])
        assert [v.label for v in catalog.versions("xnu")] == ["1", "2"]
        with pytest.raises(KeyError):
            catalog.versions("missing")
