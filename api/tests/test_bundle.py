"""
Bundle builder and version header tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from ehr_platform.services.fhir.bundle import (
    SearchBundleParams,
    build_pagination_links,
    location_header,
    new_history_bundle,
    new_search_bundle,
    parse_etag,
    version_headers,
)
from ehr_platform.services.fhir.versioning import VersionAction, VersionEntry


BASE = "http://localhost/fhir/Observation"


def _links(bundle_or_links):
    links = bundle_or_links if isinstance(bundle_or_links, list) else bundle_or_links.link
    return {link.relation: link.url for link in links}


class TestPagination:

    def test_middle_page(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "status=final", 10, 10, 25)))
        assert links["self"] == f"{BASE}?status=final&_count=10&_offset=10"
        assert links["next"] == f"{BASE}?status=final&_count=10&_offset=20"
        assert links["previous"] == f"{BASE}?status=final&_count=10&_offset=0"

    def test_last_page(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "", 10, 20, 25)))
        assert set(links) == {"self", "previous"}
        assert links["previous"].endswith("_offset=10")

    def test_first_page(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "", 10, 0, 25)))
        assert set(links) == {"self", "next"}
        assert links["self"] == f"{BASE}?_count=10&_offset=0"

    def test_single_page(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "", 10, 0, 5)))
        assert set(links) == {"self"}

    def test_zero_count_has_no_next(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "", 0, 0, 25)))
        assert set(links) == {"self"}
        assert links["self"] == f"{BASE}?_count=0&_offset=0"

    def test_previous_offset_clamped(self):
        links = _links(build_pagination_links(SearchBundleParams(BASE, "", 10, 5, 25)))
        assert links["previous"].endswith("_offset=0")

    def test_existing_paging_params_replaced(self):
        links = _links(build_pagination_links(
            SearchBundleParams(BASE, "?_count=10&code=http://loinc.org|718-7&_offset=10&date=ge2024", 10, 10, 30)
        ))
        assert links["next"] == f"{BASE}?code=http://loinc.org|718-7&date=ge2024&_count=10&_offset=20"


class TestSearchBundle:

    def test_shape(self):
        resources = [{"resourceType": "Observation", "id": "o1"}, {"resourceType": "Observation", "id": "o2"}]
        bundle = new_search_bundle(resources, SearchBundleParams(BASE, "", 2, 0, 2)).to_dict()

        assert bundle["resourceType"] == "Bundle"
        assert bundle["type"] == "searchset"
        assert bundle["total"] == 2
        assert "timestamp" in bundle
        assert bundle["entry"][0] == {
            "fullUrl": "Observation/o1",
            "resource": resources[0],
            "search": {"mode": "match"},
        }

    def test_empty(self):
        bundle = new_search_bundle([], SearchBundleParams(BASE, "", 20, 0, 0)).to_dict()
        assert bundle["total"] == 0
        assert bundle["entry"] == []
        assert [link["relation"] for link in bundle["link"]] == ["self"]


class TestHistoryBundle:

    def _entries(self):
        t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            VersionEntry("Patient", "p1", 1, {"id": "p1"}, VersionAction.CREATE, t0),
            VersionEntry("Patient", "p1", 2, {"id": "p1", "active": True}, VersionAction.UPDATE, t0 + timedelta(hours=1)),
            VersionEntry("Patient", "p1", 3, None, VersionAction.DELETE, t0 + timedelta(hours=2)),
        ]

    def test_methods_and_status(self):
        bundle = new_history_bundle(self._entries(), 3, "http://localhost/fhir").to_dict()
        assert bundle["type"] == "history"
        assert bundle["total"] == 3
        requests = [(e["request"]["method"], e["response"]["status"]) for e in bundle["entry"]]
        assert requests == [("DELETE", "204 No Content"), ("PUT", "200 OK"), ("POST", "201 Created")]

    def test_newest_first(self):
        entries = self._entries()
        bundle = new_history_bundle(list(reversed(entries)), 3).to_dict()
        assert [e["fullUrl"] for e in bundle["entry"]] == [
            "Patient/p1/_history/3",
            "Patient/p1/_history/2",
            "Patient/p1/_history/1",
        ]

    def test_entry_details(self):
        bundle = new_history_bundle(self._entries(), 3, "http://localhost/fhir/").to_dict()
        delete, update, create = bundle["entry"]
        assert create["fullUrl"] == "http://localhost/fhir/Patient/p1/_history/1"
        assert create["request"] == {"method": "POST", "url": "Patient"}
        assert update["request"] == {"method": "PUT", "url": "Patient/p1"}
        assert update["resource"] == {"id": "p1", "active": True}
        assert update["response"]["etag"] == 'W/"2"'
        assert "resource" not in delete


class TestVersionHeaders:

    def test_version_headers(self):
        headers = version_headers(3, datetime(2024, 3, 5, 14, 30, 0, tzinfo=timezone.utc))
        assert headers == {"ETag": 'W/"3"', "Last-Modified": "Tue, 05 Mar 2024 14:30:00 GMT"}

    def test_non_utc_converted(self):
        kst = timezone(timedelta(hours=9))
        headers = version_headers(1, datetime(2024, 3, 5, 23, 30, tzinfo=kst))
        assert headers["Last-Modified"] == "Tue, 05 Mar 2024 14:30:00 GMT"

    def test_location_header(self):
        assert location_header("http://x/fhir", "Patient", "p1", 2) == "http://x/fhir/Patient/p1/_history/2"

    @pytest.mark.parametrize("value,expected", [
        ('W/"3"', 3),
        ('"12"', 12),
        ("7", 7),
        (' W/"4" ', 4),
        ("W/\"abc\"", None),
        ("", None),
        (None, None),
    ])
    def test_parse_etag(self, value, expected):
        assert parse_etag(value) == expected
