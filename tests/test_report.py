"""
Tests for report.py and schema.py - duplicate report loading and validation.
"""

import pytest
import requests
from unittest.mock import patch, Mock

from lessondedupe.errors import UpstreamUnavailable
from lessondedupe.models import GroupType
from lessondedupe.report import fetch_report_document, load_report, parse_report
from lessondedupe.schema import (
    lesson_from_dict,
    normalize_lesson_keys,
    validate_lesson,
    validate_report_group,
)


class TestValidateReportGroup:
    """Test per-group validation."""

    def test_valid_group(self, report_group):
        assert validate_report_group(report_group("g1", ["A", "B"])) == []

    def test_unknown_type(self, report_group):
        errors = validate_report_group(report_group("g1", ["A", "B"], group_type="fuzzy"))
        assert any("type" in e for e in errors)

    def test_similarity_out_of_range(self, report_group):
        errors = validate_report_group(report_group("g1", ["A", "B"], similarity=1.5))
        assert any("similarityScore" in e for e in errors)

    def test_average_similarity_accepted(self, report_group):
        group = report_group("g1", ["A", "B"])
        group["averageSimilarity"] = group.pop("similarityScore")
        assert validate_report_group(group) == []

    def test_lesson_without_id(self, report_group):
        group = report_group("g1", ["A", "B"])
        group["lessons"].append({"title": "no id"})
        assert validate_report_group(group)

    def test_non_object_group(self):
        assert validate_report_group(["A", "B"]) == ["Group must be an object"]


class TestParseReport:
    """Test report parsing."""

    def test_preserves_report_order(self, report_group):
        document = {"groups": [report_group("g2", ["C", "D"]), report_group("g1", ["A", "B"])]}
        groups = parse_report(document)

        assert [g.source_group_id for g in groups] == ["g2", "g1"]
        assert groups[0].type == GroupType.NEAR

    def test_skips_malformed_groups(self, report_group):
        document = {"groups": [report_group("bad", ["A"], group_type="fuzzy"), report_group("ok", ["A", "B"])]}
        groups = parse_report(document)

        assert [g.source_group_id for g in groups] == ["ok"]

    def test_repeated_lesson_ids_collapsed(self, report_group):
        groups = parse_report({"groups": [report_group("g1", ["A", "B", "A"])]})
        assert groups[0].lesson_ids == ("A", "B")

    def test_reported_scores_kept(self, report_group):
        group = report_group("g1", ["A", "B"], recommended="B")
        group["lessons"][1]["canonicalScore"] = 0.8
        parsed = parse_report({"groups": [group]})[0]

        assert parsed.recommended_canonical == "B"
        assert parsed.reported_scores == {"B": 0.8}


class TestFetchReport:
    """Test report sources."""

    def test_load_from_file(self, write_report, report_group):
        path = write_report([report_group("g1", ["A", "B"])])
        groups = load_report(str(path))

        assert len(groups) == 1
        assert groups[0].lesson_ids == ("A", "B")

    def test_missing_file(self, tmp_path):
        with pytest.raises(UpstreamUnavailable):
            fetch_report_document(str(tmp_path / "missing.json"))

    def test_invalid_json_file(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text("{not json")
        with pytest.raises(UpstreamUnavailable):
            fetch_report_document(str(path))

    def test_document_without_groups(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text('{"summary": {}}')
        with pytest.raises(UpstreamUnavailable):
            fetch_report_document(str(path))

    @patch("lessondedupe.report.requests.get")
    def test_load_from_url(self, mock_get, report_group):
        response = Mock(status_code=200)
        response.json.return_value = {"groups": [report_group("g1", ["A", "B"])]}
        mock_get.return_value = response

        groups = load_report("https://example.com/report.json", timeout=5)

        assert len(groups) == 1
        mock_get.assert_called_once_with("https://example.com/report.json", timeout=5)

    @patch("lessondedupe.retry.time.sleep")
    @patch("lessondedupe.report.requests.get")
    def test_url_unreachable_after_retries(self, mock_get, mock_sleep):
        mock_get.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(UpstreamUnavailable):
            fetch_report_document("https://example.com/report.json")

        assert mock_get.call_count == 4  # initial + 3 retries

    @patch("lessondedupe.retry.time.sleep")
    @patch("lessondedupe.report.requests.get")
    def test_server_error_is_retried(self, mock_get, mock_sleep, report_group):
        failing = Mock(status_code=503)
        ok = Mock(status_code=200)
        ok.json.return_value = {"groups": [report_group("g1", ["A", "B"])]}
        mock_get.side_effect = [failing, ok]

        document = fetch_report_document("https://example.com/report.json")

        assert len(document["groups"]) == 1
        assert mock_get.call_count == 2

    @patch("lessondedupe.report.requests.get")
    def test_client_error_not_retried(self, mock_get):
        response = Mock(status_code=404)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("404")
        mock_get.return_value = response

        with pytest.raises(UpstreamUnavailable):
            fetch_report_document("https://example.com/report.json")

        assert mock_get.call_count == 1


class TestLessonImport:
    """Test lesson import validation."""

    def test_camel_case_keys_normalized(self):
        data = normalize_lesson_keys({
            "lessonId": "A",
            "title": "Salad",
            "gradeLevels": ["3"],
            "confidence": {"overall": 0.7, "lesson_plan_confidence": 85},
        })

        assert data["lesson_id"] == "A"
        assert data["grade_levels"] == ["3"]
        assert data["confidence_overall"] == 0.7
        assert data["lesson_plan_confidence"] == 85

    def test_missing_title_invalid(self):
        errors = validate_lesson({"lesson_id": "A"})
        assert "Missing required field: title" in errors

    def test_list_field_must_hold_strings(self):
        errors = validate_lesson({"lesson_id": "A", "title": "Salad", "skills": ["ok", 3]})
        assert any("skills" in e for e in errors)

    def test_lesson_from_dict(self):
        record = lesson_from_dict({
            "lessonId": "A",
            "title": "Salad",
            "skills": ["washing"],
            "lastModified": "2024-06-01T00:00:00Z",
        })

        assert record.lesson_id == "A"
        assert record.skills == ("washing",)
        assert record.last_modified.year == 2024
        assert record.tags == ()

    def test_non_finite_confidence_treated_as_missing(self):
        record = lesson_from_dict({
            "lessonId": "A",
            "title": "Salad",
            "confidence": {"overall": float("inf"), "lesson_plan_confidence": float("nan")},
        })

        assert record.lesson_plan_confidence is None
        assert record.confidence_overall is None
