"""Tests for diagnosis output parsing and validation."""
import json

import pytest

from medtag_service.errors import InvalidInputError, MalformedModelOutputError, UpstreamError
from medtag_service.json_utils import load_json_object, load_request_body, parse_diagnosis


def _analysis(**overrides):
    data = {
        "triageLevel": "urgent",
        "probableConditions": [{"condition": "X", "confidence": 50, "severity": "High"}],
        "immediateActions": ["Call ambulance"],
        "explanation": "Because.",
    }
    data.update(overrides)
    return json.dumps(data)


class TestParseDiagnosis:
    """Structural validation of model output."""

    def test_minimal_valid(self):
        result = parse_diagnosis(
            '{"triageLevel":"urgent","probableConditions":[],"immediateActions":[],"explanation":""}'
        )
        assert result.triage_level == "urgent"
        assert result.probable_conditions == []
        assert result.medication_recommendations is None

    def test_full_analysis(self):
        result = parse_diagnosis(_analysis(
            medicationRecommendations=[{"medication": "Aspirin", "reason": "ACS"}]
        ))
        assert result.probable_conditions[0].confidence == 50
        assert result.medication_recommendations[0].medication == "Aspirin"
        assert result.medication_recommendations[0].warning is None

    @pytest.mark.parametrize("level", ["critical", "urgent", "stable"])
    def test_all_triage_levels(self, level):
        assert parse_diagnosis(_analysis(triageLevel=level)).triage_level == level

    def test_unknown_triage_level(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(_analysis(triageLevel="unknown"))

    def test_triage_level_case_sensitive(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(_analysis(triageLevel="Urgent"))

    def test_missing_immediate_actions(self):
        data = json.loads(_analysis())
        del data["immediateActions"]
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(json.dumps(data))

    def test_missing_probable_conditions(self):
        data = json.loads(_analysis())
        del data["probableConditions"]
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(json.dumps(data))

    def test_missing_explanation_defaults_empty(self):
        data = json.loads(_analysis())
        del data["explanation"]
        assert parse_diagnosis(json.dumps(data)).explanation == ""

    @pytest.mark.parametrize("confidence", ["72", True, 150, -1])
    def test_bad_confidence(self, confidence):
        bad = _analysis(probableConditions=[{"condition": "X", "confidence": confidence}])
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(bad)

    @pytest.mark.parametrize("confidence", [0, 100, 37.5])
    def test_boundary_confidence(self, confidence):
        ok = _analysis(probableConditions=[{"condition": "X", "confidence": confidence}])
        assert parse_diagnosis(ok).probable_conditions[0].confidence == confidence

    def test_actions_must_be_strings(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(_analysis(immediateActions=[1, 2]))

    def test_not_json(self):
        with pytest.raises(MalformedModelOutputError) as exc:
            parse_diagnosis("The patient looks fine to me.")
        assert exc.value.status_code == 500
        assert exc.value.detail == "Failed to parse AI analysis"

    def test_json_array_rejected(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis("[1, 2, 3]")

    def test_truncated_json_not_repaired(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis('{"triageLevel": "urgent", "probableConditions": [')

    def test_code_fence_unwrapped(self):
        fenced = f"```json\n{_analysis(triageLevel='critical')}\n```"
        assert parse_diagnosis(fenced).triage_level == "critical"

    def test_bare_code_fence_unwrapped(self):
        fenced = f"```\n{_analysis()}\n```"
        assert parse_diagnosis(fenced).triage_level == "urgent"

    def test_uppercase_code_fence_unwrapped(self):
        fenced = f"```JSON\n{_analysis(triageLevel='stable')}\n```"
        assert parse_diagnosis(fenced).triage_level == "stable"

    def test_snake_case_keys_rejected(self):
        with pytest.raises(MalformedModelOutputError):
            parse_diagnosis(
                '{"triage_level":"urgent","probable_conditions":[],"immediate_actions":[]}'
            )

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_content(self, text):
        with pytest.raises(UpstreamError) as exc:
            parse_diagnosis(text)
        assert exc.value.detail == "Invalid AI response"
        assert not isinstance(exc.value, MalformedModelOutputError)


class TestLoadJsonObject:

    def test_object(self):
        assert load_json_object('{"a": 1}') == {"a": 1}

    def test_scalar_rejected(self):
        with pytest.raises(MalformedModelOutputError):
            load_json_object('"just a string"')


class TestLoadRequestBody:

    def test_empty_body(self):
        assert load_request_body(b"") is None

    def test_json_body(self):
        assert load_request_body(b'{"messages": []}') == {"messages": []}

    def test_invalid_json(self):
        with pytest.raises(InvalidInputError) as exc:
            load_request_body(b"{not json")
        assert exc.value.status_code == 400
        assert exc.value.detail == "Invalid JSON body"

    def test_invalid_utf8(self):
        with pytest.raises(InvalidInputError):
            load_request_body(b"\x80abc")
