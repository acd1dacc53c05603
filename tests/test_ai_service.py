import json

import pytest

from devpulse.ai_service import AIService, extract_json_object, fallback_score, patch_excerpt
from devpulse.schemas import CommitDetails, FileChange, ScoreSummary
from tests.conftest import SCORE_JSON, stub_ai_service

COMMIT = CommitDetails(
    sha="abc1234def5678",
    message="Add login flow",
    author="Alice",
    additions=12,
    deletions=3,
    files=[FileChange(filename="auth.py", additions=12, deletions=3)],
    patch="+def login(): ...",
)


class TestExtractJsonObject:
    def test_plain_json(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        text = 'Here is my review:\n```json\n{"a": 1}\n```\nHope that helps.'
        assert extract_json_object(text) == {"a": 1}

    def test_fence_without_language(self):
        assert extract_json_object('```\n{"a": 2}\n```') == {"a": 2}

    def test_object_wrapped_in_prose(self):
        text = 'Sure! {"a": {"b": [1, 2]}} Let me know if you need more.'
        assert extract_json_object(text) == {"a": {"b": [1, 2]}}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{not: valid}"])
    def test_rejects_non_objects(self, text):
        with pytest.raises(ValueError):
            extract_json_object(text)


class TestScoreCommit:
    def test_valid_reply(self):
        service = stub_ai_service(json.dumps(SCORE_JSON))
        score = service.score_commit(COMMIT, "DevPulse")

        assert score.error is False
        assert (score.code_quality, score.impact, score.documentation, score.testing, score.overall) == (80, 70, 60, 90, 75)
        assert score.strengths == ["Clear commit message"]
        assert score.summary == "Solid change."

    def test_prompt_contains_commit_context(self):
        service = stub_ai_service(json.dumps(SCORE_JSON))
        service.score_commit(COMMIT, "DevPulse")

        call = service.client.messages.calls[0]
        prompt = call["messages"][0]["content"]
        assert "Repository: DevPulse" in prompt
        assert "- auth.py (+12, -3)" in prompt
        assert "+def login(): ..." in prompt
        assert call["temperature"] == 0.3
        assert call["max_tokens"] == 1000

    def test_reply_in_code_fence(self):
        service = stub_ai_service("Analysis:\n```json\n" + json.dumps(SCORE_JSON) + "\n```")
        assert service.score_commit(COMMIT, "DevPulse").overall == 75

    def test_model_cannot_claim_error(self):
        service = stub_ai_service(json.dumps({**SCORE_JSON, "error": True}))
        assert service.score_commit(COMMIT, "DevPulse").error is False

    @pytest.mark.parametrize("reply", [
        RuntimeError("connection reset"),
        "I cannot review this commit.",
        json.dumps({**SCORE_JSON, "overall": 140}),
        json.dumps({"codeQuality": 80}),
    ])
    def test_failures_fall_back(self, reply):
        score = stub_ai_service(reply).score_commit(COMMIT, "DevPulse")

        assert score == fallback_score()
        assert score.error is True
        assert {score.code_quality, score.impact, score.documentation, score.testing, score.overall} == {50}

    def test_missing_api_key_falls_back(self):
        score = AIService(api_key=None).score_commit(COMMIT, "DevPulse")
        assert score.error is True
        assert score.summary == "Unable to analyze commit at this time."


class TestProjectInsights:
    def test_parses_reply(self):
        reply = json.dumps({
            "strengths": ["High code quality"],
            "focusAreas": ["Testing"],
            "recommendations": ["Pair on tests"],
        })
        insights = stub_ai_service(reply).generate_project_insights(ScoreSummary(overall=70), 4)
        assert insights.focus_areas == ["Testing"]
        assert insights.recommendations == ["Pair on tests"]

    def test_falls_back(self):
        insights = stub_ai_service("nope").generate_project_insights(ScoreSummary(), 1)
        assert insights.strengths == ["Active development"]


def test_patch_excerpt_truncates_first_file():
    files = [{"filename": "a.py", "patch": "x" * 2500}, {"filename": "b.py", "patch": "y"}]
    assert patch_excerpt(files) == "x" * 1000
    assert patch_excerpt([{"filename": "bin.png"}]) == ""
    assert patch_excerpt([]) == ""
