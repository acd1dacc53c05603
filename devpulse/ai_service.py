"""
AI service for DevPulse using Anthropic's Claude API.
Scores individual commits and turns team averages into insights.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from anthropic import Anthropic, APIError, AuthenticationError, RateLimitError

from devpulse.schemas import CommitDetails, CommitScore, ProjectInsights, ScoreSummary

logger = logging.getLogger(__name__)

PATCH_EXCERPT_CHARS = 1000

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

SCORER_SYSTEM_PROMPT = (
    "You are an expert code reviewer and software engineering mentor. "
    "Analyze commits objectively and provide constructive feedback. Always return valid JSON."
)

INSIGHTS_SYSTEM_PROMPT = "You are a technical lead providing actionable insights to improve team performance."


def fallback_score() -> CommitScore:
    """Default scores used whenever a commit cannot be analyzed."""
    return CommitScore(
        code_quality=50,
        impact=50,
        documentation=50,
        testing=50,
        overall=50,
        strengths=["Commit submitted"],
        improvements=["Analysis unavailable"],
        summary="Unable to analyze commit at this time.",
        error=True,
    )


def fallback_insights() -> ProjectInsights:
    return ProjectInsights(
        strengths=["Active development"],
        focus_areas=["Continue current practices"],
        recommendations=["Keep up the good work"],
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of free-form model output.

    Tries a fenced code block first, then the span from the first '{' to
    the last '}'.

    Raises:
        ValueError: If no JSON object can be parsed from text
    """
    candidates = [match.group(1) for match in _FENCED_JSON.finditer(text)]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("No JSON object found in model response")


def patch_excerpt(files: list) -> str:
    """First PATCH_EXCERPT_CHARS characters of the first changed file's patch."""
    if not files:
        return ""
    return (files[0].get("patch") or "")[:PATCH_EXCERPT_CHARS]


class AIService:
    """
    Service for LLM-backed commit scoring using Claude.

    Nothing here raises to the caller: every failure is logged and replaced
    with a fixed fallback result (flagged with error=True for commit scores).
    """

    def __init__(self, api_key: Optional[str], model: str = "claude-sonnet-4-20250514", client: Optional[Any] = None):
        """
        Initialize AI service with Anthropic API credentials.

        Args:
            api_key: Anthropic API key; without it every call falls back
            model: Claude model name
            client: Pre-built client (tests pass a stub)
        """
        if client is None and api_key:
            client = Anthropic(api_key=api_key)
        self.client = client
        self.model = model

    def _complete(self, system: str, prompt: str, temperature: float, max_tokens: int) -> str:
        """
        Send one prompt and return the text of the reply.

        Raises:
            RuntimeError: If the API key is missing or the Anthropic API call fails
        """
        if self.client is None:
            raise RuntimeError("ANTHROPIC_API_KEY is not configured.")
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[
                    {"role": "user", "content": prompt}
                ]
            )
        except AuthenticationError as exc:
            raise RuntimeError(
                "Anthropic API authentication failed. Check your ANTHROPIC_API_KEY."
            ) from exc
        except RateLimitError as exc:
            raise RuntimeError(
                "Anthropic API rate limit exceeded. Please try again in a few moments."
            ) from exc
        except APIError as exc:
            raise RuntimeError(f"Anthropic API call failed: {exc}") from exc

        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.debug("Tokens used: in=%s out=%s", usage.input_tokens, usage.output_tokens)

        return message.content[0].text

    def score_commit(self, commit: CommitDetails, project_name: str) -> CommitScore:
        """
        Score a single commit on five 0-100 axes.

        Args:
            commit: Commit metadata with per-file stats and a patch excerpt
            project_name: Name of the project the commit belongs to

        Returns:
            Validated scores, or fallback_score() if anything goes wrong
        """
        prompt = self._format_commit_prompt(commit, project_name)
        try:
            text = self._complete(SCORER_SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=1000)
            score = CommitScore.model_validate(extract_json_object(text))
        except Exception as exc:
            logger.error("AI analysis failed for commit %s: %s", commit.sha[:7], exc)
            return fallback_score()
        # Only the fallback path may report an error
        score.error = False
        return score

    def generate_project_insights(self, scores: ScoreSummary, total_commits: int) -> ProjectInsights:
        """Ask for team strengths, focus areas and recommendations from average scores."""
        prompt = f"""Based on this team's development analytics, provide insights:

Average Scores:
- Code Quality: {scores.code_quality}/100
- Impact: {scores.impact}/100
- Documentation: {scores.documentation}/100
- Testing: {scores.testing}/100
- Overall: {scores.overall}/100

Total Commits Analyzed: {total_commits}

Provide:
1. Team Strengths (2-3 points)
2. Areas to Focus On (2-3 points)
3. Actionable Recommendations (2-3 points)

Return in JSON format:
{{
  "strengths": ["High code quality", "Strong documentation"],
  "focusAreas": ["Improve test coverage", "Increase commit frequency"],
  "recommendations": ["Implement peer review process", "Create coding standards doc"]
}}"""
        try:
            text = self._complete(INSIGHTS_SYSTEM_PROMPT, prompt, temperature=0.5, max_tokens=500)
            return ProjectInsights.model_validate(extract_json_object(text))
        except Exception as exc:
            logger.error("Insights generation failed: %s", exc)
            return fallback_insights()

    def _format_commit_prompt(self, commit: CommitDetails, project_name: str) -> str:
        if commit.files:
            files_text = "\n".join(
                f"- {f.filename} (+{f.additions}, -{f.deletions})" for f in commit.files
            )
        else:
            files_text = "No files data"

        return f"""Analyze this Git commit and provide a detailed assessment:

Repository: {project_name}
Commit Author: {commit.author}
Commit Message: {commit.message}
Files Changed: {len(commit.files)}
Additions: +{commit.additions}
Deletions: -{commit.deletions}

Changed Files:
{files_text}

Commit Details:
{commit.patch or 'No patch data available'}

Please analyze this commit and provide:
1. Code Quality Score (0-100): Based on code structure, naming conventions, and best practices
2. Impact Score (0-100): Based on the significance and scope of changes
3. Documentation Score (0-100): Based on commit message quality and code comments
4. Testing Score (0-100): Based on test coverage and testing practices evident in the commit
5. Overall Score (0-100): Weighted average of all scores
6. Key Strengths: List 2-3 positive aspects
7. Areas for Improvement: List 2-3 suggestions
8. Summary: Brief 2-3 sentence assessment

Return your analysis in this exact JSON format:
{{
  "codeQuality": 85,
  "impact": 70,
  "documentation": 60,
  "testing": 75,
  "overall": 72,
  "strengths": ["Clear commit message", "Good code structure"],
  "improvements": ["Add more test coverage", "Include inline comments"],
  "summary": "Solid commit with clean code and clear intent. Would benefit from additional documentation."
}}"""
