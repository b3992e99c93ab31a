"""
Tests for the pre-publish quality gate.
"""

from nexusai.quality import QualityContext, QualityDecision, blocking_issues, decide
from nexusai.queues.review import ReviewItem, ReviewType


def ctx(degraded=(), fallbacks=(), flags=()):
    return QualityContext(list(degraded), list(fallbacks), list(flags))


def review(item_id, review_type=ReviewType.PRONUNCIATION, stage="pronunciation"):
    return ReviewItem(
        id=item_id,
        type=review_type,
        pipeline_id="2026-01-20",
        stage=stage,
        item={"term": "Nvidia"},
    )


class TestDecisions:
    """Decision per quality context."""

    def test_clean_context_auto_publishes(self):
        result = decide(ctx())
        assert result.decision is QualityDecision.AUTO_PUBLISH
        assert result.reason == "No quality issues detected"
        assert result.issues == []
        assert result.publishable

    def test_tts_fallback_requires_review(self):
        result = decide(ctx(fallbacks=["tts:chirp3-hd"]))
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.reason == "Major quality issues detected"
        assert "TTS fallback used" in result.issues
        assert not result.publishable

    def test_word_count_flag_requires_review(self):
        result = decide(ctx(flags=["word-count-low"]))
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.issues == ["Word count outside acceptable range"]

    def test_pronunciation_unknowns_require_review(self):
        result = decide(ctx(flags=["pronunciation:>3-unknowns"]))
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.issues == [">3 pronunciation unknowns unresolved"]

    def test_thumbnail_and_visual_fallbacks_require_review(self):
        result = decide(ctx(fallbacks=["thumbnail:template", "visual-gen:stock"]))
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert "Both thumbnail and visual fallbacks used" in result.issues

    def test_many_visual_fallbacks_require_review(self):
        result = decide(ctx(fallbacks=["visual-gen:stock"] * 4))
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.issues == [">30% visual fallbacks used"]

    def test_three_visual_fallbacks_only_warn(self):
        result = decide(ctx(fallbacks=["visual-gen:stock"] * 3))
        assert result.decision is QualityDecision.AUTO_PUBLISH_WITH_WARNING

    def test_single_degraded_stage_warns(self):
        result = decide(ctx(degraded=["visual-gen"]))
        assert result.decision is QualityDecision.AUTO_PUBLISH_WITH_WARNING
        assert result.reason == "Minor quality issues detected"
        assert result.issues == ["Degraded stage: visual-gen"]

    def test_single_non_critical_fallback_warns(self):
        result = decide(ctx(fallbacks=["script-gen:gemini-flash"]))
        assert result.decision is QualityDecision.AUTO_PUBLISH_WITH_WARNING
        assert result.issues == ["Fallback used: script-gen:gemini-flash"]

    def test_generic_flag_warns(self):
        result = decide(ctx(flags=["twitter:failed"]))
        assert result.decision is QualityDecision.AUTO_PUBLISH_WITH_WARNING

    def test_multiple_concerns_require_review(self):
        result = decide(
            ctx(
                degraded=["pronunciation", "visual-gen", "thumbnail"],
                fallbacks=["script-gen:flash", "research:flash", "pronunciation:flash"],
            )
        )
        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.reason == "Multiple quality concerns"
        assert result.issues[:2] == ["3 degraded stages", "3 fallbacks used"]

    def test_multiple_concerns_need_both_counts(self):
        result = decide(
            ctx(degraded=["a", "b", "c"], fallbacks=["script-gen:flash", "research:flash"])
        )
        assert result.decision is QualityDecision.AUTO_PUBLISH_WITH_WARNING

    def test_gate_does_not_mutate_context(self):
        quality = ctx(fallbacks=["tts:x"], flags=["word-count-high"])
        before = quality.to_dict()
        decide(quality)
        assert quality.to_dict() == before


class TestPendingReviews:
    """Pending critical review items short-circuit the gate."""

    def test_pending_reviews_require_decision(self):
        items = [review("r1"), review("r2", ReviewType.QUALITY, "script-gen")]

        result = decide(ctx(), items)

        assert result.decision is QualityDecision.HUMAN_REVIEW
        assert result.reason == "2 pending review items require human decision"
        assert result.issues == [
            "Pending pronunciation review from pronunciation stage",
            "Pending quality review from script-gen stage",
        ]
        assert result.review_item_ids == ["r1", "r2"]
        assert result.pause_before_stage == "youtube"

    def test_to_dict(self):
        data = decide(ctx(), [review("r1")]).to_dict()
        assert data["decision"] == "HUMAN_REVIEW"
        assert data["review_item_ids"] == ["r1"]


class TestBlockingIssues:
    def test_issues_reported_in_rule_order(self):
        quality = ctx(
            fallbacks=["tts:std", "thumbnail:tpl", "visual-gen:stock"],
            flags=["word-count-high"],
        )
        assert blocking_issues(quality) == [
            "TTS fallback used",
            "Word count outside acceptable range",
            "Both thumbnail and visual fallbacks used",
        ]
