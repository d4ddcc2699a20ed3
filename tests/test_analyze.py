"""
Tests for POST /api/analyze
"""
import base64
import json
from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from app.core.errors import UpstreamError, UpstreamRateLimited
from app.models.analysis_record import AnalysisRecord
from app.models.analysis_usage import AnalysisUsage
from app.utils.auth import create_access_token


def _usage_count(db_session, user_id, period="2026-10"):
    db_session.expire_all()
    row = db_session.query(AnalysisUsage).filter_by(user_id=user_id, period=period).first()
    return row.analysis_count if row else 0


class TestAuthentication:
    def test_missing_token_is_401(self, client, make_video, analyzer):
        response = client.post("/api/analyze", json=make_video())
        assert response.status_code == 401
        assert analyzer.calls == []

    def test_invalid_token_is_401(self, client, make_video):
        response = client.post(
            "/api/analyze", json=make_video(), headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_token_without_profile_is_404(self, client, make_video, analyzer):
        token = create_access_token({"sub": "9999"})
        response = client.post(
            "/api/analyze", json=make_video(), headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 404
        assert analyzer.calls == []


class TestQuota:
    def test_successful_analysis(self, client, make_user, make_video, analyzer, db_session):
        user, headers = make_user()
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["analysis"]["overallScore"] == 78
        assert body["usage"] == {"tier": "free", "remainingThisMonth": 2}
        assert len(analyzer.calls) == 1
        assert _usage_count(db_session, user.id) == 1

    def test_fourth_free_analysis_is_rejected(self, client, make_user, make_video, analyzer, db_session):
        user, headers = make_user()
        for expected_remaining in (2, 1, 0):
            response = client.post("/api/analyze", json=make_video(), headers=headers)
            assert response.status_code == 200
            assert response.json()["usage"]["remainingThisMonth"] == expected_remaining

        response = client.post("/api/analyze", json=make_video(), headers=headers)
        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Analysis limit reached"
        assert body["tier"] == "free"
        assert body["currentMonth"] == "2026-10"
        assert body["limit"] == 3
        assert body["remaining"] == 0
        assert "November 1" in body["message"]

        assert len(analyzer.calls) == 3
        assert _usage_count(db_session, user.id) == 3

    def test_next_month_is_allowed_again(self, client, clock, make_user, make_video, db_session):
        user, headers = make_user()
        for _ in range(3):
            client.post("/api/analyze", json=make_video(), headers=headers)
        assert client.post("/api/analyze", json=make_video(), headers=headers).status_code == 429

        clock.set(datetime(2026, 11, 1, 9, 0, tzinfo=timezone.utc))
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 200
        assert response.json()["usage"]["remainingThisMonth"] == 2
        assert _usage_count(db_session, user.id, "2026-10") == 3
        assert _usage_count(db_session, user.id, "2026-11") == 1

    def test_premium_is_unlimited(self, client, make_user, make_video, analyzer):
        _, headers = make_user(tier="premium")
        for _ in range(12):
            response = client.post("/api/analyze", json=make_video(), headers=headers)
            assert response.status_code == 200
        assert response.json()["usage"] == {"tier": "premium", "remainingThisMonth": "unlimited"}
        assert len(analyzer.calls) == 12

    def test_unknown_tier_gets_free_limits(self, client, make_user, make_video):
        _, headers = make_user(tier="legacy-gold")
        response = client.post("/api/analyze", json=make_video(), headers=headers)
        assert response.json()["usage"] == {"tier": "free", "remainingThisMonth": 2}


class TestMediaValidation:
    def test_oversized_video_rejected_before_upstream(self, client, make_user, analyzer, db_session):
        user, headers = make_user()
        oversized = base64.b64encode(b"\0" * (25 * 1024 * 1024)).decode()
        response = client.post(
            "/api/analyze",
            json={"videoBase64": oversized, "mimeType": "video/webm", "videoDuration": 30},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Video too large"
        assert analyzer.calls == []
        assert _usage_count(db_session, user.id) == 0

    def test_missing_video_is_400(self, client, make_user, analyzer):
        _, headers = make_user()
        response = client.post("/api/analyze", json={"mimeType": "video/webm"}, headers=headers)
        assert response.status_code == 400
        assert analyzer.calls == []

    def test_non_media_mime_type_is_400(self, client, make_user, make_video):
        _, headers = make_user()
        response = client.post("/api/analyze", json=make_video(mimeType="application/pdf"), headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid media"

    def test_invalid_base64_is_400(self, client, make_user, make_video, db_session):
        user, headers = make_user()
        response = client.post("/api/analyze", json=make_video(videoBase64="not base64!!"), headers=headers)
        assert response.status_code == 400
        assert _usage_count(db_session, user.id) == 0

    def test_data_url_prefix_is_accepted(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        payload = make_video()
        payload["videoBase64"] = "data:video/webm;base64," + payload["videoBase64"]
        response = client.post("/api/analyze", json=payload, headers=headers)

        assert response.status_code == 200
        assert not analyzer.calls[0]["video_base64"].startswith("data:")

    def test_duration_over_tier_limit(self, client, make_user, make_video, analyzer, db_session):
        user, headers = make_user()
        response = client.post("/api/analyze", json=make_video(duration=61), headers=headers)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Video too long"
        assert body["videoDurationLimit"] == 60
        assert analyzer.calls == []
        assert _usage_count(db_session, user.id) == 0

    def test_pro_allows_longer_videos(self, client, make_user, make_video):
        _, headers = make_user(tier="pro")
        response = client.post("/api/analyze", json=make_video(duration=1700), headers=headers)
        assert response.status_code == 200


class TestUpstreamFailures:
    def test_rate_limited_is_503(self, client, make_user, make_video, analyzer, db_session):
        user, headers = make_user()
        analyzer.error = UpstreamRateLimited("busy")
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 503
        assert response.json()["success"] is False
        # Quota was spent before the model was called
        assert _usage_count(db_session, user.id) == 1

    def test_upstream_error_is_500(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        analyzer.error = UpstreamError("boom")
        response = client.post("/api/analyze", json=make_video(), headers=headers)
        assert response.status_code == 500
        assert response.json()["message"] == "boom"

    def test_malformed_output_is_500_with_excerpt(self, client, make_user, make_video, analyzer, db_session):
        _, headers = make_user()
        analyzer.response = "I could not analyze this video, sorry."
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Malformed analysis response"
        assert body["raw"].startswith("I could not analyze")
        db_session.expire_all()
        assert db_session.query(AnalysisRecord).count() == 0

    def test_missing_required_fields_is_500(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        analyzer.response = json.dumps({"fillerWords": []})
        response = client.post("/api/analyze", json=make_video(), headers=headers)
        assert response.status_code == 500
        assert response.json()["error"] == "Malformed analysis response"

    def test_fenced_output_is_parsed(self, client, make_user, make_video, analyzer, sample_analysis):
        _, headers = make_user()
        analyzer.response = "```json\n" + json.dumps(sample_analysis) + "\n```"
        response = client.post("/api/analyze", json=make_video(), headers=headers)
        assert response.status_code == 200
        assert response.json()["analysis"]["summary"] == sample_analysis["summary"]


class TestResultShaping:
    def test_free_tier_loses_premium_sections(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        analysis = response.json()["analysis"]
        assert "vocalAnalysis" not in analysis
        assert "imageAnalysis" not in analysis
        assert analyzer.calls[0]["is_premium"] is False

    def test_premium_keeps_premium_sections(self, client, make_user, make_video, analyzer):
        _, headers = make_user(tier="premium")
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        analysis = response.json()["analysis"]
        assert analysis["vocalAnalysis"]["toneVariety"] == "Media"
        assert analysis["imageAnalysis"]["attire"] == "Formal"
        assert analyzer.calls[0]["is_premium"] is True

    def test_context_is_forwarded(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        client.post(
            "/api/analyze",
            json=make_video(language="en", topic="Climate", audience="Investors", goal="Raise funds"),
            headers=headers,
        )
        call = analyzer.calls[0]
        assert call["language"] == "en"
        assert call["topic"] == "Climate"
        assert call["audience"] == "Investors"
        assert call["goal"] == "Raise funds"


class TestPersistence:
    def test_analysis_saved_to_history(self, client, make_user, make_video, db_session):
        user, headers = make_user()
        client.post("/api/analyze", json=make_video(topic="Pitch"), headers=headers)

        db_session.expire_all()
        record = db_session.query(AnalysisRecord).one()
        assert record.user_id == user.id
        assert record.overall_score == 78
        assert record.topic == "Pitch"
        assert record.tier_at_analysis == "free"
        assert "vocalAnalysis" not in record.analysis_result

    def test_history_failure_still_returns_analysis(self, client, make_user, make_video, test_engine, db_session):
        user, headers = make_user()
        AnalysisRecord.__table__.drop(test_engine)

        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 200
        assert response.json()["usage"]["remainingThisMonth"] == 2
        assert _usage_count(db_session, user.id) == 1
        AnalysisRecord.__table__.create(test_engine)


class TestFailClosed:
    def test_usage_read_error_blocks_analysis(self, client, make_user, make_video, analyzer, monkeypatch):
        _, headers = make_user()

        def broken_read(user_id, period, db):
            raise OperationalError("SELECT analysis_count FROM analysis_usage", {}, Exception("database is down"))

        monkeypatch.setattr("app.utils.plan_enforcement.get_usage_count", broken_read)
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to check usage limits"
        assert analyzer.calls == []

    def test_usage_write_error_blocks_analysis(self, client, make_user, make_video, analyzer, monkeypatch):
        _, headers = make_user()

        def broken_increment(*args, **kwargs):
            raise OperationalError("UPDATE analysis_usage", {}, Exception("database is down"))

        monkeypatch.setattr("app.utils.plan_enforcement.increment_usage", broken_increment)
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 500
        assert analyzer.calls == []

    def test_unconfigured_model_does_not_spend_quota(self, client, make_user, make_video, analyzer, db_session):
        user, headers = make_user()
        analyzer.configured = False
        response = client.post("/api/analyze", json=make_video(), headers=headers)

        assert response.status_code == 500
        assert response.json()["message"] == "Analysis service is not configured"
        assert analyzer.calls == []
        assert _usage_count(db_session, user.id) == 0


class TestLanguage:
    def test_unsupported_language_falls_back_to_spanish(self, client, make_user, make_video, analyzer, db_session):
        _, headers = make_user()
        response = client.post("/api/analyze", json=make_video(language="fr"), headers=headers)

        assert response.status_code == 200
        assert analyzer.calls[0]["language"] == "es"
        db_session.expire_all()
        assert db_session.query(AnalysisRecord).one().language == "es"

    def test_language_is_case_insensitive(self, client, make_user, make_video, analyzer):
        _, headers = make_user()
        client.post("/api/analyze", json=make_video(language="EN"), headers=headers)
        assert analyzer.calls[0]["language"] == "en"
