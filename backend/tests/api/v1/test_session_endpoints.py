"""
Tests for test session endpoints.
"""
from datetime import timedelta

from cbt.models import SessionStatus

from conftest import OTHER_STUDENT_ID, bearer


def start_url(test_id: str) -> str:
    return f"/v1/tests/{test_id}/start"


def answer_url(session_id: str, question_id: str) -> str:
    return f"/v1/sessions/{session_id}/questions/{question_id}/answer"


def start_session(client, test, headers, **body) -> dict:
    response = client.post(start_url(test.id), json=body or None, headers=headers)
    assert response.status_code in (200, 201), response.text
    return response.json()["session"]


class TestStartSession:
    """Tests for POST /v1/tests/{test_id}/start."""

    def test_new_session_returns_201(self, client, student_headers, two_question_test):
        response = client.post(
            start_url(two_question_test.id),
            json={"browser_info": {"user_agent": "Mozilla/5.0"}},
            headers=student_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["resumed"] is False
        session = data["session"]
        assert session["status"] == "in_progress"
        assert session["assigned_question_ids"] == ["q1", "q2"]
        assert session["time_remaining_seconds"] == 600
        assert session["end_time"] is None
        assert session["score"] is None
        assert session["browser_info"] == {"user_agent": "Mozilla/5.0"}

    def test_second_start_resumes_with_200(
        self, client, student_headers, two_question_test, clock
    ):
        first = start_session(client, two_question_test, student_headers)
        clock.advance(60)

        response = client.post(start_url(two_question_test.id), headers=student_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["resumed"] is True
        assert data["session"]["id"] == first["id"]
        assert data["session"]["time_remaining_seconds"] == 540

    def test_unknown_test_is_404(self, client, student_headers, db_session):
        response = client.post(start_url("missing"), headers=student_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": "Test not found.", "error": "not_found"}

    def test_unstartable_test_is_409(self, client, student_headers, make_test, clock):
        test = make_test(
            question_ids=["q1"], schedule_start=clock.now + timedelta(days=1)
        )

        response = client.post(start_url(test.id), headers=student_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_access_code_errors_are_400(
        self, client, student_headers, make_questions, make_test
    ):
        make_questions(1)
        test = make_test(question_ids=["q1"], access_code="ROOM42")

        missing = client.post(start_url(test.id), headers=student_headers)
        wrong = client.post(
            start_url(test.id), json={"access_code": "NOPE"}, headers=student_headers
        )
        right = client.post(
            start_url(test.id), json={"access_code": "ROOM42"}, headers=student_headers
        )

        assert missing.status_code == 400
        assert missing.json()["detail"] == "Access code is required for this test."
        assert wrong.status_code == 400
        assert wrong.json()["detail"] == "Invalid access code."
        assert right.status_code == 201

    def test_owner_cannot_start(self, client, owner_headers, two_question_test):
        response = client.post(start_url(two_question_test.id), headers=owner_headers)

        assert response.status_code == 403

    def test_missing_token(self, client, two_question_test):
        response = client.post(start_url(two_question_test.id))

        assert response.status_code in (401, 403)

    def test_invalid_token(self, client, two_question_test):
        response = client.post(
            start_url(two_question_test.id),
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"


class TestAnswerAndProgress:
    """Tests for answering, auto-save and the resume view."""

    def test_submit_answer(self, client, student_headers, two_question_test):
        session = start_session(client, two_question_test, student_headers)

        response = client.post(
            answer_url(session["id"], "q1"),
            json={"answer": "a", "time_spent_seconds": 10, "current_question_index": 1},
            headers=student_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_correct"] is True
        assert data["points_awarded"] == 1
        assert data["time_remaining_seconds"] == 590
        assert data["current_question_index"] == 1
        assert data["answered_count"] == 1
        assert data["total_questions"] == 2

    def test_foreign_question_is_400(
        self, client, student_headers, make_questions, make_test
    ):
        make_questions(3)
        test = make_test(question_ids=["q1", "q2"])
        session = start_session(client, test, student_headers)

        response = client.post(
            answer_url(session["id"], "q3"), json={"answer": "a"}, headers=student_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_negative_time_is_422(self, client, student_headers, two_question_test):
        session = start_session(client, two_question_test, student_headers)

        response = client.post(
            answer_url(session["id"], "q1"),
            json={"answer": "a", "time_spent_seconds": -1},
            headers=student_headers,
        )

        assert response.status_code == 422
        assert isinstance(response.json()["detail"], list)

    def test_other_students_session_is_404(
        self, client, student_headers, other_student_headers, two_question_test
    ):
        session = start_session(client, two_question_test, student_headers)

        response = client.post(
            answer_url(session["id"], "q1"),
            json={"answer": "a"},
            headers=other_student_headers,
        )

        assert response.status_code == 404

    def test_auto_save(self, client, student_headers, two_question_test):
        session = start_session(client, two_question_test, student_headers)

        response = client.put(
            f"/v1/sessions/{session['id']}/progress",
            json={"current_question_index": 1, "time_remaining_seconds": 500},
            headers=student_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == session["id"]
        assert data["current_question_index"] == 1
        assert data["time_remaining_seconds"] == 500
        assert "saved_at" in data

    def test_progress_view(self, client, student_headers, two_question_test, clock):
        session = start_session(client, two_question_test, student_headers)
        client.post(
            answer_url(session["id"], "q2"),
            json={"answer": "b", "time_spent_seconds": 20},
            headers=student_headers,
        )
        clock.advance(40)

        response = client.get(
            f"/v1/sessions/{session['id']}/progress", headers=student_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["time_remaining_seconds"] == 540
        assert data["answered_count"] == 1
        assert data["saved_answers"]["q2"]["is_correct"] is False
        assert data["saved_answers"]["q2"]["time_spent_seconds"] == 20
        assert data["can_resume"] is True

    def test_get_session(self, client, student_headers, other_student_headers, two_question_test):
        session = start_session(client, two_question_test, student_headers)

        own = client.get(f"/v1/sessions/{session['id']}", headers=student_headers)
        foreign = client.get(
            f"/v1/sessions/{session['id']}", headers=other_student_headers
        )

        assert own.status_code == 200
        assert own.json()["id"] == session["id"]
        assert foreign.status_code == 404


class TestTerminalTransitions:
    """Tests for completing and abandoning sessions."""

    def test_complete_end_to_end(self, client, student_headers, two_question_test, clock):
        session = start_session(client, two_question_test, student_headers)
        client.post(
            answer_url(session["id"], "q1"),
            json={"answer": "a", "time_spent_seconds": 10},
            headers=student_headers,
        )
        clock.advance(120)

        response = client.post(
            f"/v1/sessions/{session['id']}/complete", headers=student_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["score"] == 50
        assert data["is_passed"] is True
        assert data["correct_count"] == 1
        assert data["unanswered_count"] == 1
        assert data["time_remaining_seconds"] == 590
        assert data["duration_seconds"] == 120
        assert data["end_time"] is not None

    def test_double_complete_is_409(self, client, student_headers, two_question_test):
        session = start_session(client, two_question_test, student_headers)
        url = f"/v1/sessions/{session['id']}/complete"
        client.post(url, headers=student_headers)

        response = client.post(url, headers=student_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_answer_after_abandon_is_409(
        self, client, student_headers, two_question_test
    ):
        session = start_session(client, two_question_test, student_headers)
        abandoned = client.post(
            f"/v1/sessions/{session['id']}/abandon", headers=student_headers
        )

        response = client.post(
            answer_url(session["id"], "q1"), json={"answer": "a"}, headers=student_headers
        )

        assert abandoned.status_code == 200
        assert abandoned.json()["status"] == "abandoned"
        assert abandoned.json()["score"] is None
        assert response.status_code == 409

    def test_my_sessions(
        self, client, student_headers, other_student_headers, two_question_test
    ):
        session = start_session(client, two_question_test, student_headers)
        client.post(f"/v1/sessions/{session['id']}/abandon", headers=student_headers)
        start_session(client, two_question_test, student_headers)
        start_session(client, two_question_test, other_student_headers)

        everything = client.get("/v1/my-sessions", headers=student_headers)
        abandoned = client.get(
            "/v1/my-sessions", params={"status": "abandoned"}, headers=student_headers
        )

        assert everything.status_code == 200
        assert everything.json()["total"] == 2
        assert everything.json()["limit"] == 20
        assert abandoned.json()["total"] == 1
        assert abandoned.json()["sessions"][0]["status"] == "abandoned"


class TestOwnerEndpoints:
    """Tests for owner listing, review and statistics routes."""

    def test_list_test_sessions(
        self, client, owner_headers, student_headers, two_question_test, make_session
    ):
        make_session(two_question_test, student_id="a", score=80, is_passed=True)
        make_session(two_question_test, student_id="b", score=20, is_passed=False)
        start_session(client, two_question_test, student_headers)

        response = client.get(
            f"/v1/tests/{two_question_test.id}/sessions",
            params={"status": "completed", "is_passed": "true"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["sessions"][0]["student_id"] == "a"

    def test_other_owners_test_is_404(
        self, client, other_owner_headers, two_question_test
    ):
        response = client.get(
            f"/v1/tests/{two_question_test.id}/sessions", headers=other_owner_headers
        )

        assert response.status_code == 404

    def test_student_cannot_list_test_sessions(
        self, client, student_headers, two_question_test
    ):
        response = client.get(
            f"/v1/tests/{two_question_test.id}/sessions", headers=student_headers
        )

        assert response.status_code == 403

    def test_flag_and_notes(self, client, owner_headers, two_question_test, make_session):
        row = make_session(two_question_test, score=100, is_passed=True)

        flagged = client.post(
            f"/v1/sessions/{row.id}/flag",
            json={"reason": "Identical answers to another student"},
            headers=owner_headers,
        )
        noted = client.put(
            f"/v1/sessions/{row.id}/notes",
            json={"notes": "  Reviewed the recording.  "},
            headers=owner_headers,
        )

        assert flagged.status_code == 200
        assert flagged.json()["is_flagged"] is True
        assert noted.status_code == 200
        assert noted.json()["admin_notes"] == "Reviewed the recording."
        assert noted.json()["is_reviewed"] is True
        assert noted.json()["status"] == SessionStatus.COMPLETED.value

    def test_notes_too_long_is_422(self, client, owner_headers, two_question_test, make_session):
        row = make_session(two_question_test, score=100)

        response = client.put(
            f"/v1/sessions/{row.id}/notes", json={"notes": "x" * 1001}, headers=owner_headers
        )

        assert response.status_code == 422

    def test_admin_role_acts_as_owner(self, client, two_question_test, make_session):
        row = make_session(two_question_test, score=100)

        response = client.post(
            f"/v1/sessions/{row.id}/flag",
            json={},
            headers=bearer(two_question_test.owner_id, "admin"),
        )

        assert response.status_code == 200

    def test_analytics(self, client, owner_headers, two_question_test, make_session):
        make_session(
            two_question_test,
            student_id="a",
            score=100,
            is_passed=True,
            duration_seconds=300,
            answers={"q1": {"is_correct": True, "time_spent_seconds": 30}},
        )
        make_session(two_question_test, student_id="b", status=SessionStatus.ABANDONED)

        response = client.get(
            f"/v1/tests/{two_question_test.id}/analytics", headers=owner_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_sessions"] == 2
        assert data["completed_sessions"] == 1
        assert data["pass_rate"] == 1.0
        assert data["abandonment_rate"] == 0.5
        assert data["median_duration_seconds"] == 300.0
        assert data["question_breakdown"][0]["question_id"] == "q1"

    def test_owner_stats(self, client, owner_headers, two_question_test, make_session):
        make_session(two_question_test, student_id="a", score=70, duration_seconds=60)
        make_session(
            two_question_test, student_id=OTHER_STUDENT_ID, status=SessionStatus.EXPIRED
        )

        response = client.get("/v1/stats", headers=owner_headers)

        assert response.status_code == 200
        assert response.json() == {
            "total_sessions": 2,
            "by_status": {"completed": 1, "expired": 1},
            "average_score": 70.0,
            "total_duration_seconds": 60,
        }
