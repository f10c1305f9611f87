"""Deterministic ranking and trend direction."""

from __future__ import annotations

from edugame.leaderboards.ranking import DOWN, NEW, SAME, UP, ScoredStudent, rank_students, trend_direction


class TestTrendDirection:
    def test_new_without_prior(self):
        assert trend_direction(None, 3) == NEW

    def test_sign_of_previous_minus_rank(self):
        assert trend_direction(4, 2) == UP
        assert trend_direction(1, 3) == DOWN
        assert trend_direction(2, 2) == SAME


class TestRankStudents:
    def test_dense_permutation_by_score(self):
        ranked = rank_students([
            ScoredStudent(1, 50.0),
            ScoredStudent(2, 200.0),
            ScoredStudent(3, 120.0),
        ])
        assert [e.rank for e in ranked] == [1, 2, 3]
        assert [e.student_id for e in ranked] == [2, 3, 1]
        scores = [e.score for e in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_ties_use_tiebreak_then_student_id(self):
        ranked = rank_students([
            ScoredStudent(5, 100.0, (-1,)),
            ScoredStudent(4, 100.0, (-3,)),
            ScoredStudent(2, 100.0, (-1,)),
        ])
        assert [e.student_id for e in ranked] == [4, 2, 5]
        assert [e.rank for e in ranked] == [1, 2, 3]

    def test_ranking_is_order_independent(self):
        scored = [ScoredStudent(i, float(i % 3), (i % 2,)) for i in range(1, 10)]
        forward = [(e.student_id, e.rank) for e in rank_students(scored)]
        backward = [(e.student_id, e.rank) for e in rank_students(list(reversed(scored)))]
        assert forward == backward

    def test_previous_ranks_drive_trend(self):
        ranked = rank_students(
            [ScoredStudent(1, 10.0), ScoredStudent(2, 200.0), ScoredStudent(3, 5.0)],
            previous_ranks={1: 1, 2: 2},
        )
        by_id = {e.student_id: e for e in ranked}
        assert by_id[2].rank == 1 and by_id[2].previous_rank == 2 and by_id[2].trend_direction == UP
        assert by_id[1].rank == 2 and by_id[1].trend_direction == DOWN
        assert by_id[3].previous_rank is None and by_id[3].trend_direction == NEW

    def test_empty(self):
        assert rank_students([]) == []
