# tests/test_vectors.py
import pytest

from expert_rag.errors import DimensionError
from expert_rag.memory.vectors import (
    cosine_similarity,
    ensure_dimension,
    parse_vector_literal,
    rank_by_similarity,
    to_vector_literal,
)


class TestCosineSimilarity:

    def test_identical_vectors_score_one(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 1.0], [5.0, 5.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors_score_zero(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors_score_minus_one(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        """Undefined cosine is reported as 0, never NaN."""
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_length_mismatch_rejected(self):
        with pytest.raises(DimensionError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestRanking:

    def test_descending_order(self):
        order, scores = rank_by_similarity(
            [1.0, 0.0],
            [[0.0, 1.0], [1.0, 0.0], [1.0, 1.0]],
        )

        assert order == [1, 2, 0]
        assert scores == sorted(scores, reverse=True)

    def test_ties_keep_row_order(self):
        """Equal scores rank in the order rows were given."""
        order, scores = rank_by_similarity(
            [1.0, 0.0],
            [[2.0, 0.0], [0.0, 3.0], [1.0, 0.0], [7.0, 0.0]],
        )

        assert order == [0, 2, 3, 1]
        assert scores[:3] == [pytest.approx(1.0)] * 3

    def test_zero_query_scores_all_zero_in_row_order(self):
        order, scores = rank_by_similarity([0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])

        assert order == [0, 1]
        assert scores == [0.0, 0.0]

    def test_scores_never_exceed_one(self):
        vector = [0.1, 0.2, 0.7, 1e-9]
        _, scores = rank_by_similarity(vector, [vector])

        assert -1.0 <= scores[0] <= 1.0

    def test_empty_matrix(self):
        assert rank_by_similarity([1.0], []) == ([], [])

    def test_dimension_mismatch_rejected(self):
        with pytest.raises(DimensionError):
            rank_by_similarity([1.0, 0.0], [[1.0, 0.0, 0.0]])


class TestVectorLiteral:

    def test_exact_float_round_trip(self):
        """repr-based literals lose no precision."""
        vector = [0.1, 1 / 3, -2.5, 1e-300, 123456.789]
        assert parse_vector_literal(to_vector_literal(vector)) == vector

    def test_literal_format(self):
        assert to_vector_literal([1, 2.5]) == "[1.0,2.5]"

    def test_empty_literal(self):
        assert parse_vector_literal("[]") == []

    @pytest.mark.parametrize("literal", ["1,2,3", "[1,2", "[1,abc]"])
    def test_malformed_literal_rejected(self, literal):
        with pytest.raises(ValueError):
            parse_vector_literal(literal)


class TestEnsureDimension:

    def test_accepts_matching_length(self):
        ensure_dimension([0.0] * 4, 4)

    def test_rejects_wrong_length(self):
        with pytest.raises(DimensionError, match="expected 4"):
            ensure_dimension([0.0] * 3, 4, "query embedding")
