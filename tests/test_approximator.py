import numpy as np
import pytest

from approximator import (
    DEFAULT_PATTERNS, NTupleApproximator, RADIX, WeightFileError,
    feature_index, load_weights, save_weights, transform,
)
from threes_env import Board


def sample_boards(n=20, seed=0):
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 8, size=(4, 4)) for _ in range(n)]


def random_network(patterns=None, seed=1):
    approx = NTupleApproximator(patterns)
    rng = np.random.default_rng(seed)
    approx.weights = [rng.normal(size=w.shape).astype(np.float32) for w in approx.weights]
    return approx


DISTINCT = np.arange(16).reshape(4, 4)


def test_transform_enumerates_rotations_and_reflections():
    g = DISTINCT
    assert np.array_equal(transform(g, 0), g)
    assert np.array_equal(transform(g, 1), np.rot90(g, -1))
    assert np.array_equal(transform(g, 2), np.rot90(g, 2))
    assert np.array_equal(transform(g, 4), np.fliplr(g))
    seen = {transform(g, t).tobytes() for t in range(8)}
    assert len(seen) == 8


def test_transform_is_pure():
    g = DISTINCT.copy()
    transform(g, 5)
    assert np.array_equal(g, DISTINCT)


def test_transform_matches_board_rotation():
    b = Board(DISTINCT)
    b.rotate_clockwise()
    assert np.array_equal(b.grid, transform(DISTINCT, 1))
    assert np.array_equal(transform(transform(DISTINCT, 1), 3), DISTINCT)


def test_transform_rejects_unknown_id():
    with pytest.raises(ValueError):
        transform(DISTINCT, 8)


def test_feature_index_mixed_radix():
    g = np.zeros((4, 4), dtype=int)
    g[0] = [1, 2, 3, 4]
    assert feature_index(g, [0, 1, 2, 3]) == ((1 * 16 + 2) * 16 + 3) * 16 + 4
    assert feature_index(g, [3, 2, 1, 0]) == ((4 * 16 + 3) * 16 + 2) * 16 + 1
    assert feature_index(Board(g), [0, 1, 2, 3]) == 4660


def test_feature_index_in_range_for_every_transform():
    for board in sample_boards() + [np.full((4, 4), RADIX - 1)]:
        for t in range(8):
            for pattern in DEFAULT_PATTERNS:
                index = feature_index(transform(board, t), pattern)
                assert 0 <= index < RADIX ** len(pattern)


def test_feature_index_overflow_is_an_error():
    g = np.zeros((4, 4), dtype=int)
    g[0, 0] = RADIX
    with pytest.raises(ValueError):
        feature_index(g, [0, 1, 2, 3])
    with pytest.raises(ValueError):
        NTupleApproximator().value(g)


def test_zero_weights_value_everything_at_zero():
    approx = NTupleApproximator()
    assert [w.size for w in approx.weights] == [RADIX ** 4] * 8
    for board in sample_boards():
        assert approx.value(board) == 0.0


def test_value_matches_direct_sum_over_transforms():
    approx = random_network()
    for board in sample_boards(5):
        expected = 0.0
        for table, pattern in zip(approx.weights, approx.patterns):
            for t in range(8):
                expected += float(table[feature_index(transform(board, t), pattern)])
        assert approx.value(board) == pytest.approx(expected, rel=1e-5)


def test_value_is_symmetry_invariant():
    approx = random_network()
    for board in sample_boards(5):
        v = approx.value(board)
        for t in range(8):
            assert approx.value(transform(board, t)) == pytest.approx(v, rel=1e-5)


def test_update_moves_every_summed_weight():
    approx = NTupleApproximator(patterns=[[0, 1, 2, 3]])
    assert len(approx.symmetry_patterns[0]) == 8
    before = approx.value(DISTINCT)
    approx.update(DISTINCT, delta=3.0, alpha=0.25)
    assert approx.value(DISTINCT) - before == 8 * 0.25 * 3.0


def test_self_symmetric_pattern_is_counted_once_per_distinct_reading():
    # the main diagonal reads the same cells under the identity and the transpose
    approx = NTupleApproximator(patterns=[[0, 5, 10, 15]])
    assert len(approx.symmetry_patterns[0]) == 4
    approx.update(DISTINCT, delta=1.0, alpha=0.5)
    assert approx.value(DISTINCT) == 4 * 0.5


def test_mismatched_tables_are_rejected():
    with pytest.raises(ValueError):
        NTupleApproximator(weights=[np.zeros(RADIX ** 4)])
    with pytest.raises(ValueError):
        NTupleApproximator(patterns=[[0, 1, 2, 3]], weights=[np.zeros(10)])


def test_snapshot_round_trip(tmp_path):
    approx = random_network()
    path = tmp_path / "weights.bin"
    save_weights(approx.weights, path)

    raw = path.read_bytes()
    assert int.from_bytes(raw[:4], "little") == 8
    assert int.from_bytes(raw[4:12], "little") == RADIX ** 4
    assert len(raw) == 4 + 8 * (8 + 4 * RADIX ** 4)

    restored = NTupleApproximator(weights=load_weights(path))
    for board in sample_boards():
        assert restored.value(board) == approx.value(board)

    again = tmp_path / "again.bin"
    save_weights(restored.weights, again)
    assert again.read_bytes() == raw


def test_missing_snapshot_is_fatal(tmp_path):
    with pytest.raises(WeightFileError):
        load_weights(tmp_path / "nope.bin")


def test_truncated_snapshot_is_fatal(tmp_path):
    path = tmp_path / "weights.bin"
    save_weights([np.ones(16, dtype=np.float32)], path)
    path.write_bytes(path.read_bytes()[:-4])
    with pytest.raises(WeightFileError):
        load_weights(path)


def test_trailing_bytes_are_fatal(tmp_path):
    path = tmp_path / "weights.bin"
    save_weights([np.ones(16, dtype=np.float32)], path)
    path.write_bytes(path.read_bytes() + b"\0")
    with pytest.raises(WeightFileError):
        load_weights(path)


def test_unwritable_snapshot_is_fatal(tmp_path):
    with pytest.raises(WeightFileError):
        save_weights([np.ones(4, dtype=np.float32)], tmp_path / "missing" / "weights.bin")
