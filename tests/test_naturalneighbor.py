import numpy as np
import pytest
import scipy.sparse

import naturalneighbor
from naturalneighbor import EmptyIndexError, InvalidShapeError


# ── Helpers ──────────────────────────────────────────────────────────────────

def random_problem(rng, num_points=20, lo=0.0, hi=10.0):
    keys = rng.uniform(lo, hi, (num_points, 3))
    values = rng.randn(num_points)
    return keys, values


UNIT_RANGES = [(0, 10, 1), (0, 10, 1), (0, 10, 1)]


# ── Grid description ────────────────────────────────────────────────────────

class TestGridRanges:
    @pytest.mark.parametrize('interp_ranges', [
        [(0, 10, 1), (0, 5, 1), (0, 3, 1)],
        [(0, 1, 0.25), (-1, 1, 0.5), (2, 3, 0.3)],
        [(0, 1, 5j), (-1, 1, 3j), (2, 3, 1j)],
        [(0, 1, 4j), (0, 2, 0.5), (5, 0, -1)],
        [(0, 0, 1), (0, 3, 1), (0, 3, 1)],
    ])
    def test_shape_matches_mgrid(self, interp_ranges):
        coords = naturalneighbor.grid_coordinates(interp_ranges)
        assert coords.shape == (3,) + naturalneighbor.grid_shape(interp_ranges)

    def test_numpy_complex_step(self):
        interp_ranges = [(0, 1, np.complex64(5j)), (0, 2, 1), (0, 1, np.complex128(3j))]
        assert naturalneighbor.grid_shape(interp_ranges) == (5, 2, 3)
        assert naturalneighbor.grid_coordinates(interp_ranges).shape == (3, 5, 2, 3)

    def test_coordinates(self):
        coords = naturalneighbor.grid_coordinates([(0, 1, 3j), (2, 4, 1), (0, 1, 2j)])
        np.testing.assert_allclose(coords[0, :, 0, 0], [0, 0.5, 1])
        np.testing.assert_allclose(coords[1, 0, :, 0], [2, 3])
        np.testing.assert_allclose(coords[2, 0, 0, :], [0, 1])

    def test_output_shape(self):
        rng = np.random.RandomState(1)
        keys, values = random_problem(rng)
        result = naturalneighbor.griddata(keys, values, [(0, 10, 1), (0, 10, 2), (0, 10, 11j)])
        assert result.shape == (10, 5, 11)


class TestIndexSpaceMapping:
    def test_unit_ranges_match_index_space(self):
        rng = np.random.RandomState(2)
        keys, values = random_problem(rng)
        result = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        expected, _ = naturalneighbor.interpolate(keys, values, (10, 10, 10))
        np.testing.assert_array_equal(result, expected)

    def test_scaled_and_shifted(self):
        """Scaling and shifting both the data and the grid must not change the result."""
        rng = np.random.RandomState(3)
        keys, values = random_problem(rng)
        scale = np.array([0.5, 2.0, 0.25])
        offset = np.array([-3.0, 10.0, 1.0])
        ranges = [(offset[d], offset[d] + 8 * scale[d], scale[d]) for d in range(3)]
        result = naturalneighbor.griddata(keys * scale + offset, values, ranges)
        expected, _ = naturalneighbor.interpolate(keys, values, (8, 8, 8))
        np.testing.assert_allclose(result, expected, rtol=1e-12)

    def test_complex_step(self):
        rng = np.random.RandomState(4)
        keys, values = random_problem(rng, hi=1.0)
        result = naturalneighbor.griddata(keys, values, [(0, 1, 5j)] * 3)
        expected, _ = naturalneighbor.interpolate(keys * 4, values, (5, 5, 5))
        np.testing.assert_allclose(result, expected, rtol=1e-12)


# ── Interpolation properties ─────────────────────────────────────────────────

class TestKnownValues:
    def test_constant_function(self):
        rng = np.random.RandomState(5)
        keys = rng.uniform(0, 10, (50, 3))
        result = naturalneighbor.griddata(keys, np.full(50, 7.0), UNIT_RANGES)
        np.testing.assert_allclose(result, 7.0)

    def test_single_known_point(self):
        result = naturalneighbor.griddata([[0.0, 0.0, 0.0]], [5.0], [(0, 3, 1)] * 3)
        np.testing.assert_array_equal(result, np.full((3, 3, 3), 5.0))

    def test_known_point_on_grid_node(self):
        keys = np.array([[0.0, 0.0, 0.0], [1.5, 0.0, 0.0]])
        result = naturalneighbor.griddata(keys, [-1.0, 4.0], [(0, 2.5, 0.5), (0, 1, 1), (0, 1, 1)])
        assert result[0, 0, 0] == -1.0
        assert result[3, 0, 0] == 4.0

    def test_smooth_function_error_decreases(self):
        rng = np.random.RandomState(6)

        def func(x):
            return np.sin(x[..., 0]) + np.cos(x[..., 1]) + 0.5 * x[..., 2]

        ranges = [(0, 3, 13j)] * 3
        grid = np.moveaxis(naturalneighbor.grid_coordinates(ranges), 0, -1)
        errors = []
        for n in [20, 200, 2000]:
            keys = rng.uniform(0, 3, (n, 3))
            result = naturalneighbor.griddata(keys, func(keys), ranges)
            errors.append(np.mean(np.abs(result - func(grid))))

        assert errors[1] < errors[0], f'{errors[1]:.4e} not < {errors[0]:.4e}'
        assert errors[2] < errors[1], f'{errors[2]:.4e} not < {errors[1]:.4e}'


# ── Weights and reuse ────────────────────────────────────────────────────────

class TestWeights:
    @pytest.fixture()
    def data(self):
        rng = np.random.RandomState(7)
        keys, values = random_problem(rng, num_points=30)
        return keys, values

    def test_shape_and_type(self, data):
        keys, _ = data
        W = naturalneighbor.get_weights(keys, [(0, 10, 1), (0, 10, 2), (0, 10, 5)])
        assert W.shape == (10 * 5 * 2, 30)
        assert isinstance(W, scipy.sparse.csr_matrix)

    def test_partition_of_unity(self, data):
        keys, _ = data
        W = naturalneighbor.get_weights(keys, UNIT_RANGES)
        sums = np.asarray(W.sum(axis=1)).ravel()
        np.testing.assert_allclose(sums, 1.0, atol=1e-12)
        assert W.min() >= 0

    def test_sparsity(self, data):
        keys, _ = data
        W = naturalneighbor.get_weights(keys, UNIT_RANGES)
        for i in range(W.shape[0]):
            assert 1 <= W[i].nnz < 30

    def test_weights_match_griddata(self, data):
        keys, values = data
        W = naturalneighbor.get_weights(keys, UNIT_RANGES)
        result = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        np.testing.assert_allclose((W @ values).reshape(10, 10, 10), result, rtol=1e-10)


class TestInterpolator:
    def test_matches_griddata(self):
        rng = np.random.RandomState(8)
        keys, values = random_problem(rng)
        interp = naturalneighbor.Interpolator(keys, UNIT_RANGES)
        result = interp.interpolate(values)
        expected = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        assert result.shape == (10, 10, 10)
        np.testing.assert_allclose(result, expected, rtol=1e-10)

    def test_multichannel_values(self):
        rng = np.random.RandomState(9)
        keys = rng.uniform(0, 10, (20, 3))
        values = rng.randn(20, 4)
        interp = naturalneighbor.Interpolator(keys, UNIT_RANGES)
        result = interp.interpolate(values)
        assert result.shape == (10, 10, 10, 4)
        for channel in range(4):
            expected = naturalneighbor.griddata(keys, values[:, channel], UNIT_RANGES)
            np.testing.assert_allclose(result[..., channel], expected, rtol=1e-10)

    def test_reuse(self):
        rng = np.random.RandomState(10)
        keys, values = random_problem(rng)
        interp = naturalneighbor.Interpolator(keys, UNIT_RANGES)
        r1 = interp.interpolate(values)
        r2 = interp.interpolate(values * 2)
        r3 = interp.interpolate(values)
        np.testing.assert_allclose(r2, 2 * r1, rtol=1e-12)
        np.testing.assert_array_equal(r1, r3)

    def test_wrong_values_shape(self):
        rng = np.random.RandomState(11)
        keys, _ = random_problem(rng)
        interp = naturalneighbor.Interpolator(keys, UNIT_RANGES)
        with pytest.raises(InvalidShapeError):
            interp.interpolate(np.ones(19))
        with pytest.raises(InvalidShapeError):
            interp.interpolate(np.ones((20, 2, 2)))


# ── Edge cases and errors ────────────────────────────────────────────────────

class TestErrors:
    def test_empty_known_points(self):
        with pytest.raises(EmptyIndexError):
            naturalneighbor.griddata(np.empty((0, 3)), np.empty(0), UNIT_RANGES)

    def test_empty_known_points_weights(self):
        with pytest.raises(EmptyIndexError):
            naturalneighbor.get_weights(np.empty((0, 3)), UNIT_RANGES)

    def test_not_3d(self):
        with pytest.raises(InvalidShapeError):
            naturalneighbor.griddata(np.ones((5, 2)), np.ones(5), UNIT_RANGES)

    def test_mismatched_values(self):
        with pytest.raises(InvalidShapeError):
            naturalneighbor.griddata(np.ones((5, 3)), np.ones(6), UNIT_RANGES)

    def test_wrong_number_of_ranges(self):
        with pytest.raises(InvalidShapeError):
            naturalneighbor.griddata(np.ones((5, 3)), np.ones(5), UNIT_RANGES[:2])

    def test_malformed_range(self):
        with pytest.raises(InvalidShapeError):
            naturalneighbor.griddata(np.ones((5, 3)), np.ones(5), [(0, 10), (0, 10, 1), (0, 10, 1)])

    def test_zero_step(self):
        with pytest.raises(InvalidShapeError):
            naturalneighbor.grid_shape([(0, 10, 0), (0, 10, 1), (0, 10, 1)])

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            naturalneighbor.griddata(np.empty((0, 3)), np.empty(0), UNIT_RANGES)
        with pytest.raises(ValueError):
            naturalneighbor.griddata(np.ones((5, 3)), np.ones(6), UNIT_RANGES)


class TestEdgeCases:
    def test_empty_grid(self):
        result = naturalneighbor.griddata(np.ones((5, 3)), np.ones(5), [(0, 0, 1), (0, 3, 1), (0, 3, 1)])
        assert result.shape == (0, 3, 3)

    def test_points_outside_grid(self):
        keys = np.array([[-100.0, -100.0, -100.0], [100.0, 100.0, 100.0]])
        result = naturalneighbor.griddata(keys, [1.0, 2.0], [(0, 4, 1)] * 3)
        assert np.all(np.isfinite(result))
        assert result.min() >= 1.0 and result.max() <= 2.0


class TestDtypeHandling:
    def test_float32_input(self):
        rng = np.random.RandomState(50)
        keys = rng.uniform(0, 10, (30, 3)).astype(np.float32)
        values = rng.randn(30).astype(np.float32)
        result = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        assert result.dtype == np.float64
        assert result.shape == (10, 10, 10)

    def test_integer_input(self):
        keys = np.array([[0, 0, 0], [5, 5, 5]])
        result = naturalneighbor.griddata(keys, np.array([1, 3]), [(0, 6, 1)] * 3)
        assert result[0, 0, 0] == 1.0
        assert result[5, 5, 5] == 3.0


class TestDeterminism:
    def test_repeated_calls(self):
        rng = np.random.RandomState(70)
        keys, values = random_problem(rng, num_points=100)
        r1 = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        r2 = naturalneighbor.griddata(keys, values, UNIT_RANGES)
        np.testing.assert_array_equal(r1, r2)


def test_version():
    assert naturalneighbor.__version__ == '0.1.0'
