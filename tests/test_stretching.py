"""Tests for display stretching."""

import numpy as np
import pytest

from spectrohelio.stretching import (
    MAX_PIXEL_VALUE,
    ArcsinhStretchingStrategy,
    ChainedStretchingStrategy,
    CutoffStretchingStrategy,
    LinearStretchingStrategy,
    arcsinh_pipeline,
    linear_pipeline,
    stretch,
)


class TestLinear:
    """Tests for LinearStretchingStrategy."""

    def test_full_range(self):
        """Test that min and max map to the range ends."""
        data = np.array([10.0, 60.0, 110.0], dtype=np.float32)

        LinearStretchingStrategy().apply(data)

        np.testing.assert_allclose(data, [0, MAX_PIXEL_VALUE / 2, MAX_PIXEL_VALUE])

    def test_constant_image(self):
        """Test that a constant image maps to the low value."""
        data = np.full(5, 1234.0, dtype=np.float32)

        LinearStretchingStrategy(lo=100).apply(data)

        assert np.all(data == 100)

    def test_nan_ignored(self):
        """Test that NaN pixels don't affect the range and become lo."""
        data = np.array([np.nan, 0.0, 50.0], dtype=np.float32)

        LinearStretchingStrategy(0, 100).apply(data)

        np.testing.assert_allclose(data, [0, 0, 100])

    def test_all_nan(self):
        """Test an image without any finite pixel."""
        data = np.full(3, np.nan, dtype=np.float32)

        LinearStretchingStrategy().apply(data)

        assert np.all(data == 0)


def test_cutoff():
    """Test clipping to the 16-bit range."""
    data = np.array([-5.0, 100.0, 70000.0], dtype=np.float32)

    CutoffStretchingStrategy().apply(data)

    np.testing.assert_allclose(data, [0, 100, MAX_PIXEL_VALUE])


class TestArcsinh:
    """Tests for ArcsinhStretchingStrategy."""

    def test_brightens_midtones(self):
        """Test the arcsinh curve with a zero black point."""
        data = np.array([0.0, 0.1 * MAX_PIXEL_VALUE, MAX_PIXEL_VALUE], dtype=np.float32)

        ArcsinhStretchingStrategy(0, 10, 10).apply(data)

        expected_mid = np.arcsinh(1.0) / np.arcsinh(10.0) * MAX_PIXEL_VALUE
        assert data[0] == 0
        assert data[1] == pytest.approx(expected_mid, rel=1e-4)
        assert data[2] == pytest.approx(MAX_PIXEL_VALUE)

    def test_monotonic(self):
        """Test that the stretch preserves the pixel order."""
        data = np.linspace(0, MAX_PIXEL_VALUE, 50, dtype=np.float32)

        ArcsinhStretchingStrategy(0, 10, 10).apply(data)

        assert np.all(np.diff(data) >= 0)

    def test_black_point(self):
        """Test that pixels below the black point become black."""
        data = np.array([1000.0, 2000.0, 40000.0, 60000.0], dtype=np.float32)

        ArcsinhStretchingStrategy(3000, 10, 10).apply(data)

        assert data[0] == 0
        assert data[1] == 0
        assert data[3] == pytest.approx(MAX_PIXEL_VALUE)

    def test_stretch_capped(self):
        """Test that the stretch factor is capped."""
        assert ArcsinhStretchingStrategy(0, 50, 10).stretch == 10
        assert ArcsinhStretchingStrategy(0, 5, 10).stretch == 5

    def test_invalid_stretch(self):
        """Test that the stretch factor must be positive."""
        with pytest.raises(ValueError, match="positive"):
            ArcsinhStretchingStrategy(0, 0, 10)


class TestPipelines:
    """Tests for chained strategies."""

    def test_chain_order(self):
        """Test that strategies run in order."""
        data = np.array([-100.0, 0.0, 100.0], dtype=np.float32)

        ChainedStretchingStrategy(
            CutoffStretchingStrategy(), LinearStretchingStrategy(0, 10)
        ).apply(data)

        np.testing.assert_allclose(data, [0, 0, 10])

    def test_stretch_returns_copy(self):
        """Test that the input image is left untouched."""
        image = np.array([[0.0, 1000.0], [2000.0, 3000.0]], dtype=np.float64)
        original = image.copy()

        result = stretch(image, linear_pipeline())

        np.testing.assert_array_equal(image, original)
        assert result.dtype == np.float32
        assert result.max() == pytest.approx(MAX_PIXEL_VALUE)

    def test_arcsinh_pipeline_handles_nan(self):
        """Test that NaN pixels come out black."""
        image = np.array([np.nan, 1000.0, 30000.0], dtype=np.float32)

        result = stretch(image, arcsinh_pipeline())

        assert result[0] == 0
        assert np.isfinite(result).all()
        assert result[2] == pytest.approx(MAX_PIXEL_VALUE)
