"""Tests for the chunked scan driver — slicing, progress, validation."""

import numpy as np
import pytest

from analysis.errors import InvalidPixelBufferError
from analysis.scan import NOTE_SCANNING, ScanDriver, as_sample_array


def _frame(width, height, rgb=(0, 0, 0)):
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    frame[:, :, :3] = rgb
    frame[:, :, 3] = 255
    return frame


def _random_frame(width, height, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)


class TestValidation:
    def test_length_not_multiple_of_four(self):
        with pytest.raises(InvalidPixelBufferError, match="multiple of 4"):
            as_sample_array(b"\x00" * 7, 1, 2)

    def test_length_inconsistent_with_geometry(self):
        with pytest.raises(InvalidPixelBufferError, match="does not match"):
            as_sample_array(b"\x00" * 16, 3, 2)

    def test_non_uint8_array_rejected(self):
        with pytest.raises(InvalidPixelBufferError):
            as_sample_array(np.zeros((2, 2, 4), dtype=np.float32), 2, 2)

    def test_non_buffer_rejected(self):
        with pytest.raises(InvalidPixelBufferError):
            as_sample_array(12345, 1, 1)

    def test_bytes_and_array_accepted(self):
        assert as_sample_array(bytes(32), 4, 2).size == 32
        assert as_sample_array(bytearray(32), 2, 4).size == 32
        assert as_sample_array(_frame(2, 4), 2, 4).size == 32

    def test_buffer_is_not_modified(self):
        frame = _random_frame(50, 50)
        before = frame.copy()
        ScanDriver().scan(frame, 50, 50)
        assert np.array_equal(frame, before)

    def test_invalid_buffer_raises_before_reset(self):
        driver = ScanDriver()
        driver.scan(_frame(10, 10, (255, 255, 255)), 10, 10)
        with pytest.raises(InvalidPixelBufferError):
            driver.scan(b"\x00" * 5, 1, 1)
        # accumulators untouched by the rejected call
        assert driver.histogram.luminance[255] == 100

    def test_slice_pixels_must_be_positive(self):
        with pytest.raises(ValueError):
            ScanDriver(slice_pixels=0)


class TestScan:
    def test_two_by_two_scenario(self):
        pixels = bytes(
            [0, 0, 0, 255, 255, 255, 255, 255, 128, 128, 128, 255, 128, 128, 128, 255]
        )
        result = ScanDriver().scan(pixels, 2, 2)
        lum = result.histograms.luminance
        assert lum[0] == 1
        assert lum[255] == 1
        assert lum[128] == 2
        assert result.total_pixels == 4

    def test_histogram_sums_equal_total(self):
        result = ScanDriver(slice_pixels=333).scan(_random_frame(40, 25), 40, 25)
        h = result.histograms
        for table in (h.luminance, h.red, h.green, h.blue):
            assert sum(table) == 1000
        assert result.buckets.total == 1000

    def test_alpha_is_ignored(self):
        frame = _frame(4, 4, (10, 20, 30))
        transparent = frame.copy()
        transparent[:, :, 3] = 0
        a = ScanDriver().scan(frame, 4, 4)
        b = ScanDriver().scan(transparent, 4, 4)
        assert a.histograms == b.histograms

    def test_uniform_image_palette(self):
        result = ScanDriver().scan(_frame(30, 20, (200, 150, 50)), 30, 20)
        assert len(result.palette) == 1
        assert result.palette[0].count == 600
        assert result.palette[0].rgb == (200, 150, 50)

    def test_progress_per_slice_monotonic_to_one(self):
        calls = []
        ScanDriver(slice_pixels=100).scan(
            _random_frame(25, 20), 25, 20, lambda f, note: calls.append((f, note))
        )
        # 500 px in slices of 100
        assert [f for f, _ in calls] == [0.2, 0.4, 0.6, 0.8, 1.0]
        assert all(note == NOTE_SCANNING for _, note in calls)

    def test_partial_last_slice(self):
        fractions = []
        ScanDriver(slice_pixels=300).scan(
            _random_frame(25, 20), 25, 20, lambda f, _: fractions.append(f)
        )
        assert fractions == [0.5, 1.0]

    def test_zero_area_image(self):
        calls = []
        result = ScanDriver().scan(b"", 0, 10, lambda f, n: calls.append(f))
        assert result.total_pixels == 0
        assert sum(result.histograms.luminance) == 0
        assert result.palette == []
        assert calls == [1.0]

    def test_negative_dimensions_treated_as_empty(self):
        result = ScanDriver().scan(b"", -3, 5)
        assert result.total_pixels == 0

    def test_rescan_resets_state(self):
        driver = ScanDriver()
        driver.scan(_frame(10, 10, (255, 255, 255)), 10, 10)
        result = driver.scan(_frame(5, 5, (0, 0, 0)), 5, 5)
        assert result.histograms.luminance[255] == 0
        assert result.histograms.luminance[0] == 25
        assert result.buckets.total == 25

    def test_deterministic_rescan(self):
        frame = _random_frame(64, 48, seed=4)
        driver = ScanDriver(slice_pixels=1000)
        first = driver.scan(frame, 64, 48)
        second = driver.scan(frame, 64, 48)
        assert first.histograms == second.histograms
        assert first.buckets == second.buckets
        assert first.palette == second.palette

    def test_slice_size_does_not_change_result(self):
        frame = _random_frame(64, 48, seed=8)
        small = ScanDriver(slice_pixels=97).scan(frame, 64, 48)
        large = ScanDriver().scan(frame, 64, 48)
        assert small.histograms == large.histograms
        assert small.buckets == large.buckets
        assert small.palette == large.palette

    def test_scan_order_does_not_change_result(self):
        frame = _random_frame(30, 30, seed=12)
        pixels = frame.reshape(-1, 4)
        shuffled = pixels[np.random.default_rng(1).permutation(len(pixels))]
        a = ScanDriver().scan(frame, 30, 30)
        b = ScanDriver().scan(np.ascontiguousarray(shuffled), 30, 30)
        assert a.histograms == b.histograms
        assert a.buckets == b.buckets


class TestIterScan:
    def test_yields_between_slices(self):
        driver = ScanDriver(slice_pixels=10)
        steps = driver.iter_scan(_frame(10, 3), 10, 3)
        first = next(steps)
        assert first.slices_done == 1
        assert first.slice_count == 3
        assert driver.scanning
        # partial state after one slice
        assert int(driver.histogram.luminance.sum()) == 10

    def test_returns_result(self):
        steps = ScanDriver(slice_pixels=10).iter_scan(_frame(10, 3), 10, 3)
        progress = []
        with pytest.raises(StopIteration) as stop:
            while True:
                progress.append(next(steps).fraction)
        assert progress[-1] == 1.0
        assert stop.value.value.total_pixels == 30

    def test_validation_happens_eagerly(self):
        with pytest.raises(InvalidPixelBufferError):
            ScanDriver().iter_scan(b"\x00" * 3, 1, 1)

    def test_second_scan_while_suspended_rejected(self):
        driver = ScanDriver(slice_pixels=10)
        steps = driver.iter_scan(_frame(10, 3), 10, 3)
        next(steps)
        with pytest.raises(RuntimeError):
            driver.scan(_frame(2, 2), 2, 2)
        steps.close()
        assert not driver.scanning

    def test_raising_callback_releases_driver(self):
        driver = ScanDriver(slice_pixels=10)

        def boom(fraction, note):
            raise KeyError("ui gone")

        with pytest.raises(KeyError):
            driver.scan(_frame(10, 3), 10, 3, boom)
        assert not driver.scanning
        assert driver.scan(_frame(2, 2), 2, 2).total_pixels == 4

    def test_two_pending_generators_do_not_interleave(self):
        driver = ScanDriver(slice_pixels=10)
        black = driver.iter_scan(_frame(10, 3), 10, 3)
        white = driver.iter_scan(_frame(10, 3, (255, 255, 255)), 10, 3)
        next(black)
        with pytest.raises(RuntimeError):
            next(white)
        with pytest.raises(StopIteration) as stop:
            while True:
                next(black)
        result = stop.value.value
        assert result.histograms.luminance[0] == 30
        assert result.histograms.luminance[255] == 0
        assert not driver.scanning
