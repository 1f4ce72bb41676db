"""
Unit tests for the RSSI path-loss model and measurement buffering.
"""

import math

import pytest

from rtls_core.localization.measurement_buffer import MeasurementBuffer, aggregate_by_reader
from rtls_core.localization.path_loss import PathLossConfig, PathLossModel
from rtls_core.proto import Measurement


def _measurement(reader_id, rssi, t, tag_id="T1", tx_power=30.0):
    return Measurement(
        tag_id=tag_id,
        reader_id=reader_id,
        reader_position=(0.0, 0.0, 1.0),
        rssi=rssi,
        phase=0.0,
        timestamp=t,
        tx_power_dbm=tx_power,
    )


class TestPathLossModel:
    """Tests for RSSI <-> distance conversion."""

    def test_reference_rssi_is_one_meter(self, path_loss):
        assert path_loss.distance(-30.0) == pytest.approx(1.0)

    def test_exponent(self, path_loss):
        """27 dB below the reference is one decade of distance (n = 2.7)."""
        assert path_loss.distance(-57.0) == pytest.approx(10.0)

    @pytest.mark.parametrize("d", [0.5, 2.0, 7.3, 40.0])
    def test_rssi_at_inverts_distance(self, path_loss, d):
        assert path_loss.distance(path_loss.rssi_at(d)) == pytest.approx(d)

    def test_clamped(self, path_loss):
        assert path_loss.distance(0.0) == pytest.approx(0.1)
        assert path_loss.distance(-200.0) == pytest.approx(100.0)

    def test_more_power_means_farther(self, path_loss):
        """The same RSSI from a reader transmitting 3 dB hotter is farther away."""
        assert path_loss.distance(-50.0, tx_power_dbm=33.0) > path_loss.distance(-50.0, tx_power_dbm=30.0)

    def test_frequency_term(self, path_loss):
        shift = path_loss.reference_rssi(frequency_mhz=2 * 915.0) - path_loss.reference_rssi()
        assert shift == pytest.approx(-20.0 * math.log10(2.0))

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            PathLossConfig(path_loss_exponent=0.0)
        with pytest.raises(ValueError):
            PathLossConfig(min_distance_m=5.0, max_distance_m=1.0)


class TestMeasurementBuffer:
    """Tests for per-tag recency buffering."""

    def test_prunes_to_window(self):
        buffer = MeasurementBuffer(window_s=2.0)

        buffer.append(_measurement("R1", -50.0, 100.0))
        buffer.append(_measurement("R1", -51.0, 101.0))
        buffer.append(_measurement("R1", -52.0, 103.0))

        assert [m.timestamp for m in buffer.get("T1")] == [101.0, 103.0]

    def test_prune_all_removes_empty_tags(self):
        buffer = MeasurementBuffer(window_s=2.0)
        buffer.append(_measurement("R1", -50.0, 100.0, tag_id="T1"))
        buffer.append(_measurement("R1", -50.0, 105.0, tag_id="T2"))

        removed = buffer.prune_all(106.0)

        assert removed == 1
        assert "T1" not in buffer
        assert "T2" in buffer

    def test_max_per_tag(self):
        buffer = MeasurementBuffer(window_s=10.0, max_per_tag=3)
        for i in range(5):
            buffer.append(_measurement("R1", -50.0 - i, 100.0 + i * 0.1))

        assert len(buffer.get("T1")) == 3
        assert buffer.get("T1")[-1].rssi == -54.0

    def test_get_unknown_is_empty(self):
        assert MeasurementBuffer().get("nope") == []


class TestAggregateByReader:
    """Tests for per-reader collapsing."""

    def test_mean_and_std(self, path_loss):
        samples = [_measurement("R1", -50.0, 1.0), _measurement("R1", -54.0, 2.0), _measurement("R2", -60.0, 1.5)]

        obs = aggregate_by_reader(samples, path_loss)

        assert [o.reader_id for o in obs] == ["R1", "R2"]
        assert obs[0].rssi == pytest.approx(-52.0)
        assert obs[0].num_samples == 2
        assert obs[0].rssi_std == pytest.approx(math.sqrt(8.0))
        assert obs[0].last_timestamp == 2.0
        assert obs[0].distance_m == pytest.approx(path_loss.distance(-52.0))
        assert obs[1].rssi_std == 0.0

    def test_uses_newest_power(self, path_loss):
        samples = [_measurement("R1", -50.0, 1.0, tx_power=30.0), _measurement("R1", -50.0, 2.0, tx_power=33.0)]

        obs = aggregate_by_reader(samples, path_loss)

        assert obs[0].distance_m == pytest.approx(path_loss.distance(-50.0, tx_power_dbm=33.0))
