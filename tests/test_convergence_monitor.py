"""Tests for the convergence controller."""

import warnings

import pytest

from scbfa import ConvergenceWarning
from scbfa._utils.convergence_monitor import (
    LogLikelihoodMonitor,
    should_stop,
    STOP_DECREASE,
    STOP_MAX_ITER,
    STOP_TOLERANCE,
)


def test_should_stop_needs_history():
    assert not should_stop([-10.0], 0, 5, 1e-4)
    # Tolerance is only checked from the second iteration on
    assert not should_stop([-10.0, -9.99999], 1, 5, 1e-4)


def test_should_stop_on_tolerance():
    assert should_stop([-10.0, -5.0, -4.99999], 2, 5, 1e-4)
    assert not should_stop([-10.0, -5.0, -4.0], 2, 5, 1e-4)


def test_should_stop_on_max_iter():
    assert should_stop([-10.0, -5.0], 5, 5, 1e-4)


def test_should_stop_warns_on_decrease():
    with pytest.warns(ConvergenceWarning, match="decreased"):
        assert should_stop([-5.0, -6.0], 3, 10, 1e-4)


def test_should_stop_ignores_noise_decrease():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert should_stop([-5.0, -5.0 - 1e-12], 3, 10, 1e-4)


def test_monitor_tolerance():
    monitor = LogLikelihoodMonitor(convergence_threshold=1e-4, max_iterations=10)
    monitor.start(-10.0)
    assert not monitor.check_convergence(-5.0)
    assert monitor.check_convergence(-4.99999)

    stats = monitor.get_convergence_stats()
    assert stats['stop_reason'] == STOP_TOLERANCE
    assert stats['converged'] is True
    assert stats['num_iterations'] == 2
    assert stats['loglik_history'] == [-10.0, -5.0, -4.99999]
    assert stats['warnings'] == []


def test_monitor_max_iterations_warns():
    monitor = LogLikelihoodMonitor(convergence_threshold=1e-4, max_iterations=3)
    monitor.start(-10.0)
    assert not monitor.check_convergence(-5.0)
    assert not monitor.check_convergence(-4.0)
    with pytest.warns(ConvergenceWarning, match="maximum iterations"):
        assert monitor.check_convergence(-3.5)

    assert monitor.stop_reason == STOP_MAX_ITER
    assert not monitor.converged
    assert len(monitor.warnings) == 1


def test_monitor_decrease():
    monitor = LogLikelihoodMonitor(convergence_threshold=1e-4, max_iterations=10)
    monitor.start(-5.0)
    with pytest.warns(ConvergenceWarning):
        assert monitor.check_convergence(-6.0)
    assert monitor.stop_reason == STOP_DECREASE
    assert not monitor.converged
    assert 'decreased' in monitor.warnings[0]


def test_monitor_verbose(capsys):
    monitor = LogLikelihoodMonitor(convergence_threshold=1e-4, max_iterations=10, verbose=True)
    monitor.start(-10.0)
    monitor.check_convergence(-5.0)
    assert "Iteration 1" in capsys.readouterr().out


def test_monitor_invalid_arguments():
    with pytest.raises(ValueError):
        LogLikelihoodMonitor(max_iterations=0)
    with pytest.raises(ValueError):
        LogLikelihoodMonitor(convergence_threshold=0)
