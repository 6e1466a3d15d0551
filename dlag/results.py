# -*- coding: utf-8 -*-
"""
DLAG Results
============

Fit history, termination status and results of frequency-domain DLAG
fitting.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np


class FitStatus(Enum):
    """State of a fitting session."""
    RUNNING = 'running'
    CONVERGED_BY_LIKELIHOOD = 'converged_by_likelihood'
    CONVERGED_BY_PARAMETERS = 'converged_by_parameters'
    MAX_ITERS_REACHED = 'max_iters_reached'
    LIKELIHOOD_DECREASED = 'likelihood_decreased'  # terminal only with on_ll_decrease='halt'


def _max_abs_change(new, old):
    new = np.asarray(new, dtype=float)
    old = np.asarray(old, dtype=float)
    if new.size == 0:
        return None
    return float(np.max(np.abs(new - old)))


@dataclass
class FitHistory:
    """
    Progress tracked throughout fitting. Useful for debugging, and for
    resuming a fit where it left off (see DLAG_config.tracked_params).

    Attributes
    ----------
    log_likelihood : List[Optional[float]]
        Data log-likelihood after each EM iteration; None where it was not
        evaluated.
    iteration_time : List[float]
        Computation time (seconds) of each EM iteration.
    delay_matrix : List[np.ndarray]
        Delay matrix at the start of fitting and at each checkpoint.
    gamma_across : List[np.ndarray]
        Across-group gamma at the start of fitting and at each checkpoint.
    gamma_within : List[List[np.ndarray]]
        gamma_within[m] lists group m's within-group gamma at the start and
        at each checkpoint.
    nu_across : List[np.ndarray]
        Across-group center frequencies (spectral Gaussian only).
    nu_within : List[List[np.ndarray]]
        Within-group center frequencies (spectral Gaussian only).
    ll_decreases : List[int]
        Iterations (1-based) on which the data likelihood decreased.
    unscheduled_ll : List[int]
        Iterations whose LL was evaluated only because fitting stopped there
        (max_iters), not because freq_ll called for it.
    unscheduled_checkpoint : bool
        True if the last checkpoint was recorded only because fitting stopped.
    """
    log_likelihood: List[Optional[float]] = field(default_factory=list)
    iteration_time: List[float] = field(default_factory=list)
    delay_matrix: List[np.ndarray] = field(default_factory=list)
    gamma_across: List[np.ndarray] = field(default_factory=list)
    gamma_within: List[List[np.ndarray]] = field(default_factory=list)
    nu_across: List[np.ndarray] = field(default_factory=list)
    nu_within: List[List[np.ndarray]] = field(default_factory=list)
    ll_decreases: List[int] = field(default_factory=list)
    unscheduled_ll: List[int] = field(default_factory=list)
    unscheduled_checkpoint: bool = False

    @classmethod
    def start(cls, params):
        """Fresh history seeded with the starting parameters."""
        history = cls(gamma_within=[[] for _ in range(params.num_groups)],
                      nu_within=[[] for _ in range(params.num_groups)])
        history.record_checkpoint(params)
        return history

    @property
    def n_iterations(self):
        return len(self.log_likelihood)

    def record_checkpoint(self, params):
        """Append snapshots of delays, timescales and center frequencies."""
        self.delay_matrix.append(params.delay_matrix.copy())
        self.gamma_across.append(params.across.gamma.copy())
        if params.across.nu is not None:
            self.nu_across.append(params.across.nu.copy())
        for m, gp in enumerate(params.within):
            self.gamma_within[m].append(gp.gamma.copy())
            if gp.nu is not None:
                self.nu_within[m].append(gp.nu.copy())

    def checkpoint_deltas(self):
        """
        Change between the two most recent checkpoints.

        Returns
        -------
        delta_delay : float or None
            Max absolute change in the delay matrix.
        delta_gamma_across : float or None
            Max absolute change in across-group gamma.

        Both are None when fewer than two checkpoints exist or there are no
        across-group latents.
        """
        if len(self.delay_matrix) < 2 or len(self.gamma_across) < 2:
            return None, None
        delta_delay = _max_abs_change(self.delay_matrix[-1], self.delay_matrix[-2])
        delta_gamma = _max_abs_change(self.gamma_across[-1], self.gamma_across[-2])
        if delta_delay is None or delta_gamma is None:
            return None, None
        return delta_delay, delta_gamma

    def last_evaluated_ll(self):
        """Most recent log-likelihood that was actually computed, or None."""
        for ll in reversed(self.log_likelihood):
            if ll is not None:
                return ll
        return None

    def base_ll(self):
        """Log-likelihood at iteration 2, the baseline for the LL criterion."""
        if len(self.log_likelihood) < 2:
            return None
        return self.log_likelihood[1]

    def evaluated_ll(self):
        """
        Returns
        -------
        iterations : np.ndarray
            1-based iteration numbers at which the LL was computed.
        values : np.ndarray
        """
        pairs = [(i + 1, ll) for i, ll in enumerate(self.log_likelihood) if ll is not None]
        if not pairs:
            return np.zeros(0, dtype=int), np.zeros(0)
        iterations, values = zip(*pairs)
        return np.array(iterations, dtype=int), np.array(values, dtype=float)

    def copy(self):
        return copy.deepcopy(self)

    def for_resume(self):
        """
        Copy of this history as an uninterrupted fit would have it.

        LL evaluations, likelihood-decrease flags and the checkpoint that
        were made only because the earlier fit stopped are removed, so a
        resumed fit continues on exactly the schedule of a single long fit.
        """
        history = self.copy()
        for i in history.unscheduled_ll:
            history.log_likelihood[i - 1] = None
        history.ll_decreases = [i for i in history.ll_decreases if i not in history.unscheduled_ll]
        history.unscheduled_ll = []

        if history.unscheduled_checkpoint:
            history.delay_matrix.pop()
            history.gamma_across.pop()
            if history.nu_across:
                history.nu_across.pop()
            for group in history.gamma_within + history.nu_within:
                if group:
                    group.pop()
            history.unscheduled_checkpoint = False
        return history

    def to_dict(self):
        return {
            'log_likelihood': list(self.log_likelihood),
            'iteration_time': list(self.iteration_time),
            'delay_matrix': [D.copy() for D in self.delay_matrix],
            'gamma_across': [g.copy() for g in self.gamma_across],
            'gamma_within': [[g.copy() for g in group] for group in self.gamma_within],
            'nu_across': [n.copy() for n in self.nu_across],
            'nu_within': [[n.copy() for n in group] for group in self.nu_within],
            'll_decreases': list(self.ll_decreases),
            'unscheduled_ll': list(self.unscheduled_ll),
            'unscheduled_checkpoint': self.unscheduled_checkpoint,
        }

    @classmethod
    def from_dict(cls, d):
        return cls(**copy.deepcopy(d))


@dataclass
class DLAG_result:
    """
    Results from frequency-domain DLAG fitting.

    Attributes
    ----------
    params : DLAG_params
        Estimated parameters.
    seqs : List[Sequence]
        Trials with posterior means (x_fft, x_mean) from the last E-step.
    xspec : Dict[int, SpectralPosterior]
        Posterior covariance per frequency, one entry per distinct trial length.
    history : FitHistory
        Likelihood, timing and parameter traces.
    status : FitStatus
        Why fitting stopped.
    likelihood_decreased : bool
        True if the data likelihood decreased at least once during fitting.
    message : str
        Human-readable reason for stopping.
    n_iterations : int
        Total number of EM iterations, including those of a resumed fit.
    config : DLAG_config

    Examples
    --------
    >>> result = model.fit(params, seqs)
    >>> print(result.message)
    >>> result.history.evaluated_ll()
    """
    params: object
    seqs: List
    xspec: Dict
    history: FitHistory
    status: FitStatus
    likelihood_decreased: bool
    message: str
    n_iterations: int
    config: object = None

    def __post_init__(self):
        assert isinstance(self.status, FitStatus), (
            "status must be FitStatus, got %s" % type(self.status).__name__
        )
        assert self.status is not FitStatus.RUNNING, "A finished fit cannot have status RUNNING"
        assert self.n_iterations == self.history.n_iterations, (
            "n_iterations (%d) must match the length of the likelihood trace (%d)"
            % (self.n_iterations, self.history.n_iterations)
        )

    @property
    def converged(self):
        return self.status in (FitStatus.CONVERGED_BY_LIKELIHOOD, FitStatus.CONVERGED_BY_PARAMETERS)

    @property
    def final_ll(self):
        return self.history.last_evaluated_ll()

    def summary(self):
        """Print a summary of the results."""
        tau_across, tau_within = self.params.timescales()
        print("=" * 50)
        print("DLAG Fitting Results")
        print("=" * 50)
        print("Status: %s" % self.status.value)
        print("Message: %s" % self.message)
        print("Iterations: %d" % self.n_iterations)
        if self.final_ll is not None:
            print("Final LL: %.6f" % self.final_ll)
        print("Likelihood decreased: %s" % self.likelihood_decreased)
        print("-" * 50)
        print("Covariance type: %s" % self.params.cov_type.value)
        print("y_dims: %s" % self.params.y_dims.tolist())
        print("x_dim_across: %d" % self.params.x_dim_across)
        print("x_dim_within: %s" % self.params.x_dim_within.tolist())
        print("Number of trials: %d" % len(self.seqs))
        print("Trial lengths: %s" % sorted(self.xspec.keys()))
        print("-" * 50)
        print("Across-group timescales (steps): %s" % np.round(tau_across, 3).tolist())
        print("Delays (steps):\n%s" % np.round(self.params.delay_matrix, 3))
        for m, tau in enumerate(tau_within):
            print("Within-group timescales, group %d (steps): %s" % (m, np.round(tau, 3).tolist()))
        print("=" * 50)
