# -*- coding: utf-8 -*-
"""
DLAG Configuration
==================

Configuration dataclass for frequency-domain DLAG fitting.
"""

from dataclasses import dataclass, field, fields
from typing import Optional


@dataclass
class DLAG_config:
    """
    Configuration for the frequency-domain DLAG EM algorithm.

    Parameters
    ----------
    max_iters : int
        Number of EM iterations to run (default: 1e6, effectively unbounded)
    tol_ll : float
        Stopping criterion #1, based on the relative change of the data
        log-likelihood (default: 1e-8)
    tol_param : float, optional
        Stopping criterion #2: stop when across-group delays AND timescales
        stop changing between checkpoints. None disables it (default: None)
    freq_ll : int
        The data log-likelihood is computed every freq_ll iterations.
        freq_ll = 1 computes it every iteration (default: 10)
    freq_param : int
        Store delays, timescales and center frequencies, and check for
        parameter convergence, every freq_param iterations (default: 100)

    verbose : int
        Verbosity level: 0=silent, 1=progress bar, 2=detailed (default: 1)
    parallelize : bool
        Set when many fits run side by side. Only suppresses the
        per-iteration output (default: False)

    max_delay_frac : float
        Delays are constrained to be no more than this fraction of the
        shortest trial length (default: 0.5)
    min_var_frac : float
        Private variance floor for the observation noise, as a fraction of
        each observed dimension's variance (default: 0.01)
    max_tau_frac : float
        Timescales are constrained to be no more than this fraction of the
        shortest trial length (default: 1.0)

    learn_delays : bool
        If False, delays stay fixed at their initial value (default: True)
    learn_obs : bool
        If False, C, d and R stay fixed at their initial value (default: True)
    learn_kernel_params : bool
        If False, GP kernel parameters and delays are not updated
        (default: True)
    learn_gp_noise : bool
        Request GP noise variance learning. Currently unsupported: a warning
        is issued and eps is never updated (default: False)
    gp_max_iters : int
        Max L-BFGS-B iterations per latent in each kernel M-step (default: 10)

    on_ll_decrease : str
        What to do when the data likelihood decreases: 'warn' records it and
        keeps iterating, 'halt' stops fitting (default: 'warn')
    seed : int
        Seed for the random redraws of out-of-range delays (default: 0)
    tracked_params : FitHistory, optional
        History of a previous fit. When given, fitting resumes where that
        fit left off (default: None)

    Examples
    --------
    >>> config = DLAG_config(max_iters=200, freq_ll=1, tol_ll=1e-6)
    >>> config = DLAG_config(learn_delays=False, verbose=0)
    """

    # === Iterations and stopping ===
    max_iters: int = 1000000  # Stop after this many EM iterations even if not converged
    tol_ll: float = 1e-8  # Relative LL change below which fitting has converged
    tol_param: Optional[float] = None  # Max abs change in delays/timescales for convergence. None = off
    freq_ll: int = 10  # Compute the (expensive) likelihood every freq_ll iterations
    freq_param: int = 100  # Checkpoint delays/timescales every freq_param iterations

    # === Verbosity ===
    verbose: int = 1  # 0 = silent, 1 = progress bar, 2 = detailed messages
    parallelize: bool = False  # Suppress per-iteration output when running many fits at once

    # === Constraints ===
    max_delay_frac: float = 0.5  # |delay| must stay below this fraction of the shortest trial
    min_var_frac: float = 0.01  # Observation noise floor, as a fraction of the data variance
    max_tau_frac: float = 1.0  # Timescales must stay below this fraction of the shortest trial

    # === What to learn ===
    learn_delays: bool = True
    learn_obs: bool = True
    learn_kernel_params: bool = True
    learn_gp_noise: bool = False  # NOTE: unsupported, eps is never updated
    gp_max_iters: int = 10  # L-BFGS-B iterations per latent, per EM iteration

    # === Misc ===
    on_ll_decrease: str = 'warn'  # 'warn' = record and continue, 'halt' = stop fitting
    seed: int = 0
    tracked_params: Optional[object] = field(default=None, repr=False)  # FitHistory, avoid circular import

    def __post_init__(self):
        """Validate configuration parameters."""
        assert isinstance(self.max_iters, int), "max_iters must be int, got %s" % type(self.max_iters).__name__
        assert self.max_iters >= 1, "max_iters must be >= 1, got %d" % self.max_iters

        assert isinstance(self.tol_ll, (int, float)), "tol_ll must be numeric, got %s" % type(self.tol_ll).__name__
        assert self.tol_ll >= 0, "tol_ll must be >= 0, got %s" % self.tol_ll

        if self.tol_param is not None:
            assert isinstance(self.tol_param, (int, float)), "tol_param must be numeric or None, got %s" % type(self.tol_param).__name__
            assert self.tol_param > 0, "tol_param must be > 0, got %s" % self.tol_param

        assert isinstance(self.freq_ll, int) and self.freq_ll >= 1, "freq_ll must be int >= 1, got %s" % self.freq_ll
        assert isinstance(self.freq_param, int) and self.freq_param >= 1, "freq_param must be int >= 1, got %s" % self.freq_param

        assert self.verbose in [0, 1, 2], "verbose must be 0, 1, or 2, got %s" % self.verbose

        assert 0 < self.max_delay_frac <= 1, "max_delay_frac must be in (0, 1], got %s" % self.max_delay_frac
        assert 0 < self.max_tau_frac <= 1, "max_tau_frac must be in (0, 1], got %s" % self.max_tau_frac
        assert 0 <= self.min_var_frac < 1, "min_var_frac must be in [0, 1), got %s" % self.min_var_frac

        assert isinstance(self.gp_max_iters, int) and self.gp_max_iters >= 1, "gp_max_iters must be int >= 1, got %s" % self.gp_max_iters

        assert self.on_ll_decrease in ['warn', 'halt'], "on_ll_decrease must be 'warn' or 'halt', got '%s'" % self.on_ll_decrease

    def copy(self):
        """Return a deep copy of this config."""
        import copy
        return copy.deepcopy(self)

    def to_dict(self):
        """
        Convert config to a dictionary.

        tracked_params is kept as the history object, not flattened.
        """
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d):
        """Create config from a dictionary."""
        return cls(**d)
