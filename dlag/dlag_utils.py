# -*- coding: utf-8 -*-
"""
DLAG Utilities
==============

Trial containers, frequency-domain helpers, latent index bookkeeping and
the range constraints applied to delays and timescales.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class Sequence:
    """
    A single trial.

    Attributes
    ----------
    trial_id : int
        Unique trial identifier.
    T : int
        Number of time steps.
    y_fft : np.ndarray
        (y_dim, T) unitary FFT of the observed data.
    x_fft : np.ndarray, optional
        (total_latent_dim, T) posterior mean at each frequency. Set by the E-step.
    x_mean : np.ndarray, optional
        (total_latent_dim, T) posterior mean at each time point. Set by the E-step.
    spectral_posterior : SpectralPosterior, optional
        Posterior covariance shared by all trials of length T. Set by the E-step.
    """
    trial_id: int
    T: int
    y_fft: np.ndarray
    x_fft: Optional[np.ndarray] = None
    x_mean: Optional[np.ndarray] = None
    spectral_posterior: Optional[object] = None


def unitary_fft(y):
    """Unitary FFT along time (axis 1)."""
    return np.fft.fft(y, axis=1) / np.sqrt(y.shape[1])


def unitary_ifft(y_fft):
    """Inverse of unitary_fft."""
    return np.fft.ifft(y_fft, axis=1) * np.sqrt(y_fft.shape[1])


def make_sequences(y_list, trial_ids=None) -> List[Sequence]:
    """
    Build sequences from time-domain data.

    Parameters
    ----------
    y_list : np.ndarray or List[np.ndarray]
        One (y_dim, T) array, or a list of (y_dim, T_n) arrays.
    trial_ids : list of int, optional
        Defaults to 0, 1, 2, ...

    Returns
    -------
    seqs : List[Sequence]
    """
    if isinstance(y_list, np.ndarray):
        y_list = [y_list]
    assert isinstance(y_list, list) and len(y_list) > 0, "y_list must be a non-empty list of arrays"
    if trial_ids is None:
        trial_ids = list(range(len(y_list)))
    assert len(trial_ids) == len(y_list), (
        "Got %d trial_ids for %d trials" % (len(trial_ids), len(y_list))
    )

    seqs = []
    for trial_id, y in zip(trial_ids, y_list):
        y = np.asarray(y, dtype=float)
        assert y.ndim == 2, "Each trial must be 2D (y_dim, T), got shape %s" % (y.shape,)
        seqs.append(Sequence(trial_id=trial_id, T=y.shape[1], y_fft=unitary_fft(y)))
    return seqs


def validate_sequences(seqs, y_dim):
    """
    Check that sequences are usable with a model of dimension y_dim.

    Raises
    ------
    ValueError
        If the list is empty or a trial has the wrong shape.
    """
    if len(seqs) == 0:
        raise ValueError("seqs must contain at least one trial")
    for n, seq in enumerate(seqs):
        if seq.y_fft.shape != (y_dim, seq.T):
            raise ValueError(
                "seqs[%d].y_fft has shape %s but expected (sum(y_dims)=%d, T=%d)"
                % (n, seq.y_fft.shape, y_dim, seq.T)
            )


def angular_frequencies(T):
    """Angular frequency (radians per time step) of each FFT bin."""
    return 2 * np.pi * np.fft.fftfreq(T)


def group_trials_by_length(seqs):
    """
    Returns
    -------
    groups : dict
        T -> list of indices into seqs, in increasing order of T.
    """
    groups = {}
    for n, seq in enumerate(seqs):
        groups.setdefault(seq.T, []).append(n)
    return {T: groups[T] for T in sorted(groups)}


# =============================================================================
# Latent index bookkeeping
# =============================================================================

def group_offsets(x_dim_across, x_dim_within):
    """Index of the first latent of each group's block in the full latent vector."""
    block_sizes = x_dim_across + np.asarray(x_dim_within, dtype=int)
    return np.concatenate([[0], np.cumsum(block_sizes)[:-1]]).astype(int)


def latent_indices(x_dim_across, x_dim_within) -> Tuple[np.ndarray, List[np.ndarray]]:
    """
    Locate across- and within-group latents in the full latent vector.

    Returns
    -------
    across_idx : np.ndarray
        (num_groups, x_dim_across); across_idx[m, j] is the index of group
        m's (delayed) copy of across-group latent j.
    within_idx : List[np.ndarray]
        within_idx[m] holds the indices of group m's within-group latents.
    """
    offsets = group_offsets(x_dim_across, x_dim_within)
    across_idx = offsets[:, np.newaxis] + np.arange(x_dim_across)[np.newaxis, :]
    within_idx = [
        offset + x_dim_across + np.arange(x_dim)
        for offset, x_dim in zip(offsets, x_dim_within)
    ]
    return across_idx.astype(int), within_idx


def group_obs_indices(y_dims):
    """Row indices of each observed group."""
    bounds = np.concatenate([[0], np.cumsum(y_dims)]).astype(int)
    return [np.arange(bounds[m], bounds[m + 1]) for m in range(len(y_dims))]


# =============================================================================
# Variance floor
# =============================================================================

def compute_var_floor(seqs, min_var_frac):
    """
    Private variance floor for the observation noise.

    The marginal variance of each observed dimension (pooled over all time
    points of all trials) is recovered from the spectra via Parseval, with
    the same N - 1 normalization as np.cov.

    Returns
    -------
    var_floor : np.ndarray
        (y_dim,) minimum allowed value for each diagonal entry of R.
    """
    y_dim = seqs[0].y_fft.shape[0]
    n_total = 0
    sum_y = np.zeros(y_dim)
    sum_yy = np.zeros(y_dim)
    for seq in seqs:
        n_total += seq.T
        sum_y += np.sqrt(seq.T) * seq.y_fft[:, 0].real
        sum_yy += np.sum(np.abs(seq.y_fft) ** 2, axis=1)

    if n_total < 2:
        return np.zeros(y_dim)

    mean_y = sum_y / n_total
    var_y = (sum_yy - n_total * mean_y ** 2) / (n_total - 1)
    return min_var_frac * np.maximum(var_y, 0.0)


# =============================================================================
# Range constraints
# =============================================================================

def enforce_delay_bounds(delay_matrix, max_delay, rng):
    """
    Replace delays with |delay| >= max_delay by independent draws from U[0, 1).

    Entries strictly inside (-max_delay, max_delay) are left untouched.

    Returns
    -------
    delay_matrix : np.ndarray
        Corrected copy.
    n_replaced : int
    """
    delay_matrix = np.array(delay_matrix, dtype=float, copy=True)
    out_of_range = np.abs(delay_matrix) >= max_delay
    n_replaced = int(np.sum(out_of_range))
    if n_replaced > 0:
        delay_matrix[out_of_range] = rng.uniform(0.0, 1.0, size=n_replaced)
    return delay_matrix, n_replaced


def enforce_timescale_bounds(gamma, min_gamma):
    """
    Keep timescales below their maximum by flooring gamma at min_gamma.

    Returns
    -------
    gamma : np.ndarray
        Corrected copy.
    n_clamped : int
    """
    gamma = np.array(gamma, dtype=float, copy=True)
    too_long = gamma < min_gamma
    gamma[too_long] = min_gamma
    return gamma, int(np.sum(too_long))
