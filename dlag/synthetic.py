# -*- coding: utf-8 -*-
"""
Synthetic DLAG data.
"""
import numpy as np

from .dlag_utils import group_obs_indices, latent_indices, make_sequences
from .params import CovType


def _kernel(cov_type, lags, gamma, eps, nu=None):
    """Time-domain GP kernel evaluated at a matrix of lags (time steps)."""
    k = np.exp(-gamma * lags ** 2 / 2)
    if cov_type is CovType.SG:
        k = k * np.cos(2 * np.pi * nu * lags)
    elif cov_type is not CovType.RBF:
        raise ValueError("Unknown covariance type %r" % (cov_type,))
    return (1 - eps) * k + eps * (lags == 0)


def _sample(K, size, rng):
    # Tiny jitter keeps the Cholesky factorization stable for long timescales
    L = np.linalg.cholesky(K + 1e-9 * np.eye(K.shape[0]))
    return L @ rng.standard_normal((K.shape[0], size))


def simulate_data_dlag(params, num_trials=20, T=50, seed=0):
    """
    Generate synthetic data from a DLAG model.

    Across-group latent j is sampled jointly for all groups, group m seeing
    it delayed by delay_matrix[m, j] time steps; each copy receives its own
    white noise of variance eps.

    Parameters
    ----------
    params : DLAG_params
    num_trials : int
    T : int or list of int
        Trial length, shared or per trial.
    seed : int

    Returns
    -------
    seqs : List[Sequence]
        Trials with y_fft (unitary FFT of the observations).
    latents : List[np.ndarray]
        Per trial, (total_latent_dim, T) latent trajectories.
    """
    assert isinstance(num_trials, int) and num_trials >= 1, "num_trials must be int >= 1, got %s" % num_trials
    params.validate()
    lengths = [T] * num_trials if np.isscalar(T) else list(T)
    assert len(lengths) == num_trials, "Got %d trial lengths for %d trials" % (len(lengths), num_trials)

    rng = np.random.default_rng(seed)
    num_groups = params.num_groups
    across_idx, within_idx = latent_indices(params.x_dim_across, params.x_dim_within)
    obs_idx = group_obs_indices(params.y_dims)
    r_std = np.sqrt(np.diag(params.R))

    y_list, latents = [], []
    for T_n in lengths:
        t = np.arange(T_n)
        x = np.zeros((params.total_latent_dim, T_n))

        for j in range(params.x_dim_across):
            # Delayed time points of every group, stacked: (num_groups * T,)
            times = (t[np.newaxis, :] - params.delay_matrix[:, j][:, np.newaxis]).ravel()
            group_of = np.repeat(np.arange(num_groups), T_n)
            lags = times[:, np.newaxis] - times[np.newaxis, :]
            nu = None if params.across.nu is None else params.across.nu[j]
            K = _kernel(params.cov_type, lags, params.across.gamma[j], 0.0, nu)
            K = (1 - params.across.eps[j]) * K
            K += params.across.eps[j] * np.eye(K.shape[0])
            z = _sample(K, 1, rng).ravel()
            for m in range(num_groups):
                x[across_idx[m, j]] = z[group_of == m]

        for m, gp in enumerate(params.within):
            lags = t[:, np.newaxis] - t[np.newaxis, :]
            for i in range(gp.x_dim):
                nu = None if gp.nu is None else gp.nu[i]
                K = _kernel(params.cov_type, lags, gp.gamma[i], gp.eps[i], nu)
                x[within_idx[m][i]] = _sample(K, 1, rng).ravel()

        y = params.C @ x + params.d[:, np.newaxis] \
            + r_std[:, np.newaxis] * rng.standard_normal((params.y_dim, T_n))
        assert not np.isnan(y).any(), "y contains NaN"
        y_list.append(y)
        latents.append(x)

    return make_sequences(y_list), latents
