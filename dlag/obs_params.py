# -*- coding: utf-8 -*-
"""
Observation Model M-step
========================

Closed-form update of C, d and R.

The unitary FFT preserves inner products (Parseval), so the time-domain
sufficient statistics of factor-analysis style regression can be read off
the spectra directly:

    sum_t E[x_t x_t^T] = Re sum_k (Sigma_k + mu_k mu_k^H)
    sum_t E[x_t]       = sqrt(T) Re mu_0
    sum_t y_t E[x_t]^T = Re sum_k y_k mu_k^H
    sum_t y_t          = sqrt(T) Re y_0
    sum_t y_t^2        = sum_k |y_k|^2

Each group's rows of C only load onto that group's latents, so the
regression runs once per group.
"""

import numpy as np
from scipy import linalg

from .dlag_utils import group_obs_indices, latent_indices


def learn_obs_params(seqs, params, xspec, var_floor):
    """
    Parameters
    ----------
    seqs : List[Sequence]
        Trials after the E-step.
    params : DLAG_params
        Current parameters (only dimensions are used).
    xspec : Dict[int, SpectralPosterior]
    var_floor : np.ndarray
        (y_dim,) lower bound for the diagonal of R.

    Returns
    -------
    res : dict
        'C' : (y_dim, total_latent_dim) block-diagonal loading matrix
        'd' : (y_dim,) observation mean
        'R' : (y_dim, y_dim) diagonal observation noise covariance
    """
    y_dim = params.y_dim
    p = params.total_latent_dim
    var_floor = np.asarray(var_floor, dtype=float)
    assert var_floor.shape == (y_dim,), (
        "var_floor has shape %s but expected (%d,)" % (var_floor.shape, y_dim)
    )

    # === Sufficient statistics over the full latent vector ===
    sum_p_auto = np.zeros((p, p))
    sum_x = np.zeros(p)
    sum_yx = np.zeros((y_dim, p))
    sum_y = np.zeros(y_dim)
    sum_yy = np.zeros(y_dim)
    n_total = 0

    for T, posterior in xspec.items():
        sum_p_auto += posterior.num_trials * np.sum(posterior.sigma, axis=0).real

    for seq in seqs:
        mu = seq.x_fft
        sum_p_auto += (mu @ np.conj(mu).T).real
        sum_x += np.sqrt(seq.T) * mu[:, 0].real
        sum_yx += (seq.y_fft @ np.conj(mu).T).real
        sum_y += np.sqrt(seq.T) * seq.y_fft[:, 0].real
        sum_yy += np.sum(np.abs(seq.y_fft) ** 2, axis=1)
        n_total += seq.T

    # === Per-group regression of y on [x; 1] ===
    C = np.zeros((y_dim, p))
    d = np.zeros(y_dim)
    r = np.zeros(y_dim)

    across_idx, within_idx = latent_indices(params.x_dim_across, params.x_dim_within)
    obs_idx = group_obs_indices(params.y_dims)

    for m in range(params.num_groups):
        lat = np.concatenate([across_idx[m], within_idx[m]]).astype(int)
        obs = obs_idx[m]
        q = len(lat)

        # term is (q+1) x (q+1)
        term = np.zeros((q + 1, q + 1))
        term[:q, :q] = sum_p_auto[np.ix_(lat, lat)]
        term[:q, q] = sum_x[lat]
        term[q, :q] = sum_x[lat]
        term[q, q] = n_total

        # y_dim_m x (q+1)
        yx_aug = np.hstack([sum_yx[np.ix_(obs, lat)], sum_y[obs][:, np.newaxis]])
        cd = linalg.solve(term, yx_aug.T, assume_a='sym').T

        C[np.ix_(obs, lat)] = cd[:, :q]
        d[obs] = cd[:, q]
        r[obs] = (sum_yy[obs] - np.sum(cd * yx_aug, axis=1)) / n_total

    # Set minimum private variance
    r = np.maximum(var_floor, r)

    return {'C': C, 'd': d, 'R': np.diag(r)}
