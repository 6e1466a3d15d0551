# -*- coding: utf-8 -*-
"""
DLAG Parameter Generation
=========================

Random DLAG parameters within user-specified bounds. Useful as a starting
point for EM and for generating synthetic data.
"""

import numpy as np
from scipy import linalg

from .params import CovType, DLAG_params, GP_params


def generate_pcca_params(y_dim, x_dim, snr, rng, centered=False):
    """
    Random observation model for one group.

    Parameters
    ----------
    y_dim : int
        Observed dimensionality of the group.
    x_dim : int
        Number of latents loading onto the group.
    snr : float
        Signal-to-noise ratio, trace(C C^T) / trace(R).
    rng : np.random.Generator
    centered : bool
        If True, the mean d is zero.

    Returns
    -------
    C : np.ndarray
        (y_dim, x_dim)
    R : np.ndarray
        (y_dim, y_dim) diagonal
    d : np.ndarray
        (y_dim,)
    """
    assert y_dim >= 1, "y_dim must be >= 1, got %d" % y_dim
    assert snr > 0, "snr must be > 0, got %s" % snr

    r = rng.uniform(0.5, 1.5, size=y_dim)
    C = rng.standard_normal((y_dim, x_dim))
    if x_dim > 0:
        C *= np.sqrt(snr * np.sum(r) / np.sum(C ** 2))
    d = np.zeros(y_dim) if centered else rng.standard_normal(y_dim)
    return C, np.diag(r), d


def generate_params_dlag(y_dims, x_dim_across, x_dim_within, bin_width, snr,
                         cov_type, param_lims, seed=0):
    """
    Randomly generate DLAG model parameters within specified constraints.

    Parameters
    ----------
    y_dims : array-like of int
        Dimensionality of each observed group.
    x_dim_across : int
        Number of across-group latents.
    x_dim_within : array-like of int
        Number of within-group latents in each group.
    bin_width : float
        Sample period (in units of time). Uniform sampling is assumed.
    snr : array-like of float
        Signal-to-noise ratio of each group, trace(C C^T) / trace(R).
    cov_type : CovType or str
        'rbf' or 'sg'.
    param_lims : dict
        Lower and upper bounds, in units of time:
        - 'tau_lim'   : GP timescales
        - 'eps_lim'   : GP noise variances (sampled on a log scale)
        - 'delay_lim' : delays of the non-reference groups
        - 'nu_lim'    : center frequencies, in 1/time (for 'sg')
    seed : int

    Returns
    -------
    params : DLAG_params
        Timescales, delays and center frequencies are converted to
        time-step units: gamma = (bin_width / tau)^2, delays / bin_width,
        nu * bin_width.

    Examples
    --------
    >>> params = generate_params_dlag(
    ...     y_dims=[10, 12], x_dim_across=2, x_dim_within=[1, 1],
    ...     bin_width=20, snr=[1.0, 1.0], cov_type='rbf',
    ...     param_lims={'tau_lim': [20, 100], 'eps_lim': [1e-5, 1e-3],
    ...                 'delay_lim': [-50, 50]})
    """
    cov_type = CovType.parse(cov_type)
    y_dims = np.asarray(y_dims, dtype=int).ravel()
    x_dim_within = np.asarray(x_dim_within, dtype=int).ravel()
    snr = np.broadcast_to(np.asarray(snr, dtype=float), y_dims.shape)
    num_groups = len(y_dims)

    assert len(x_dim_within) == num_groups, (
        "x_dim_within has %d entries but y_dims has %d" % (len(x_dim_within), num_groups)
    )
    for key in ['tau_lim', 'eps_lim', 'delay_lim'] + (['nu_lim'] if cov_type is CovType.SG else []):
        if key not in param_lims:
            raise KeyError(
                "param_lims must contain '%s' for covType '%s'. Got keys: %s"
                % (key, cov_type.value, list(param_lims.keys()))
            )

    rng = np.random.default_rng(seed)
    min_tau, max_tau = param_lims['tau_lim']
    min_eps, max_eps = param_lims['eps_lim']
    min_delay, max_delay = param_lims['delay_lim']
    if cov_type is CovType.SG:
        min_nu, max_nu = param_lims['nu_lim']

    def _sample_gp(x_dim):
        taus = min_tau + (max_tau - min_tau) * rng.random(x_dim)
        # Deal with noise variances on a log scale
        eps = np.exp(np.log(min_eps) + (np.log(max_eps) - np.log(min_eps)) * rng.random(x_dim))
        nu = None
        if cov_type is CovType.SG:
            nu = (min_nu + (max_nu - min_nu) * rng.random(x_dim)) * bin_width
        return GP_params(gamma=(bin_width / taus) ** 2, eps=eps, nu=nu)

    across = _sample_gp(x_dim_across)
    within = [_sample_gp(x_dim) for x_dim in x_dim_within]

    # Delays to the first group are 0 time steps
    delay_matrix = np.zeros((num_groups, x_dim_across))
    if x_dim_across > 0 and num_groups > 1:
        delay_matrix[1:] = min_delay + (max_delay - min_delay) * rng.random((num_groups - 1, x_dim_across))
    delay_matrix /= bin_width

    # Observation model, one block per group
    Cs, Rs, ds = [], [], []
    for m in range(num_groups):
        C, R, d = generate_pcca_params(y_dims[m], x_dim_across + x_dim_within[m], snr[m], rng)
        Cs.append(C)
        Rs.append(R)
        ds.append(d)

    params = DLAG_params(
        cov_type=cov_type,
        across=across,
        within=within,
        delay_matrix=delay_matrix,
        C=linalg.block_diag(*Cs),
        d=np.concatenate(ds),
        R=linalg.block_diag(*Rs),
        y_dims=y_dims,
        x_dim_across=x_dim_across,
        x_dim_within=x_dim_within,
    )
    return params.validate()
