# -*- coding: utf-8 -*-
"""
GP Kernel M-step
================

Gradient-based updates of GP kernel parameters (and across-group delays).

The expected complete-data log-likelihood of the latents separates over
latents, so each latent is optimized on its own. For one latent with M
copies (M = num_groups for across-group latents, M = 1 for within-group
latents), at frequency w_k the prior covariance of the copies is

    K_k = eps * I + a_k v_k v_k^H,   a_k = (1 - eps) s(w_k),   v_k[m] = exp(-i w_k D[m])

and the quantity minimized is

    f = 1/2 sum_k [ n_k log|K_k| + tr(K_k^{-1} S_k) ]
      = 1/2 sum_k [ n_k ((M - 1) log eps + log b_k) + (tr S_k - a_k q_k / b_k) / eps ]

with b_k = eps + M a_k, q_k = v_k^H S_k v_k, n_k the number of trials
contributing frequency k and S_k = sum over trials of E[x_k x_k^H].

Optimization variables: log(gamma), nu (spectral Gaussian only) and the
delays of the non-reference groups. GP noise variances (eps) are not
learned.
"""

import warnings

import numpy as np
from scipy import optimize

from .dlag_utils import angular_frequencies
from .params import CovType
from .spectral import smooth_spectrum_grad


def _moment_stats(view, rows):
    """
    Second moments of the selected rows of a LatentView, grouped by T.

    Returns
    -------
    stats : List[tuple]
        (omega, n_trials, S) per distinct T, with S of shape (T, M, M)
        summed over trials.
    """
    rows = np.asarray(rows, dtype=int)
    counts = view.num_trials_by_length()
    moments = {}
    for T, spec in view.spectra.items():
        if T not in counts:
            continue
        moments[T] = counts[T] * spec[:, rows[:, np.newaxis], rows[np.newaxis, :]]

    for T, x_fft in zip(view.trial_lengths, view.x_fft):
        mu = x_fft[rows, :].T  # (T, M)
        moments[T] = moments[T] + mu[:, :, np.newaxis] * np.conj(mu)[:, np.newaxis, :]

    return [(angular_frequencies(T), counts[T], S) for T, S in moments.items()]


def gp_objective(theta, stats, cov_type, eps, num_copies, fit_delays, delays):
    """
    Negative expected log-likelihood of one latent, and its gradient.

    Parameters
    ----------
    theta : np.ndarray
        [log(gamma), (nu if SG), (delays[1:] if fit_delays)]
    stats : List[tuple]
        Output of _moment_stats.
    cov_type : CovType
    eps : float
        GP noise variance (held fixed).
    num_copies : int
        M, the number of groups seeing this latent.
    fit_delays : bool
        If True, delays[1:] are read from theta.
    delays : np.ndarray
        (M,) delays, used as given when fit_delays is False.

    Returns
    -------
    f : float
    grad : np.ndarray
        Same shape as theta.
    """
    M = num_copies
    gamma = np.exp(theta[0])
    pos = 1
    nu = None
    if cov_type is CovType.SG:
        nu = theta[pos]
        pos += 1
    if fit_delays:
        delays = np.concatenate([[0.0], theta[pos:]])

    f = 0.0
    grad = np.zeros_like(theta)

    for omega, n_trials, S in stats:
        s, ds_dlog_gamma, ds_dnu = smooth_spectrum_grad(
            cov_type, omega, np.array([gamma]), None if nu is None else np.array([nu])
        )
        s = s[0]
        a = (1 - eps) * s
        b = eps + M * a

        v = np.exp(-1j * np.outer(omega, delays))        # (K, M)
        Sv = np.einsum('kmn,kn->km', S, v)               # (K, M)
        q = np.sum(np.conj(v) * Sv, axis=1).real         # (K,)
        trace_S = np.trace(S, axis1=1, axis2=2).real     # (K,)

        f += 0.5 * np.sum(
            n_trials * ((M - 1) * np.log(eps) + np.log(b)) + (trace_S - a * q / b) / eps
        )

        df_da = 0.5 * (n_trials * M / b - q / b ** 2)
        grad[0] += np.sum(df_da * (1 - eps) * ds_dlog_gamma[0])
        if cov_type is CovType.SG:
            grad[1] += np.sum(df_da * (1 - eps) * ds_dnu[0])
        if fit_delays:
            df_dq = -0.5 * a / (eps * b)
            dq_dD = -2 * omega[:, np.newaxis] * np.imag(np.conj(v) * Sv)  # (K, M)
            grad[pos:] += np.sum(df_dq[:, np.newaxis] * dq_dD, axis=0)[1:]

    return f, grad


def _optimize_latent(stats, cov_type, gamma, eps, nu, delays, fit_delays, max_iters):
    """Run L-BFGS-B for a single latent. Returns updated (gamma, nu, delays)."""
    theta0 = [np.log(gamma)]
    if cov_type is CovType.SG:
        theta0.append(nu)
    if fit_delays:
        theta0.extend(delays[1:])
    theta0 = np.asarray(theta0, dtype=float)

    res = optimize.minimize(
        gp_objective,
        theta0,
        args=(stats, cov_type, eps, len(delays), fit_delays, delays),
        method='L-BFGS-B',
        jac=True,
        options={'maxiter': max_iters}
    )

    theta = res.x
    if not np.all(np.isfinite(theta)):
        warnings.warn(
            "Non-finite GP parameters after optimization (%s). "
            "Keeping previous values for this latent." % theta
        )
        return gamma, nu, delays

    new_gamma = np.exp(theta[0])
    pos = 1
    new_nu = nu
    if cov_type is CovType.SG:
        new_nu = abs(theta[pos])  # Sign is not identifiable; keep positive for interpretability
        pos += 1
    new_delays = delays
    if fit_delays:
        new_delays = np.concatenate([[0.0], theta[pos:]])
    return new_gamma, new_nu, new_delays


def learn_gp_params_with_delays(across_view, params, learn_delays=True,
                                learn_gp_noise=False, max_iters=10):
    """
    Update across-group kernel parameters and delays.

    Parameters
    ----------
    across_view : LatentView
        Across-group view from partition_latents.
    params : DLAG_params
        Current parameters. Not modified.
    learn_delays : bool
        If False, delays are held fixed and only kernel parameters move.
    learn_gp_noise : bool
        Unsupported; eps is returned unchanged. DLAG_freq.fit warns once
        per fit when it is requested.
    max_iters : int
        Max L-BFGS-B iterations per latent.

    Returns
    -------
    res : dict
        'gamma', 'eps', 'nu' (None for RBF, non-negative for SG),
        'delay_matrix' (num_groups, x_dim_across).
    """
    cov_type = params.cov_type
    num_groups = params.num_groups
    x_dim_across = params.x_dim_across
    assert across_view.x_dim == num_groups * x_dim_across, (
        "across_view has %d latents but expected num_groups * x_dim_across = %d"
        % (across_view.x_dim, num_groups * x_dim_across)
    )

    gamma = params.across.gamma.copy()
    eps = params.across.eps.copy()
    nu = None if params.across.nu is None else params.across.nu.copy()
    delay_matrix = params.delay_matrix.copy()
    fit_delays = learn_delays and num_groups > 1

    for j in range(x_dim_across):
        # Copies of latent j, one per group (group-major layout)
        rows = j + x_dim_across * np.arange(num_groups)
        stats = _moment_stats(across_view, rows)
        gamma[j], nu_j, delay_matrix[:, j] = _optimize_latent(
            stats, cov_type, gamma[j], eps[j],
            None if nu is None else nu[j],
            delay_matrix[:, j], fit_delays, max_iters
        )
        if nu is not None:
            nu[j] = nu_j

    return {'gamma': gamma, 'eps': eps, 'nu': nu, 'delay_matrix': delay_matrix}


def learn_gp_params(within_view, gp, cov_type, learn_gp_noise=False, max_iters=10):
    """
    Update the kernel parameters of one group's within-group latents.

    Parameters
    ----------
    within_view : LatentView
        That group's view from partition_latents.
    gp : GP_params
        Current within-group parameters. Not modified.
    cov_type : CovType
    learn_gp_noise : bool
        Unsupported; eps is returned unchanged. DLAG_freq.fit warns once
        per fit when it is requested.
    max_iters : int

    Returns
    -------
    res : dict
        'gamma', 'eps', 'nu'
    """
    assert within_view.x_dim == gp.x_dim, (
        "within_view has %d latents but gp has %d" % (within_view.x_dim, gp.x_dim)
    )

    gamma = gp.gamma.copy()
    eps = gp.eps.copy()
    nu = None if gp.nu is None else gp.nu.copy()
    no_delay = np.zeros(1)

    for i in range(gp.x_dim):
        stats = _moment_stats(within_view, [i])
        gamma[i], nu_i, _ = _optimize_latent(
            stats, cov_type, gamma[i], eps[i],
            None if nu is None else nu[i],
            no_delay, False, max_iters
        )
        if nu is not None:
            nu[i] = nu_i

    return {'gamma': gamma, 'eps': eps, 'nu': nu}
