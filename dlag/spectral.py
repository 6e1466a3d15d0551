# -*- coding: utf-8 -*-
"""
GP Spectral Densities
=====================

Spectral densities of the DLAG GP kernels, in time-step units.

For lag s (time steps) the kernels are

    RBF:  k(s) = (1 - eps) * exp(-gamma * s^2 / 2)                     + eps * delta(s)
    SG:   k(s) = (1 - eps) * exp(-gamma * s^2 / 2) * cos(2 pi nu s)    + eps * delta(s)

and their spectral densities at angular frequency w (radians per step) are

    S(w) = (1 - eps) * s(w) + eps

where s(w) is the Fourier transform of the smooth part with unit variance:

    RBF:  s(w) = sqrt(2 pi / gamma) * exp(-w^2 / (2 gamma))
    SG:   s(w) = sqrt(2 pi / gamma) * [g(w - 2 pi nu) + g(w + 2 pi nu)] / 2,
          g(u) = exp(-u^2 / (2 gamma))

The functions here work on the smooth part s(w). Parameters are arrays of
shape (L,) for L latents, frequencies have shape (K,), outputs are (L, K).
"""

import numpy as np

from .params import CovType


def smooth_spectrum(cov_type, omega, gamma, nu=None):
    """
    Unit-variance spectral density s(w) of the smooth kernel part.

    Parameters
    ----------
    cov_type : CovType
    omega : np.ndarray
        (K,) angular frequencies.
    gamma : np.ndarray
        (L,) inverse squared timescales.
    nu : np.ndarray, optional
        (L,) center frequencies (SG only).

    Returns
    -------
    s : np.ndarray
        (L, K)
    """
    gamma = np.asarray(gamma, dtype=float)[:, np.newaxis]
    omega = np.asarray(omega, dtype=float)[np.newaxis, :]
    scale = np.sqrt(2 * np.pi / gamma)

    if cov_type is CovType.RBF:
        return scale * np.exp(-omega ** 2 / (2 * gamma))
    elif cov_type is CovType.SG:
        center = 2 * np.pi * np.asarray(nu, dtype=float)[:, np.newaxis]
        g_minus = np.exp(-(omega - center) ** 2 / (2 * gamma))
        g_plus = np.exp(-(omega + center) ** 2 / (2 * gamma))
        return 0.5 * scale * (g_minus + g_plus)
    else:
        raise ValueError("Unknown covariance type %r" % (cov_type,))


def smooth_spectrum_grad(cov_type, omega, gamma, nu=None):
    """
    s(w) and its derivatives with respect to log(gamma) and nu.

    Returns
    -------
    s : np.ndarray
        (L, K)
    ds_dlog_gamma : np.ndarray
        (L, K)
    ds_dnu : np.ndarray or None
        (L, K) for SG, None for RBF.
    """
    gamma = np.asarray(gamma, dtype=float)[:, np.newaxis]
    omega = np.asarray(omega, dtype=float)[np.newaxis, :]
    scale = np.sqrt(2 * np.pi / gamma)

    if cov_type is CovType.RBF:
        s = scale * np.exp(-omega ** 2 / (2 * gamma))
        ds_dlog_gamma = s * (-0.5 + omega ** 2 / (2 * gamma))
        return s, ds_dlog_gamma, None
    elif cov_type is CovType.SG:
        center = 2 * np.pi * np.asarray(nu, dtype=float)[:, np.newaxis]
        u_minus = omega - center
        u_plus = omega + center
        g_minus = np.exp(-u_minus ** 2 / (2 * gamma))
        g_plus = np.exp(-u_plus ** 2 / (2 * gamma))
        s = 0.5 * scale * (g_minus + g_plus)
        # d/dlog(gamma) = gamma * d/dgamma
        ds_dlog_gamma = -0.5 * s + 0.5 * scale * (
            g_minus * u_minus ** 2 + g_plus * u_plus ** 2
        ) / (2 * gamma)
        ds_dnu = 0.5 * scale * (2 * np.pi / gamma) * (g_minus * u_minus - g_plus * u_plus)
        return s, ds_dlog_gamma, ds_dnu
    else:
        raise ValueError("Unknown covariance type %r" % (cov_type,))


def gp_spectrum(cov_type, omega, gp):
    """
    Full spectral density S(w) = (1 - eps) s(w) + eps for a GP_params set.

    Returns
    -------
    S : np.ndarray
        (L, K)
    """
    s = smooth_spectrum(cov_type, omega, gp.gamma, gp.nu)
    eps = gp.eps[:, np.newaxis]
    return (1 - eps) * s + eps
