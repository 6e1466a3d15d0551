# -*- coding: utf-8 -*-
"""
Frequency-Domain Inference
==========================

Exact posterior inference (E-step) for DLAG in the frequency domain.

Under the stationary-GP (circulant) approximation, the unitary FFT
decouples the latents across frequencies. At each frequency w_k:

    y_k = C @ x_k + sqrt(T) * d * [k == 0] + e_k,   e_k ~ CN(0, R)
    x_k ~ CN(0, K_k)

For across-group latent j, the copies seen by the M groups are

    x_k[copy m] = z_k * exp(-i w_k D[m, j]) + (white noise of variance eps_j)

so their prior covariance is eps_j * I + a_jk * v v^H with
a_jk = (1 - eps_j) * s_j(w_k) and v_m = exp(-i w_k D[m, j]). Its inverse is

    (1 / eps_j) * (I - a_jk v v^H / (eps_j + M a_jk))

Posterior at each frequency:

    Sigma_k = (K_k^{-1} + C^T R^{-1} C)^{-1}
    mu_k    = Sigma_k @ C^T R^{-1} (y_k - sqrt(T) d [k == 0])

Sigma_k depends on T but not on the data, so it is computed once for each
distinct trial length and shared by every trial of that length.
"""

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from .dlag_utils import (
    angular_frequencies, group_trials_by_length, latent_indices, unitary_ifft
)
from .spectral import gp_spectrum, smooth_spectrum


@dataclass
class SpectralPosterior:
    """
    Posterior covariance of the latents for all trials of length T.

    Attributes
    ----------
    T : int
        Number of time steps (and of frequencies).
    trial_indices : List[int]
        Indices (into seqs) of the trials of this length.
    sigma : np.ndarray
        (T, p, p) complex Hermitian posterior covariance at each frequency,
        p = total_latent_dim.
    """
    T: int
    trial_indices: List[int]
    sigma: np.ndarray

    @property
    def num_trials(self):
        return len(self.trial_indices)

    @property
    def omega(self):
        return angular_frequencies(self.T)


def prior_precision(params, omega):
    """
    Inverse prior covariance of the full latent vector at each frequency.

    Parameters
    ----------
    params : DLAG_params
    omega : np.ndarray
        (K,) angular frequencies.

    Returns
    -------
    K_inv : np.ndarray
        (K, p, p) complex.
    logdet_K : np.ndarray
        (K,) log-determinant of the prior covariance.
    """
    p = params.total_latent_dim
    n_freq = omega.shape[0]
    num_groups = params.num_groups
    across_idx, within_idx = latent_indices(params.x_dim_across, params.x_dim_within)

    K_inv = np.zeros((n_freq, p, p), dtype=complex)
    logdet_K = np.zeros(n_freq)

    if params.x_dim_across > 0:
        s = smooth_spectrum(params.cov_type, omega, params.across.gamma, params.across.nu)
        eps = params.across.eps[:, np.newaxis]
        a = (1 - eps) * s            # (xA, K)
        b = eps + num_groups * a     # (xA, K)
        eye = np.eye(num_groups)[np.newaxis]
        for j in range(params.x_dim_across):
            idx = across_idx[:, j]
            v = np.exp(-1j * np.outer(omega, params.delay_matrix[:, j]))  # (K, M)
            vvH = v[:, :, np.newaxis] * np.conj(v)[:, np.newaxis, :]
            block = (eye - (a[j] / b[j])[:, np.newaxis, np.newaxis] * vvH) / eps[j]
            K_inv[:, idx[:, np.newaxis], idx[np.newaxis, :]] = block
        logdet_K += np.sum((num_groups - 1) * np.log(eps) + np.log(b), axis=0)

    for m, gp in enumerate(params.within):
        if gp.x_dim == 0:
            continue
        S = gp_spectrum(params.cov_type, omega, gp)  # (xW, K)
        idx = within_idx[m]
        K_inv[:, idx, idx] = (1.0 / S).T
        logdet_K += np.sum(np.log(S), axis=0)

    return K_inv, logdet_K


def exact_inference_freq(seqs, params, get_ll=True):
    """
    Posterior over latents and (optionally) the data log-likelihood.

    Parameters
    ----------
    seqs : List[Sequence]
        Trials, each with y_fft.
    params : DLAG_params
        Current parameters. Not modified.
    get_ll : bool
        If True, also compute the data log-likelihood. This costs an extra
        log-determinant per frequency and a quadratic form per trial.

    Returns
    -------
    seqs : List[Sequence]
        Same trials, with x_fft, x_mean and spectral_posterior set.
    ll : float or None
        Data log-likelihood, or None if get_ll is False.
    xspec : Dict[int, SpectralPosterior]
        One entry per distinct trial length.
    """
    y_dim = params.y_dim
    r_diag = np.diag(params.R)
    C_Rinv = params.C.T / r_diag[np.newaxis, :]   # (p, y_dim)
    CRinvC = C_Rinv @ params.C                    # (p, p)
    logdet_R = np.sum(np.log(r_diag))

    xspec: Dict[int, SpectralPosterior] = {}
    ll = 0.0

    for T, trial_idx in group_trials_by_length(seqs).items():
        omega = angular_frequencies(T)
        K_inv, logdet_K = prior_precision(params, omega)
        precision = K_inv + CRinvC[np.newaxis]
        sigma = np.linalg.inv(precision)
        sigma = 0.5 * (sigma + np.conj(np.swapaxes(sigma, 1, 2)))

        posterior = SpectralPosterior(T=T, trial_indices=list(trial_idx), sigma=sigma)
        xspec[T] = posterior

        if get_ll:
            _, logdet_P = np.linalg.slogdet(precision)
            # log|C K C^T + R| = log|R| + log|K| + log|K^{-1} + C^T R^{-1} C|
            logdet_sum = np.sum(logdet_R + logdet_K + logdet_P)

        for n in trial_idx:
            seq = seqs[n]
            resid = np.array(seq.y_fft, dtype=complex, copy=True)
            resid[:, 0] -= np.sqrt(T) * params.d
            proj = C_Rinv @ resid                                # (p, T)
            mu = np.einsum('kij,jk->ik', sigma, proj)            # (p, T)

            seq.x_fft = mu
            seq.x_mean = unitary_ifft(mu).real
            seq.spectral_posterior = posterior

            if get_ll:
                # Woodbury: r^H (C K C^T + R)^{-1} r = r^H R^{-1} r - proj^H Sigma proj
                quad = np.sum(np.abs(resid) ** 2 / r_diag[:, np.newaxis]) \
                    - np.sum(np.conj(proj) * mu).real
                ll -= 0.5 * (T * y_dim * np.log(2 * np.pi) + logdet_sum + quad)

    if not get_ll:
        return seqs, None, xspec
    return seqs, float(ll), xspec
