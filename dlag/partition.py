# -*- coding: utf-8 -*-
"""
Latent Partitioning
===================

Split the joint posterior into an across-group view and one within-group
view per group. Given the posterior, across- and within-group kernel
parameters are conditionally independent, so their M-steps can run on
these smaller views independently.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .dlag_utils import latent_indices


@dataclass
class LatentView:
    """
    Posterior statistics restricted to a subset of the latents.

    Attributes
    ----------
    latent_indices : np.ndarray
        Indices of the selected latents in the full latent vector.
    x_fft : List[np.ndarray]
        Per trial, (len(latent_indices), T) posterior mean at each frequency.
    spectra : Dict[int, np.ndarray]
        T -> (T, n, n) posterior covariance block at each frequency.
    trial_lengths : List[int]
    y_fft : List[np.ndarray], optional
        Observed spectra, attached to the across-group view.
    """
    latent_indices: np.ndarray
    x_fft: List[np.ndarray]
    spectra: Dict[int, np.ndarray]
    trial_lengths: List[int]
    y_fft: Optional[List[np.ndarray]] = field(default=None, repr=False)

    @property
    def x_dim(self):
        return len(self.latent_indices)

    def num_trials_by_length(self):
        counts = {}
        for T in self.trial_lengths:
            counts[T] = counts.get(T, 0) + 1
        return counts


def _restrict(seqs, xspec, idx):
    x_fft = [seq.x_fft[idx, :] for seq in seqs]
    spectra = {
        T: posterior.sigma[:, idx[:, np.newaxis], idx[np.newaxis, :]]
        for T, posterior in xspec.items()
    }
    return LatentView(
        latent_indices=idx,
        x_fft=x_fft,
        spectra=spectra,
        trial_lengths=[seq.T for seq in seqs],
    )


def partition_latents(seqs, xspec, x_dim_across, x_dim_within):
    """
    Parameters
    ----------
    seqs : List[Sequence]
        Trials after the E-step (x_fft set).
    xspec : Dict[int, SpectralPosterior]
    x_dim_across : int
    x_dim_within : array-like of int

    Returns
    -------
    across_view : LatentView
        Across-group latents of all groups, ordered group-major
        (group 0's across latents, then group 1's, ...), with y_fft attached.
    within_views : List[LatentView]
        One view per group, restricted to that group's within-group latents.
    """
    for n, seq in enumerate(seqs):
        assert seq.x_fft is not None, (
            "seqs[%d] has no posterior mean. Run exact_inference_freq first." % n
        )

    across_idx, within_idx = latent_indices(x_dim_across, x_dim_within)

    across_view = _restrict(seqs, xspec, across_idx.ravel())
    across_view.y_fft = [seq.y_fft for seq in seqs]

    within_views = [_restrict(seqs, xspec, idx) for idx in within_idx]

    return across_view, within_views
