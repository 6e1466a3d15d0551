# -*- coding: utf-8 -*-
"""
DLAG Parameters
===============

Containers for DLAG model parameters.

Observation model, per time step t:
    y_t = C @ x_t + d + e_t,   e_t ~ N(0, R),  R diagonal

Latent layout: C is block diagonal over groups. Group m owns the block
    [across_1, ..., across_xA, within_1, ..., within_xW_m]
of the full latent vector, and blocks are laid out in group order, so

    total_latent_dim = num_groups * x_dim_across + sum(x_dim_within)

Across-group latent j reaches group m delayed by delay_matrix[m, j] time
steps. Group 0 is the reference group; its delays are always zero.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


class CovType(Enum):
    """GP covariance family."""
    RBF = 'rbf'  # Radial basis / squared exponential
    SG = 'sg'    # Spectral Gaussian / Gauss-cosine

    @classmethod
    def parse(cls, value):
        """Accept a CovType or its string name ('rbf', 'sg')."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise ValueError(
            "Unknown covariance type %r. Must be one of: %s" % (value, [c.value for c in cls])
        )


@dataclass
class GP_params:
    """
    Kernel parameters for a set of GP latents.

    Attributes
    ----------
    gamma : np.ndarray
        Inverse squared timescales, in time-step units. Timescales in units
        of time are bin_width / sqrt(gamma).
    eps : np.ndarray
        GP noise variances.
    nu : np.ndarray, optional
        Center frequencies in cycles per time step (spectral Gaussian only).
        Convert to 1/time via nu / bin_width.
    """
    gamma: np.ndarray
    eps: np.ndarray
    nu: Optional[np.ndarray] = None

    def __post_init__(self):
        self.gamma = np.atleast_1d(np.asarray(self.gamma, dtype=float))
        self.eps = np.atleast_1d(np.asarray(self.eps, dtype=float))
        if self.nu is not None:
            self.nu = np.atleast_1d(np.asarray(self.nu, dtype=float))

    @property
    def x_dim(self):
        return self.gamma.shape[0]

    @classmethod
    def empty(cls, cov_type):
        nu = np.zeros(0) if cov_type is CovType.SG else None
        return cls(gamma=np.zeros(0), eps=np.zeros(0), nu=nu)

    def copy(self):
        return GP_params(
            gamma=self.gamma.copy(),
            eps=self.eps.copy(),
            nu=None if self.nu is None else self.nu.copy()
        )


@dataclass
class DLAG_params:
    """
    DLAG model parameters.

    Attributes
    ----------
    cov_type : CovType
        GP covariance family.
    across : GP_params
        Across-group kernel parameters, length x_dim_across.
    within : List[GP_params]
        Within-group kernel parameters, one entry per group.
    delay_matrix : np.ndarray
        (num_groups, x_dim_across) delays, in time steps.
    C : np.ndarray
        (y_dim, total_latent_dim) loading matrix.
    d : np.ndarray
        (y_dim,) observation mean.
    R : np.ndarray
        (y_dim, y_dim) diagonal observation noise covariance.
    y_dims : np.ndarray
        Dimensionality of each observed group.
    x_dim_across : int
        Number of across-group latents.
    x_dim_within : np.ndarray
        Number of within-group latents in each group.
    """
    cov_type: CovType
    across: GP_params
    within: List[GP_params]
    delay_matrix: np.ndarray
    C: np.ndarray
    d: np.ndarray
    R: np.ndarray
    y_dims: np.ndarray
    x_dim_across: int
    x_dim_within: np.ndarray

    def __post_init__(self):
        self.cov_type = CovType.parse(self.cov_type)
        self.y_dims = np.asarray(self.y_dims, dtype=int).ravel()
        self.x_dim_within = np.asarray(self.x_dim_within, dtype=int).ravel()
        self.x_dim_across = int(self.x_dim_across)
        self.delay_matrix = np.asarray(self.delay_matrix, dtype=float).reshape(
            len(self.y_dims), self.x_dim_across
        )
        self.C = np.asarray(self.C, dtype=float)
        self.d = np.asarray(self.d, dtype=float).ravel()
        self.R = np.asarray(self.R, dtype=float)

    # =========================================================================
    # Dimensions
    # =========================================================================

    @property
    def num_groups(self):
        return len(self.y_dims)

    @property
    def y_dim(self):
        return int(np.sum(self.y_dims))

    @property
    def total_latent_dim(self):
        return self.num_groups * self.x_dim_across + int(np.sum(self.x_dim_within))

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self):
        """
        Check that all dimensions are consistent.

        Raises
        ------
        ValueError
            If any declared and supplied sizes disagree.
        """
        num_groups = self.num_groups
        if len(self.x_dim_within) != num_groups:
            raise ValueError(
                "x_dim_within has %d entries but there are %d groups (len(y_dims))"
                % (len(self.x_dim_within), num_groups)
            )
        if len(self.within) != num_groups:
            raise ValueError(
                "within has %d entries but there are %d groups" % (len(self.within), num_groups)
            )
        if self.total_latent_dim == 0:
            raise ValueError("Model has no latents: x_dim_across and all x_dim_within are 0")
        if self.C.shape != (self.y_dim, self.total_latent_dim):
            raise ValueError(
                "C has shape %s but expected (sum(y_dims)=%d, total_latent_dim=%d)"
                % (self.C.shape, self.y_dim, self.total_latent_dim)
            )
        if self.d.shape[0] != self.y_dim:
            raise ValueError("d has %d entries but sum(y_dims) is %d" % (self.d.shape[0], self.y_dim))
        if self.R.shape != (self.y_dim, self.y_dim):
            raise ValueError("R has shape %s but expected (%d, %d)" % (self.R.shape, self.y_dim, self.y_dim))
        if np.any(self.R != np.diag(np.diag(self.R))):
            raise ValueError("R must be diagonal")
        if np.any(np.diag(self.R) <= 0):
            raise ValueError("Diagonal of R must be positive")
        if self.delay_matrix.shape != (num_groups, self.x_dim_across):
            raise ValueError(
                "delay_matrix has shape %s but expected (%d, %d)"
                % (self.delay_matrix.shape, num_groups, self.x_dim_across)
            )
        if self.x_dim_across > 0 and np.any(self.delay_matrix[0] != 0):
            raise ValueError("Delays of the reference group (row 0 of delay_matrix) must be zero")

        expected = [('across', self.across, self.x_dim_across)]
        expected += [('within[%d]' % m, gp, self.x_dim_within[m]) for m, gp in enumerate(self.within)]
        for name, gp, x_dim in expected:
            if gp.gamma.shape[0] != x_dim or gp.eps.shape[0] != x_dim:
                raise ValueError(
                    "%s kernel parameters have %d gammas and %d eps, expected %d"
                    % (name, gp.gamma.shape[0], gp.eps.shape[0], x_dim)
                )
            if self.cov_type is CovType.SG:
                if gp.nu is None or gp.nu.shape[0] != x_dim:
                    raise ValueError("%s needs %d center frequencies (nu) for covType 'sg'" % (name, x_dim))
            elif gp.nu is not None and gp.nu.shape[0] > 0:
                raise ValueError("%s has center frequencies (nu), but covType is 'rbf'" % name)
            if np.any(gp.gamma <= 0):
                raise ValueError("%s gamma must be positive" % name)
            if np.any((gp.eps <= 0) | (gp.eps >= 1)):
                raise ValueError("%s eps must be in (0, 1)" % name)
        return self

    # =========================================================================
    # Convenience
    # =========================================================================

    def timescales(self, bin_width=1.0):
        """
        GP timescales in units of time.

        Returns
        -------
        tau_across : np.ndarray
        tau_within : List[np.ndarray]
        """
        tau_across = bin_width / np.sqrt(self.across.gamma)
        tau_within = [bin_width / np.sqrt(gp.gamma) for gp in self.within]
        return tau_across, tau_within

    def copy(self):
        """Return a deep copy."""
        return copy.deepcopy(self)

    def to_dict(self):
        return {
            'cov_type': self.cov_type.value,
            'gamma_across': self.across.gamma.copy(),
            'eps_across': self.across.eps.copy(),
            'nu_across': None if self.across.nu is None else self.across.nu.copy(),
            'gamma_within': [gp.gamma.copy() for gp in self.within],
            'eps_within': [gp.eps.copy() for gp in self.within],
            'nu_within': [None if gp.nu is None else gp.nu.copy() for gp in self.within],
            'delay_matrix': self.delay_matrix.copy(),
            'C': self.C.copy(),
            'd': self.d.copy(),
            'R': self.R.copy(),
            'y_dims': self.y_dims.copy(),
            'x_dim_across': self.x_dim_across,
            'x_dim_within': self.x_dim_within.copy(),
        }

    @classmethod
    def from_dict(cls, d):
        cov_type = CovType.parse(d['cov_type'])
        num_groups = len(d['y_dims'])
        nu_within = d.get('nu_within') or [None] * num_groups
        return cls(
            cov_type=cov_type,
            across=GP_params(d['gamma_across'], d['eps_across'], d.get('nu_across')),
            within=[
                GP_params(d['gamma_within'][m], d['eps_within'][m], nu_within[m])
                for m in range(num_groups)
            ],
            delay_matrix=d['delay_matrix'],
            C=d['C'],
            d=d['d'],
            R=d['R'],
            y_dims=d['y_dims'],
            x_dim_across=d['x_dim_across'],
            x_dim_within=d['x_dim_within'],
        )
