# -*- coding: utf-8 -*-
"""
Frequency-Domain DLAG
=====================

Fit DLAG model parameters with EM in the frequency domain.

DLAG_freq Architecture
======================

CLASS STRUCTURE:
┌─────────────────────────────────────────────────────────────────┐
│  DLAG_freq                                                      │
├─────────────────────────────────────────────────────────────────┤
│  Config: DLAG_config (max_iters, tol_ll, freq_ll, ...)          │
│  Output: DLAG_result (params, seqs, xspec, history, status)     │
├─────────────────────────────────────────────────────────────────┤
│  METHODS:                                                       │
│    fit(params, seqs)     → Main EM loop                         │
│    resume(result, seqs)  → Continue a previous fit              │
│    save(path) / load(path)                                      │
└─────────────────────────────────────────────────────────────────┘

FIT() FLOW:
┌──────────────────────────────────────────────────────────────────┐
│  INPUT: initial DLAG_params, seqs (unitary FFT of each trial)    │
└──────────────────┬───────────────────────────────────────────────┘
                   ▼
┌──────────────────────────────────────────────────────────────────┐
│  INIT:  validate, var_floor, bounds on delays and timescales     │
│         history = fresh, or config.tracked_params                │
└──────────────────┬───────────────────────────────────────────────┘
                   ▼
         ┌─────────────────┐
         │    EM LOOP      │
         └────────┬────────┘
                  ▼
    ┌─────────────────────────────┐
    │  1. exact_inference_freq()  │  E-step (+ LL every freq_ll iters)
    └──────────────┬──────────────┘
                   ▼
    ┌─────────────────────────────┐
    │  2. learn_obs_params()      │  C, d, R in closed form
    └──────────────┬──────────────┘
                   ▼
    ┌─────────────────────────────┐
    │  3. partition_latents()     │  across view + within views
    │     learn_gp_params_with_   │  gamma, nu, delays (across)
    │       delays()              │
    │     learn_gp_params()       │  gamma, nu (each group)
    └──────────────┬──────────────┘
                   ▼
    ┌─────────────────────────────┐
    │  4. enforce bounds          │  redraw long delays, floor gamma
    └──────────────┬──────────────┘
                   ▼
    ┌─────────────────────────────┐
    │  5. checkpoint              │  every freq_param iters
    └──────────────┬──────────────┘
                   ▼
         ┌────────────────┐
         │  Converged?    │──No──→ Loop back to 1
         └───────┬────────┘
                 │ Yes
                 ▼
┌──────────────────────────────────────────────────────────────────┐
│  OUTPUT: DLAG_result(params, seqs, xspec, history, status, msg)  │
└──────────────────────────────────────────────────────────────────┘

STOPPING RULES (checked in order after each iteration):
    (a) LL decreased            → flag it; warn and continue, or halt
    (b) LL relative change      → 'LL has converged'
    (c) delays AND timescales   → 'Across-group delays and timescales
        stop changing               have converged' (learn_delays only)
    (d) max_iters               → 'Fitting stopped after max_iters ...'
"""

import dataclasses
import time
import warnings

import numpy as np
from tqdm import tqdm

from .config import DLAG_config
from .dlag_utils import (
    compute_var_floor, enforce_delay_bounds, enforce_timescale_bounds, validate_sequences
)
from .gp_params import learn_gp_params, learn_gp_params_with_delays
from .inference import exact_inference_freq
from .obs_params import learn_obs_params
from .params import CovType
from .partition import partition_latents
from .results import DLAG_result, FitHistory, FitStatus


class DLAG_freq:
    """
    DLAG fitted by EM in the frequency domain.

    Parameters
    ----------
    config : DLAG_config, optional
        Configuration object.
    **kwargs
        Configuration parameters (see DLAG_config for options).

    Attributes
    ----------
    config : DLAG_config
    params_ : DLAG_params
        Estimated parameters (after fitting).
    result_ : DLAG_result
        Full fitting results (after fitting).

    Examples
    --------
    >>> params = generate_params_dlag(...)
    >>> model = DLAG_freq(max_iters=500, freq_ll=1)
    >>> result = model.fit(params, seqs)
    >>> print(result.message)
    >>>
    >>> # Continue where a previous fit stopped
    >>> result = model.resume(result, seqs, max_iters=1000)
    """

    def __init__(self, config=None, **kwargs):
        if config is None:
            self.config = DLAG_config(**kwargs)
        elif isinstance(config, DLAG_config):
            if kwargs:
                config_dict = config.to_dict()
                config_dict.update(kwargs)
                self.config = DLAG_config(**config_dict)
            else:
                self.config = config
        elif isinstance(config, dict):
            config = dict(config, **kwargs)
            self.config = DLAG_config(**config)
        else:
            raise TypeError(
                "config must be DLAG_config, dict, or None. Got %s" % type(config).__name__
            )

        self.params_ = None
        self.result_ = None
        self._is_fitted = False

    # =========================================================================
    # Range constraints
    # =========================================================================

    def _enforce_bounds(self, params, max_delay, min_gamma, rng, verbose):
        """Redraw out-of-range delays and floor gamma, in place."""
        n_delays = 0
        if params.x_dim_across > 0:
            params.delay_matrix, n_delays = enforce_delay_bounds(params.delay_matrix, max_delay, rng)

        params.across.gamma, n_gammas = enforce_timescale_bounds(params.across.gamma, min_gamma)
        for gp in params.within:
            gp.gamma, n_clamped = enforce_timescale_bounds(gp.gamma, min_gamma)
            n_gammas += n_clamped

        if verbose >= 2 and (n_delays or n_gammas):
            print("Bounds: redrew %d delay(s), clamped %d timescale(s)" % (n_delays, n_gammas))

    # =========================================================================
    # Kernel M-step
    # =========================================================================

    def _learn_kernel_params(self, seqs, xspec, params, config):
        """Update GP kernel parameters (and delays) in place."""

        # Across- and within-group GP kernel parameters can be learned
        # independently, so it's convenient to separate them here.
        across_view, within_views = partition_latents(
            seqs, xspec, params.x_dim_across, params.x_dim_within
        )

        if params.x_dim_across > 0:
            res = learn_gp_params_with_delays(
                across_view, params,
                learn_delays=config.learn_delays,
                learn_gp_noise=config.learn_gp_noise,
                max_iters=config.gp_max_iters
            )
            if params.cov_type is CovType.RBF:
                params.across.gamma = res['gamma']
            elif params.cov_type is CovType.SG:
                params.across.gamma = res['gamma']
                params.across.nu = res['nu']
            else:
                raise ValueError("Unknown covariance type %r" % (params.cov_type,))
            if config.learn_delays and params.num_groups > 1:
                params.delay_matrix = res['delay_matrix']
            # NOTE: GP noise variances (eps) are never updated; res['eps']
            # is returned unchanged.

        for m, gp in enumerate(params.within):
            if params.x_dim_within[m] == 0:
                continue
            res = learn_gp_params(
                within_views[m], gp, params.cov_type,
                learn_gp_noise=config.learn_gp_noise,
                max_iters=config.gp_max_iters
            )
            if params.cov_type is CovType.RBF:
                gp.gamma = res['gamma']
            elif params.cov_type is CovType.SG:
                gp.gamma = res['gamma']
                gp.nu = res['nu']
            else:
                raise ValueError("Unknown covariance type %r" % (params.cov_type,))

    # =========================================================================
    # Fitting
    # =========================================================================

    def fit(self, params, seqs):
        """
        Fit DLAG model parameters with EM.

        Parameters
        ----------
        params : DLAG_params
            Parameters at which EM is initialized. Not modified.
        seqs : List[Sequence]
            Trials, each with trial_id, T and y_fft (unitary FFT of the data).
            Not modified; the result holds augmented copies.

        Returns
        -------
        result : DLAG_result

        Raises
        ------
        ValueError
            If parameter and data dimensions disagree, or a resumed history
            does not match the model.
        """
        return self._fit(params, seqs, self.config)

    def _fit(self, params, seqs, config):
        """EM loop with an explicit config; self.config is left untouched."""
        if config.learn_gp_noise:
            warnings.warn(
                "Learning GP noise variances is currently unsupported; eps is kept at its current value."
            )

        # === Validate input ===
        params = params.copy().validate()
        validate_sequences(seqs, params.y_dim)
        seqs = [dataclasses.replace(seq) for seq in seqs]
        x_dim_across = params.x_dim_across

        # Convert variance fraction to actual variance
        var_floor = compute_var_floor(seqs, config.min_var_frac)

        # Convert maxDelayFrac to time steps and maxTauFrac to gamma
        min_T = min(seq.T for seq in seqs)
        max_delay = config.max_delay_frac * min_T
        min_gamma = 1.0 / (config.max_tau_frac * min_T) ** 2

        rng = np.random.default_rng(config.seed)
        self._enforce_bounds(params, max_delay, min_gamma, rng, config.verbose)

        # === Convergence tracking ===
        if config.tracked_params is None:
            history = FitHistory.start(params)
        else:
            history = config.tracked_params.for_resume()
            if len(history.gamma_within) != params.num_groups:
                raise ValueError(
                    "tracked_params covers %d groups but the model has %d"
                    % (len(history.gamma_within), params.num_groups)
                )
            if history.n_iterations >= config.max_iters:
                raise ValueError(
                    "tracked_params already holds %d iterations; max_iters=%d leaves nothing to run"
                    % (history.n_iterations, config.max_iters)
                )

        ll = history.last_evaluated_ll()
        ll_old = None
        ll_base = history.base_ll()
        if x_dim_across > 0:
            delta_delay, delta_gamma = history.checkpoint_deltas()
        else:
            delta_delay = delta_gamma = None
        start_iter = history.n_iterations + 1

        show_progress = config.verbose >= 1 and not config.parallelize
        if show_progress:
            print("=" * 60)
            print("DLAG Fitting (frequency domain)")
            print("=" * 60)
            print("Number of trials: %d" % len(seqs))
            print("Trial lengths: %s" % sorted(set(seq.T for seq in seqs)))
            print("y_dims: %s" % params.y_dims.tolist())
            print("x_dim_across: %d, x_dim_within: %s" % (x_dim_across, params.x_dim_within.tolist()))
            print("Covariance type: %s" % params.cov_type.value)
            if start_iter > 1:
                print("Resuming at iteration %d" % start_iter)
            print("-" * 60)

        pbar = tqdm(
            range(start_iter, config.max_iters + 1),
            desc="EM iteration", ncols=80, disable=not show_progress
        )

        # === Main EM loop ===
        status = FitStatus.RUNNING
        msg = ''
        xspec = {}

        for i in pbar:
            # Determine when to actually compute the log-likelihood
            ll_scheduled = (i % config.freq_ll == 0) or (i <= 2)
            get_ll = ll_scheduled or (i == config.max_iters)

            # --- E step ---
            if ll is not None:
                ll_old = ll
            tic = time.time()
            seqs, ll, xspec = exact_inference_freq(seqs, params, get_ll=get_ll)
            history.log_likelihood.append(ll)
            if get_ll and not ll_scheduled:
                history.unscheduled_ll.append(i)

            # --- M step ---
            if config.learn_obs:
                res = learn_obs_params(seqs, params, xspec, var_floor)
                params.C = res['C']
                params.d = res['d']
                params.R = res['R']

            if config.learn_kernel_params:
                self._learn_kernel_params(seqs, xspec, params, config)
                self._enforce_bounds(params, max_delay, min_gamma, rng, config.verbose)

            # --- Checkpoint ---
            checkpoint_scheduled = i % config.freq_param == 0
            if checkpoint_scheduled or (i == config.max_iters):
                history.record_checkpoint(params)
                history.unscheduled_checkpoint = not checkpoint_scheduled
                if x_dim_across > 0:
                    delta_delay, delta_gamma = history.checkpoint_deltas()
                else:
                    delta_delay = delta_gamma = None
                if config.verbose >= 2 and not config.parallelize:
                    print("\nCheckpoint at iteration %d: delta delay = %s, delta gamma_across = %s"
                          % (i, delta_delay, delta_gamma))
            else:
                delta_delay = delta_gamma = None

            history.iteration_time.append(time.time() - tic)

            if get_ll and show_progress:
                pbar.set_postfix({'lik': '%.4f' % ll})

            # --- Verify that likelihood is growing monotonically ---
            if i <= 2:
                ll_base = ll
            if ll is not None and ll_old is not None and ll < ll_old:
                history.ll_decreases.append(i)
                decrease_msg = 'Data likelihood decreased from %g to %g on iteration %d.' % (ll_old, ll, i)
                if config.on_ll_decrease == 'halt':
                    status = FitStatus.LIKELIHOOD_DECREASED
                    msg = decrease_msg
                    break
                warnings.warn(decrease_msg)
            elif (ll is not None and ll_old is not None and ll_base is not None
                    and (ll - ll_base) < (1 + config.tol_ll) * (ll_old - ll_base)):
                # Stopping criterion #1: log-likelihood not changing
                status = FitStatus.CONVERGED_BY_LIKELIHOOD
                msg = 'LL has converged'
                break
            elif (config.learn_delays and config.tol_param is not None
                    and delta_delay is not None and delta_gamma is not None
                    and delta_delay < config.tol_param and delta_gamma < config.tol_param):
                # Stopping criterion #2: across-group delays AND timescales not
                # changing. Not used when delays are not learned.
                status = FitStatus.CONVERGED_BY_PARAMETERS
                msg = 'Across-group delays and timescales have converged'
                break

        pbar.close()

        if status is FitStatus.RUNNING:
            status = FitStatus.MAX_ITERS_REACHED
            msg = 'Fitting stopped after max_iters (%d) was reached.' % config.max_iters
        elif status is not FitStatus.LIKELIHOOD_DECREASED:
            msg = '%s after %d EM iterations.' % (msg, history.n_iterations)

        if config.learn_obs and np.any(np.diag(params.R) == var_floor):
            warnings.warn('Private variance floor used for one or more observed dimensions in DLAG.')

        # === Final messages ===
        if show_progress:
            print("-" * 60)
            print(msg)
            if history.ll_decreases:
                print("Warning: data likelihood decreased at least once during fitting.")
            final_ll = history.last_evaluated_ll()
            if final_ll is not None:
                print("Final LL: %.6f" % final_ll)
            print("=" * 60)

        # === Build result ===
        result = DLAG_result(
            params=params,
            seqs=seqs,
            xspec=xspec,
            history=history,
            status=status,
            likelihood_decreased=len(history.ll_decreases) > 0,
            message=msg,
            n_iterations=history.n_iterations,
            config=config
        )

        # === Store for later use ===
        self.params_ = params
        self.result_ = result
        self._is_fitted = True

        return result

    def resume(self, result, seqs, **kwargs):
        """
        Continue fitting from a previous result.

        Parameters
        ----------
        result : DLAG_result
            Result of an earlier fit. Its params and history are the
            starting point.
        seqs : List[Sequence]
            The same trials used for the earlier fit.
        **kwargs
            Configuration overrides for this call only, e.g. max_iters.
            self.config is not changed, so a later fit() starts fresh.

        Returns
        -------
        result : DLAG_result
        """
        config_dict = self.config.to_dict()
        config_dict.update(kwargs)
        config_dict['tracked_params'] = result.history
        return self._fit(result.params, seqs, DLAG_config(**config_dict))

    # =========================================================================
    # Save / Load
    # =========================================================================

    def save(self, path):
        """
        Save fitted model to file.

        Parameters
        ----------
        path : str
            Path to save file (e.g., 'model.pkl').
        """
        import pickle

        assert self._is_fitted, (
            "Model must be fitted before saving. Call fit() first."
        )

        save_dict = {
            'config': self.config,
            'params': self.params_,
            'result': self.result_
        }

        with open(path, 'wb') as f:
            pickle.dump(save_dict, f)

    @classmethod
    def load(cls, path):
        """
        Load model from file.

        Parameters
        ----------
        path : str
            Path to saved file.

        Returns
        -------
        model : DLAG_freq
        """
        import pickle

        with open(path, 'rb') as f:
            save_dict = pickle.load(f)

        model = cls(config=save_dict['config'])
        model.params_ = save_dict['params']
        model.result_ = save_dict['result']
        model._is_fitted = True
        return model
