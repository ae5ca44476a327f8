"""
Pytest configuration and shared fixtures for batch adjustment tests.

Provides synthetic abundance tables with known batch and covariate effects.
"""

import numpy as np
import pandas as pd
import pytest


def generate_batched_abundance(
    n_features: int = 10,
    n_per_batch: int = 20,
    n_batches: int = 2,
    batch_shift: float = 1.5,
    batch_scale: float = 1.0,
    covariate_effect: float = 0.0,
    n_affected: int = 0,
    noise_sd: float = 0.3,
    counts: bool = False,
    seed: int = 42,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate a features × samples abundance table with batch structure.

    Args:
        n_features: Number of features
        n_per_batch: Samples per batch
        n_batches: Number of batches (labelled "A", "B", ...)
        batch_shift: Scale of the per-feature log2 batch shifts (batches after the first)
        batch_scale: Noise multiplier for batches after the first
        covariate_effect: Additive log2 effect of disease == "case"
        n_affected: Number of leading features carrying the covariate effect
        noise_sd: Within-batch log2 noise
        counts: Return integer counts (library size ~1e5) instead of proportions
        seed: Random seed for reproducibility

    Returns:
        (feature_abd, metadata) with metadata indexed by sample name and
        columns "batch" and "disease" (balanced within each batch).

    Design:
        - Log-normal abundances around feature-specific baselines
        - Each later batch gets its own per-feature shift in [-batch_shift, batch_shift]
        - Samples total-sum scaled, so the table is compositional
    """
    rng = np.random.default_rng(seed)
    n_samples = n_per_batch * n_batches
    labels = [chr(ord("A") + b) for b in range(n_batches)]

    batch = np.repeat(labels, n_per_batch)
    disease = np.tile(np.repeat(["control", "case"], [n_per_batch // 2, n_per_batch - n_per_batch // 2]),
                      n_batches)

    baseline = rng.uniform(-6.0, -2.0, size=n_features)
    log_abd = baseline[:, None] + rng.normal(0.0, noise_sd, size=(n_features, n_samples))

    for b in range(1, n_batches):
        cols = batch == labels[b]
        shifts = rng.uniform(-batch_shift, batch_shift, size=n_features)
        log_abd[:, cols] = (
            baseline[:, None]
            + (log_abd[:, cols] - baseline[:, None]) * batch_scale
            + shifts[:, None]
        )

    if n_affected:
        log_abd[:n_affected, disease == "case"] += covariate_effect

    abd = np.power(2.0, log_abd)
    abd = abd / abd.sum(axis=0, keepdims=True)
    if counts:
        abd = np.round(abd * 1e5)

    sample_ids = [f"S{j:03d}" for j in range(n_samples)]
    feature_ids = [f"feature{i}" for i in range(n_features)]
    feature_abd = pd.DataFrame(abd, index=feature_ids, columns=sample_ids)
    metadata = pd.DataFrame({"batch": batch, "disease": disease}, index=sample_ids)
    return feature_abd, metadata


@pytest.fixture
def two_batch_data():
    """10 features × 40 samples, two shifted batches, disease effect on 5 features."""
    return generate_batched_abundance(
        n_features=10,
        n_per_batch=20,
        batch_shift=1.5,
        covariate_effect=2.0,
        n_affected=5,
        seed=7,
    )


@pytest.fixture
def small_design():
    """Six samples in batches A/A/A/B/B/B with a binary covariate, batch columns first."""
    return np.array([
        [1, 0, 0],
        [1, 0, 1],
        [1, 0, 1],
        [0, 1, 0],
        [0, 1, 1],
        [0, 1, 0],
    ], dtype=float)
