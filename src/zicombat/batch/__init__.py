"""
Empirical Bayes batch adjustment for zero-inflated abundance tables.

Stages, in run order:
- eligibility:  which feature × batch cells can be estimated
- standardize:  per-feature covariate removal and pooled-variance scaling
- priors:       frequentist batch parameters and hyper-priors
- shrinkage:    per-batch posterior parameters
- reconstruct:  apply parameters and return to the abundance scale
"""

from .adjust import BatchAdjustment, BatchAdjustmentResult, adjust_batch, adjust_matrix
from .eligibility import EligibilityIndex, construct_eligibility
from .priors import EBParameters, aprior, bprior, fit_eb
from .reconstruct import add_back_covariates, back_transform_abd, relocate_scale
from .shrinkage import ShrunkParameters, fit_shrink, it_sol, postmean, postvar
from .standardize import StandardizationFit, fit_stand_feature, standardize_feature

__all__ = [
    "BatchAdjustment",
    "BatchAdjustmentResult",
    "adjust_batch",
    "adjust_matrix",
    "EligibilityIndex",
    "construct_eligibility",
    "EBParameters",
    "aprior",
    "bprior",
    "fit_eb",
    "add_back_covariates",
    "back_transform_abd",
    "relocate_scale",
    "ShrunkParameters",
    "fit_shrink",
    "it_sol",
    "postmean",
    "postvar",
    "StandardizationFit",
    "fit_stand_feature",
    "standardize_feature",
]
