"""
Core data structures for batch adjustment.

1. AbundanceMatrix: Feature × sample table with aligned sample metadata
2. QualityFlag: Bitwise per-value provenance flags
3. Transform: Abstract base class for immutable matrix transformations
"""

from zicombat.core.abundance import AbundanceMatrix, check_abundance_values, infer_abundance_type
from zicombat.core.quality import QualityFlag
from zicombat.core.transform import Transform

__all__ = [
    'AbundanceMatrix',
    'QualityFlag',
    'Transform',
    'check_abundance_values',
    'infer_abundance_type',
]
