"""
Alignment Engine: scored one-to-one correspondences between entities of two
documents (objectives, endpoints, doses, populations, visits).
"""

from .alignment_set import AlignmentSet, build_alignments
from .base import Alignment, align
from .similarity import combined_similarity, find_best_match, normalize_text

__all__ = [
    'Alignment',
    'AlignmentSet',
    'align',
    'build_alignments',
    'combined_similarity',
    'find_best_match',
    'normalize_text',
]
