# =======================================================================================
# gatewatch/utils/similarity.py - Gate Name Similarity
# =======================================================================================
from rapidfuzz.distance import Levenshtein


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance (insert/delete/substitute, unit cost)."""
    return Levenshtein.distance(a, b)


def name_similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    (maxLen - editDistance) / maxLen, case-sensitive. Two empty names count as
    identical.
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - edit_distance(a, b)) / max_len
