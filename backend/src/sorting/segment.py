"""Segment sorter — stable permutation of one line from its keys."""

import numpy as np


def sort_line(keys: np.ndarray, descending: bool = False) -> np.ndarray:
    """Return the permutation that orders a line by its keys.

    ``keys`` is either (n,) scalar keys or (n, k) tuples compared
    lexicographically, column 0 first. The result ``perm`` satisfies
    ``sorted_line[j] = line[perm[j]]``.

    The sort is stable in both directions: pixels with equal keys keep
    their original relative order, descending included. Sorting an
    already sorted line therefore returns the identity.
    """
    signed = -keys if descending else keys

    if signed.ndim == 1:
        return np.argsort(signed, kind="stable")
    if signed.ndim == 2:
        # lexsort treats the last key as primary
        return np.lexsort(signed.T[::-1])
    raise ValueError(f"keys must be 1-D or 2-D, got shape {keys.shape}")
