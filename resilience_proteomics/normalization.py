"""
Data Normalization Module for Resilience Proteomics Toolkit

Median normalization followed by quantile normalization across samples.
"""

import pandas as pd
import numpy as np
from typing import Dict, Optional, List

from .preprocessing import get_sample_columns


def _separate_sample_and_annotation_data(
    data: pd.DataFrame, sample_columns: Optional[list] = None
) -> tuple:
    """
    Separate sample and annotation data.

    Parameters:
    -----------
    data : pd.DataFrame
        Protein-major data, normally in the standardized structure
        (Protein, Gene, Description, then samples)
    sample_columns : Optional[list]
        List of sample column names. If None, uses the standardized sample columns

    Returns:
    --------
    tuple : (sample_data, annotation_data)
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    missing = [c for c in sample_columns if c not in data.columns]
    if missing:
        raise ValueError(f"Sample columns not found in data: {missing[:5]}")

    annotation_cols = [c for c in data.columns if c not in set(sample_columns)]
    sample_data = data[sample_columns].astype(float)
    annotation_data = data[annotation_cols].copy()
    return sample_data, annotation_data


def _recombine(data: pd.DataFrame, normalized_sample_data: pd.DataFrame) -> pd.DataFrame:
    """Put normalized sample columns back in their original positions."""
    result = data.copy()
    result[list(normalized_sample_data.columns)] = normalized_sample_data.to_numpy()
    return result


def median_normalize(
    data: pd.DataFrame,
    sample_columns: Optional[list] = None,
    log_scale: bool = False,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Median normalization - remove the per-sample median shift.

    On the intensity scale each sample is divided by its median and multiplied
    by the global median of per-sample medians. With log_scale=True the sample
    median is subtracted and the global median added instead. Either way every
    sample ends with the same median. Missing values are ignored and preserved.

    Parameters:
    -----------
    data : pd.DataFrame
        Protein-major intensity data (can contain annotation columns)
    sample_columns : Optional[list]
        List of sample column names. If None, uses the standardized sample columns
    log_scale : bool
        Whether the data are already log-transformed

    Returns:
    --------
    pd.DataFrame : Median normalized data with same structure as input
    """
    if verbose:
        print("Applying median normalization...")

    sample_data, _ = _separate_sample_and_annotation_data(
        data, sample_columns
    )

    if sample_data.empty:
        print("Warning: No numeric sample columns found for normalization")
        return data.copy()

    normalized_sample_data = sample_data.copy()
    sample_medians = sample_data.median(axis=0, skipna=True)
    global_median = sample_medians.median()

    for col in sample_data.columns:
        if log_scale:
            normalized_sample_data[col] = sample_data[col] - sample_medians[col] + global_median
        elif sample_medians[col] > 0:  # Avoid division by zero
            normalized_sample_data[col] = (
                sample_data[col] / sample_medians[col]
            ) * global_median
        else:
            print(f"Warning: Sample {col} has non-positive median; left unchanged")

    if verbose:
        print(f"Median normalization completed for {len(sample_data.columns)} samples "
              f"(global median {global_median:.4g})")

    return _recombine(data, normalized_sample_data)


def quantile_normalize(
    data: pd.DataFrame, sample_columns: Optional[list] = None, verbose: bool = True
) -> pd.DataFrame:
    """
    Quantile normalization - makes the distribution of each sample identical.

    Each sample's values are ranked (ties broken in first-seen order), the
    across-sample mean at each rank forms the reference distribution, and every
    value is replaced by the reference value at its rank. Missing values are
    left out of the ranking: a sample with n observed values is mapped onto
    the reference by relative rank position and keeps its NaNs.

    Parameters:
    -----------
    data : pd.DataFrame
        Protein-major intensity data
    sample_columns : list, optional
        List of sample column names. If None, uses the standardized sample columns

    Returns:
    --------
    pd.DataFrame : Quantile normalized data with preserved annotation columns

    Raises:
    -------
    ValueError: If a protein has no observed value in any sample
    """
    if verbose:
        print("Applying quantile normalization...")

    sample_data, _ = _separate_sample_and_annotation_data(
        data, sample_columns
    )

    data_matrix = sample_data.to_numpy(dtype=float)
    n_rows, n_cols = data_matrix.shape
    if n_rows == 0 or n_cols == 0:
        return data.copy()

    observed = ~np.isnan(data_matrix)
    empty_rows = ~observed.any(axis=1)
    if empty_rows.any():
        positions = np.where(empty_rows)[0][:5].tolist()
        raise ValueError(
            f"{int(empty_rows.sum())} proteins have no observed values (rows {positions}); "
            "filter them out before normalization"
        )

    grid = np.linspace(0.0, 1.0, n_rows)

    # Each sample's quantile function evaluated on a common grid
    quantiles = np.full((n_rows, n_cols), np.nan)
    for j in range(n_cols):
        values = np.sort(data_matrix[observed[:, j], j], kind="mergesort")
        if len(values) == 0:
            continue
        quantiles[:, j] = np.interp(grid, np.linspace(0.0, 1.0, len(values)), values)

    reference = np.nanmean(quantiles, axis=1)

    normalized_matrix = np.full_like(data_matrix, np.nan)
    for j in range(n_cols):
        row_idx = np.where(observed[:, j])[0]
        if len(row_idx) == 0:
            continue
        order = np.argsort(data_matrix[row_idx, j], kind="mergesort")
        positions = np.linspace(0.0, 1.0, len(row_idx)) if len(row_idx) > 1 else np.array([0.5])
        normalized_matrix[row_idx[order], j] = np.interp(positions, grid, reference)

    normalized_sample_data = pd.DataFrame(
        normalized_matrix, index=sample_data.index, columns=sample_data.columns
    )

    if verbose:
        n_missing = int((~observed).sum())
        print(f"Quantile normalization completed for {n_cols} samples"
              f"{f' ({n_missing} missing values excluded from ranks)' if n_missing else ''}")

    return _recombine(data, normalized_sample_data)


def normalize_abundance(
    data: pd.DataFrame,
    sample_columns: Optional[List[str]] = None,
    log_scale: bool = False,
    verbose: bool = True,
) -> pd.DataFrame:
    """Normalization stage: median normalization then quantile normalization."""
    if verbose:
        print("=== NORMALIZING ABUNDANCE DATA ===\n")
    median_normalized = median_normalize(data, sample_columns, log_scale=log_scale, verbose=verbose)
    return quantile_normalize(median_normalized, sample_columns, verbose=verbose)


def calculate_normalization_stats(
    data: pd.DataFrame,
    normalized_data: pd.DataFrame,
    sample_columns: Optional[List[str]] = None,
    log_scale: bool = False,
) -> Dict[str, float]:
    """
    Calculate statistics to assess normalization effectiveness.

    Parameters:
    -----------
    data : pd.DataFrame
        Original data
    normalized_data : pd.DataFrame
        Normalized data
    sample_columns : list, optional
        Sample columns to compare
    log_scale : bool
        Whether the data are already log-transformed

    Returns:
    --------
    Dict[str, float] : Normalization statistics
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    original = data[sample_columns].astype(float)
    normalized = normalized_data[sample_columns].astype(float)
    if not log_scale:
        original = np.log2(original.where(original > 0))
        normalized = np.log2(normalized.where(normalized > 0))

    original_medians = original.median(axis=0)
    normalized_medians = normalized.median(axis=0)

    stats = {
        "original_median_range": original_medians.max() - original_medians.min(),
        "normalized_median_range": normalized_medians.max() - normalized_medians.min(),
        "original_iqr_median": (original.quantile(0.75) - original.quantile(0.25)).median(),
        "normalized_iqr_median": (normalized.quantile(0.75) - normalized.quantile(0.25)).median(),
    }

    if stats["original_median_range"] > 0:
        stats["median_range_reduction"] = 1 - (
            stats["normalized_median_range"] / stats["original_median_range"]
        )
    else:
        stats["median_range_reduction"] = 0.0

    return stats

