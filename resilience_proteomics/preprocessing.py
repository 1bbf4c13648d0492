"""
Data Preprocessing Module for Resilience Proteomics Toolkit

Functions for standardising the abundance table, handling missing values,
filtering proteins by missingness, log transformation and the reshaping
helpers (protein-major <-> sample-major, wide -> long) used by the models.
"""

import pandas as pd
import numpy as np
import re
from typing import List, Optional, Tuple, Iterable

from .data_import import parse_uniprot_identifier
from .validation import validate_unique_proteins


# Every protein-major table starts with exactly these columns, then samples
ANNOTATION_COLUMNS = ["Protein", "Gene", "Description"]


def create_standard_data_structure(
    data: pd.DataFrame,
    protein_col: str = "Protein",
    gene_col: str = "Gene",
    description_col: str = "Description",
    sample_columns: Optional[List[str]] = None,
    parse_accessions: bool = False,
) -> pd.DataFrame:
    """
    Create the standardized protein-major structure: Protein, Gene,
    Description, then one numeric column per sample.

    Parameters:
    -----------
    data : pd.DataFrame
        Raw abundance table
    protein_col, gene_col, description_col : str
        Source column names for the three annotation fields
    sample_columns : list, optional
        Sample columns to keep (in this order). Defaults to every column that
        is not one of the annotation source columns.
    parse_accessions : bool
        Reduce identifiers such as 'sp|P12345|NAME_HUMAN' to the accession

    Returns:
    --------
    pd.DataFrame : Standardized data

    Raises:
    -------
    DuplicateProteinError: If protein identifiers are not unique
    """
    print("=== CREATING STANDARD DATA STRUCTURE ===\n")

    if protein_col not in data.columns:
        raise ValueError(f"Protein identifier column '{protein_col}' not found in data")

    source_annotation = [protein_col, gene_col, description_col]
    if sample_columns is None:
        sample_columns = [c for c in data.columns if c not in source_annotation]

    result = pd.DataFrame(index=data.index)
    proteins = data[protein_col].astype(str).str.strip()
    if parse_accessions:
        parsed = proteins.apply(lambda p: parse_uniprot_identifier(p)["accession"])
        proteins = parsed.where(parsed != "", proteins)
    result["Protein"] = proteins
    result["Gene"] = data[gene_col] if gene_col in data.columns else np.nan
    result["Description"] = data[description_col] if description_col in data.columns else np.nan

    sample_data = data[sample_columns].apply(pd.to_numeric, errors="coerce")
    sample_data.columns = [str(c) for c in sample_columns]
    result = pd.concat([result, sample_data], axis=1).reset_index(drop=True)

    validate_unique_proteins(result, "Protein")

    print(f"Proteins: {len(result)}")
    print(f"Samples: {len(sample_columns)}")
    print("✅ Data structure standardization complete!")
    return result


def get_sample_columns(data: pd.DataFrame) -> List[str]:
    """Return the sample columns of a standardized table (everything after the annotation)."""
    if list(data.columns[: len(ANNOTATION_COLUMNS)]) == ANNOTATION_COLUMNS:
        return list(data.columns[len(ANNOTATION_COLUMNS):])
    return data.select_dtypes(include=[np.number]).columns.tolist()


def identify_pooled_samples(sample_columns: Iterable[str], pool_pattern: Optional[str] = "Pool") -> List[str]:
    """
    Identify pooled reference channels by a case-insensitive name pattern.

    Pooled channels are excluded from missingness counting and modelling.
    """
    if not pool_pattern:
        return []
    regex = re.compile(pool_pattern, re.IGNORECASE)
    return [s for s in sample_columns if regex.search(str(s))]


def mark_missing_values(
    data: pd.DataFrame,
    sample_columns: Optional[List[str]] = None,
    missing_markers: Tuple = (0,),
) -> pd.DataFrame:
    """
    Replace missing-value markers (zero intensity by default) with NaN.

    Raises:
    -------
    ValueError: If any intensity is negative
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    result = data.copy()
    sample_data = result[sample_columns]

    if (sample_data < 0).any().any():
        negative_samples = sample_data.columns[(sample_data < 0).any()].tolist()
        raise ValueError(f"Negative intensities found in samples: {negative_samples}")

    if missing_markers:
        result[sample_columns] = sample_data.mask(sample_data.isin(list(missing_markers)))
    return result


def count_missing_values(data: pd.DataFrame, sample_columns: List[str]) -> pd.Series:
    """Count missing values per protein across the given samples."""
    return data[sample_columns].isna().sum(axis=1)


def missing_fraction_for_count(max_missing: int, n_samples: int) -> float:
    """Express a missing-count threshold as a fraction of available samples."""
    if n_samples <= 0:
        raise ValueError("n_samples must be positive")
    return max_missing / n_samples


def filter_proteins_by_missingness(
    data: pd.DataFrame,
    sample_columns: Optional[List[str]] = None,
    max_missing: Optional[int] = 30,
    max_missing_fraction: Optional[float] = None,
    pool_pattern: Optional[str] = "Pool",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Keep proteins with few enough missing values across non-pooled samples.

    A protein is kept when its missing count is <= max_missing, or, when
    max_missing_fraction is given, when count / n_samples <= max_missing_fraction.
    Proteins with every value missing are always dropped. Row order is preserved.

    Parameters:
    -----------
    data : pd.DataFrame
        Standardized protein-major data with NaN for missing values
    sample_columns : list, optional
        Sample columns (defaults to the standardized sample columns)
    max_missing : int, optional
        Maximum tolerated missing count (default 30)
    max_missing_fraction : float, optional
        Maximum tolerated missing fraction; takes precedence over max_missing
    pool_pattern : str, optional
        Pattern identifying pooled channels to ignore

    Returns:
    --------
    pd.DataFrame : Filtered data
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    pooled = set(identify_pooled_samples(sample_columns, pool_pattern))
    counted_samples = [s for s in sample_columns if s not in pooled]
    n_samples = len(counted_samples)
    if n_samples == 0:
        raise ValueError("No non-pooled samples available for missingness filtering")

    missing_counts = count_missing_values(data, counted_samples)

    if max_missing_fraction is not None:
        keep = (missing_counts / n_samples) <= max_missing_fraction
        rule = f"missing fraction <= {max_missing_fraction:.3f}"
    elif max_missing is not None:
        keep = missing_counts <= max_missing
        rule = (f"missing count <= {max_missing} "
                f"(fraction {missing_fraction_for_count(max_missing, n_samples):.3f})")
    else:
        raise ValueError("Provide max_missing or max_missing_fraction")

    keep &= missing_counts < n_samples
    filtered = data[keep].copy()

    if verbose:
        print("=== FILTERING PROTEINS BY MISSINGNESS ===\n")
        print(f"Samples counted: {n_samples} ({len(pooled)} pooled excluded)")
        print(f"Original proteins: {len(data)}")
        print(f"Proteins with {rule}: {len(filtered)}")
        print(f"Removed: {len(data) - len(filtered)} proteins")

    return filtered


def log2_transform(data: pd.DataFrame, sample_columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Log2-transform the sample columns. Non-positive values become NaN;
    annotation columns are left untouched.
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    result = data.copy()
    sample_data = result[sample_columns].astype(float)
    result[sample_columns] = np.log2(sample_data.where(sample_data > 0))
    return result


def filter_and_transform(
    data: pd.DataFrame,
    sample_columns: Optional[List[str]] = None,
    max_missing: Optional[int] = 30,
    max_missing_fraction: Optional[float] = None,
    pool_pattern: Optional[str] = "Pool",
    missing_markers: Tuple = (0,),
    verbose: bool = True,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Missingness & transform stage: returns (filtered, log2_filtered).
    """
    if sample_columns is None:
        sample_columns = get_sample_columns(data)

    marked = mark_missing_values(data, sample_columns, missing_markers)
    filtered = filter_proteins_by_missingness(
        marked,
        sample_columns,
        max_missing=max_missing,
        max_missing_fraction=max_missing_fraction,
        pool_pattern=pool_pattern,
        verbose=verbose,
    )
    return filtered, log2_transform(filtered, sample_columns)


def to_sample_major(data: pd.DataFrame, sample_columns: List[str], protein_col: str = "Protein") -> pd.DataFrame:
    """
    Transpose protein-major data to sample-major (rows = samples, columns = proteins).

    Row and column order follow the input exactly.
    """
    values = data[sample_columns].to_numpy(dtype=float).T
    return pd.DataFrame(
        values,
        index=pd.Index(list(sample_columns), name="Sample"),
        columns=pd.Index(data[protein_col].tolist(), name=protein_col),
    )


def to_protein_major(sample_major: pd.DataFrame, protein_col: str = "Protein") -> pd.DataFrame:
    """Inverse of to_sample_major (annotation columns are not restored)."""
    result = sample_major.T.copy()
    result.index.name = None
    result.columns = [str(c) for c in result.columns]
    result.insert(0, protein_col, list(sample_major.columns))
    return result.reset_index(drop=True)


def to_long_format(data: pd.DataFrame, sample_columns: List[str], protein_col: str = "Protein") -> pd.DataFrame:
    """
    Convert protein-major data into (Protein, Sample, Intensity) triples.

    Rows are ordered protein-first, then sample, in input order.
    """
    values = data[sample_columns].to_numpy(dtype=float)
    proteins = data[protein_col].to_numpy()
    long_df = pd.DataFrame({
        "Protein": np.repeat(proteins, len(sample_columns)),
        "Sample": np.tile(np.asarray(sample_columns, dtype=object), len(proteins)),
        "Intensity": values.reshape(-1),
    })
    return long_df


def impute_protein_minimum(sample_major: pd.DataFrame) -> pd.DataFrame:
    """
    Replace each protein's missing values with that protein's minimum observed value.

    Operates on sample-major data (columns = proteins). Proteins with no
    observed value stay entirely NaN. This is a lossy, low-biased choice kept
    for compatibility with published results.
    """
    protein_minimum = sample_major.min(axis=0, skipna=True)
    return sample_major.fillna(protein_minimum)
