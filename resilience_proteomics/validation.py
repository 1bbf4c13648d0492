"""
Data Validation Module for Resilience Proteomics Toolkit

Functions for validating abundance/metadata consistency before any statistics
are computed, with interpretable error messages naming the identifiers that
do not line up.
"""

import pandas as pd
from typing import Dict, List, Optional, Iterable


class DataIntegrityError(Exception):
    """Base exception for fatal input integrity problems."""
    def __init__(self, message):
        super().__init__(message)


class SampleMatchingError(DataIntegrityError):
    """Sample codes in the abundance table and the metadata do not match."""
    def __init__(self, message):
        super().__init__(message)


class DuplicateProteinError(DataIntegrityError):
    """Protein identifiers are duplicated where a join requires uniqueness."""
    def __init__(self, message):
        super().__init__(message)


def _preview(items: List[str], limit: int = 5) -> str:
    shown = list(items[:limit])
    return f"{shown}{'...' if len(items) > limit else ''}"


def validate_sample_consistency(
    sample_columns: Iterable[str],
    metadata_samples: Iterable[str],
    ignored_samples: Optional[Iterable[str]] = None,
    verbose: bool = True
) -> Dict:
    """
    Validate that the abundance table and the sample metadata describe the
    same set of samples.

    Parameters:
    -----------
    sample_columns : Iterable[str]
        Sample columns of the abundance table
    metadata_samples : Iterable[str]
        Sample codes from the metadata table
    ignored_samples : Iterable[str], optional
        Samples allowed to be absent from the metadata (e.g. pooled channels)
    verbose : bool, default True
        Whether to print detailed validation results

    Returns:
    --------
    Dict containing validation results and diagnostic information
    """
    sample_columns = [str(s) for s in sample_columns]
    metadata_samples = [str(s) for s in metadata_samples]
    ignored = set(str(s) for s in ignored_samples) if ignored_samples else set()

    results = {
        'is_valid': True,
        'errors': [],
        'warnings': [],
        'diagnostics': {}
    }

    metadata_set = set(metadata_samples)
    data_set = set(sample_columns)

    missing_from_metadata = [s for s in sample_columns if s not in metadata_set and s not in ignored]
    missing_from_data = [s for s in metadata_samples if s not in data_set]
    duplicated_metadata = sorted(
        pd.Series(metadata_samples)[pd.Series(metadata_samples).duplicated()].unique().tolist()
    )

    if missing_from_metadata:
        results['errors'].append(
            f"Found {len(missing_from_metadata)} samples in the abundance table with no metadata: "
            f"{_preview(missing_from_metadata)}"
        )
    if missing_from_data:
        results['errors'].append(
            f"Found {len(missing_from_data)} samples in metadata with no abundance column: "
            f"{_preview(missing_from_data)}"
        )
    if duplicated_metadata:
        results['errors'].append(
            f"Sample codes duplicated in metadata: {_preview(duplicated_metadata)}"
        )
    results['is_valid'] = not results['errors']

    results['diagnostics'] = {
        'total_data_samples': len(sample_columns),
        'total_metadata_samples': len(metadata_samples),
        'ignored_samples': sorted(ignored & data_set),
        'samples_missing_from_metadata': missing_from_metadata,
        'samples_missing_from_data': missing_from_data,
        'duplicated_metadata_samples': duplicated_metadata,
        'matched_samples': [s for s in sample_columns if s in metadata_set],
    }

    if verbose:
        diag = results['diagnostics']
        print("SAMPLE CONSISTENCY VALIDATION")
        print("=" * 50)
        print(f"Abundance samples: {diag['total_data_samples']}")
        print(f"Metadata samples: {diag['total_metadata_samples']}")
        print(f"  Matched: {len(diag['matched_samples'])}")
        if diag['ignored_samples']:
            print(f"  Ignored (pooled): {len(diag['ignored_samples'])}")
        if results['errors']:
            print("\nVALIDATION FAILED")
            for error in results['errors']:
                print(f"  ERROR: {error}")
        else:
            print("\n✓ VALIDATION PASSED")

    return results


def require_sample_consistency(
    sample_columns: Iterable[str],
    metadata_samples: Iterable[str],
    ignored_samples: Optional[Iterable[str]] = None,
    verbose: bool = False
) -> Dict:
    """Validate sample consistency and raise SampleMatchingError on failure."""
    results = validate_sample_consistency(
        sample_columns, metadata_samples, ignored_samples, verbose=verbose
    )
    if not results['is_valid']:
        error_summary = "\n".join(results['errors'])
        raise SampleMatchingError(f"Sample matching validation failed:\n{error_summary}")
    return results


def validate_unique_proteins(data: pd.DataFrame, protein_col: str = "Protein") -> None:
    """
    Raise DuplicateProteinError if protein identifiers are not unique.

    Parameters:
    -----------
    data : pd.DataFrame
        Protein-major table
    protein_col : str
        Column holding the stable protein identifier
    """
    if protein_col not in data.columns:
        raise ValueError(f"Protein identifier column '{protein_col}' not found")

    duplicated = data.loc[data[protein_col].duplicated(keep=False), protein_col]
    if len(duplicated) > 0:
        dup_ids = sorted(duplicated.astype(str).unique().tolist())
        raise DuplicateProteinError(
            f"Found {len(dup_ids)} duplicated protein identifiers in '{protein_col}': "
            f"{_preview(dup_ids)}"
        )


def generate_sample_matching_diagnostic_report(
    validation_results: Dict,
    output_file: Optional[str] = None
) -> str:
    """
    Generate a detailed diagnostic report for sample matching issues.

    Parameters:
    -----------
    validation_results : Dict
        Results from validate_sample_consistency
    output_file : str, optional
        Path to save the report

    Returns:
    --------
    str: Formatted diagnostic report
    """
    diag = validation_results['diagnostics']

    report = []
    report.append("SAMPLE MATCHING DIAGNOSTIC REPORT")
    report.append("=" * 50)
    report.append(f"Generated on: {pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append("")

    report.append("SUMMARY STATISTICS")
    report.append("-" * 30)
    report.append(f"Samples in abundance table: {diag['total_data_samples']}")
    report.append(f"Samples in metadata: {diag['total_metadata_samples']}")
    report.append(f"Matched samples: {len(diag['matched_samples'])}")
    if diag['total_data_samples'] > 0:
        match_rate = len(diag['matched_samples']) / diag['total_data_samples'] * 100
        report.append(f"Match rate: {match_rate:.1f}%")
    report.append("")

    for title, key in [
        ("SAMPLES WITHOUT METADATA", 'samples_missing_from_metadata'),
        ("METADATA SAMPLES WITHOUT ABUNDANCE COLUMN", 'samples_missing_from_data'),
        ("DUPLICATED METADATA SAMPLE CODES", 'duplicated_metadata_samples'),
    ]:
        if diag[key]:
            report.append(title)
            report.append("-" * 30)
            for i, sample in enumerate(diag[key][:10]):
                report.append(f"{i+1}. {sample}")
            if len(diag[key]) > 10:
                report.append(f"... and {len(diag[key]) - 10} more")
            report.append("")

    report.append("RECOMMENDATIONS")
    report.append("-" * 30)
    if diag['samples_missing_from_metadata'] or diag['samples_missing_from_data']:
        report.append("1. Check that sample codes in metadata match abundance column names exactly")
        report.append("2. Check for pooled reference channels that should be excluded")
    if diag['duplicated_metadata_samples']:
        report.append("3. Remove duplicated sample rows from the metadata table")
    if validation_results['is_valid']:
        report.append("✓ All samples successfully matched - no action needed")

    report_text = "\n".join(report)

    if output_file:
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(report_text)
        print(f"Diagnostic report saved to: {output_file}")

    return report_text
