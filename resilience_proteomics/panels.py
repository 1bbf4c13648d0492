"""
Reference Panel Module

Restricts the protein set to a reference inclusion list (e.g. the synaptic
protein panel) and builds the per-category overlap counts that feed the
organelle enrichment statistics.
"""

import pandas as pd
from typing import Dict, Iterable, Set


def _clean_identifiers(values: Iterable) -> Set[str]:
    """Strip identifiers and drop missing/empty entries."""
    cleaned = set()
    for value in values:
        if pd.isna(value):
            continue
        text = str(value).strip()
        if text and text.lower() not in ("nan", "none"):
            cleaned.add(text)
    return cleaned


def reference_lists_from_table(table: pd.DataFrame) -> Dict[str, Set[str]]:
    """
    Convert a ragged table of named lists into {category: set(identifiers)}.

    Each column is one category; shorter columns are padded with missing
    values, which are dropped.
    """
    return {str(column): _clean_identifiers(table[column]) for column in table.columns}


def filter_to_panel(
    data: pd.DataFrame,
    panel_ids: Iterable[str],
    id_column: str = "Gene",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Keep only proteins whose identifier is on the reference panel.

    Parameters:
    -----------
    data : pd.DataFrame
        Protein-major data
    panel_ids : Iterable[str]
        Inclusion list (e.g. synaptic gene symbols)
    id_column : str
        Column of data matched against the panel

    Returns:
    --------
    pd.DataFrame : Filtered data, original row order preserved
    """
    if id_column not in data.columns:
        raise ValueError(f"Column '{id_column}' not found in data")

    panel = _clean_identifiers(panel_ids)
    identifiers = data[id_column].astype(str).str.strip()
    filtered = data[identifiers.isin(panel) & data[id_column].notna()].copy()

    if verbose:
        print("=== FILTERING TO REFERENCE PANEL ===\n")
        print(f"Panel size: {len(panel)}")
        print(f"Proteins before: {len(data)}")
        print(f"Proteins on panel: {len(filtered)}")

    return filtered


def build_enrichment_counts(
    observed_ids: Iterable[str],
    reference_lists: Dict[str, Iterable[str]],
    proteome_reference: Iterable[str],
    background_label: str = "background",
) -> pd.DataFrame:
    """
    Build per-category overlap counts plus the whole-dataset background row.

    Parameters:
    -----------
    observed_ids : Iterable[str]
        Identifiers observed in the processed dataset
    reference_lists : Dict[str, Iterable[str]]
        Category name -> reference member identifiers
    proteome_reference : Iterable[str]
        Whole-proteome reference identifiers
    background_label : str
        Name of the background pseudo-category

    Returns:
    --------
    pd.DataFrame with columns category, n_protein, in_set. Categories are
    sorted case-insensitively; the background row comes first.
    """
    observed = _clean_identifiers(observed_ids)
    reference = _clean_identifiers(proteome_reference)

    if background_label in reference_lists:
        raise ValueError(f"Category name '{background_label}' is reserved for the background row")

    rows = [{
        "category": background_label,
        "n_protein": len(reference),
        "in_set": len(observed),
    }]

    for category in sorted(reference_lists, key=lambda name: (name.lower(), name)):
        members = _clean_identifiers(reference_lists[category])
        rows.append({
            "category": category,
            "n_protein": len(members),
            "in_set": len(observed & members),
        })

    return pd.DataFrame(rows, columns=["category", "n_protein", "in_set"])
