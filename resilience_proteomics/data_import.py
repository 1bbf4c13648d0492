"""
Data Import Module for Resilience Proteomics Toolkit

Functions for loading protein abundance tables, sample metadata and the
reference tables (organelle lists, proteome reference, identifier mapping)
consumed by the analysis stages.
"""

import pandas as pd
import re
import os
from typing import Dict, List, Optional, Set


def _detect_separator(file_path: str) -> str:
    """Pick a column separator from the file extension (.tsv/.txt -> tab)."""
    extension = os.path.splitext(file_path)[1].lower()
    return "\t" if extension in (".tsv", ".txt", ".tab") else ","


def _read_table(file_path: str, file_type: str, **kwargs) -> pd.DataFrame:
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"{file_type.title()} file not found: {file_path}")

    try:
        table = pd.read_csv(file_path, sep=_detect_separator(file_path), **kwargs)
    except Exception as e:
        raise ValueError(f"Error loading {file_type} file: {e}") from e

    print(f"✓ Loaded {file_type}: {table.shape}")
    return table


def load_abundance_table(file_path: str) -> pd.DataFrame:
    """
    Load a protein abundance table (one row per protein, one column per sample).

    Parameters:
    -----------
    file_path : str
        Path to CSV/TSV abundance file

    Returns:
    --------
    pd.DataFrame : Raw abundance table
    """
    return _read_table(file_path, "abundance table")


def load_sample_metadata(file_path: str, sample_column: str = "Sample") -> pd.DataFrame:
    """
    Load sample metadata keyed by sample code.

    The sample code column is read as text so codes such as "001" survive.
    """
    metadata = _read_table(file_path, "sample metadata", dtype={sample_column: str})
    if sample_column not in metadata.columns:
        raise ValueError(
            f"Sample column '{sample_column}' not found in metadata. "
            f"Available columns: {list(metadata.columns)}"
        )
    metadata[sample_column] = metadata[sample_column].str.strip()
    return metadata


def load_reference_lists(file_path: str) -> pd.DataFrame:
    """
    Load a ragged table of named reference lists (one column per category,
    padded with missing values). Convert with panels.reference_lists_from_table().
    """
    return _read_table(file_path, "reference lists", dtype=str)


def load_proteome_reference(file_path: str, column: Optional[str] = None) -> Set[str]:
    """
    Load the whole-proteome reference as a set of unique identifiers.

    Parameters:
    -----------
    file_path : str
        Path to a one-column table of identifiers
    column : str, optional
        Column to use; defaults to the first column

    Returns:
    --------
    Set[str] : Unique identifiers
    """
    table = _read_table(file_path, "proteome reference", dtype=str)
    column = column or table.columns[0]
    identifiers = table[column].dropna().astype(str).str.strip()
    identifiers = identifiers[identifiers != ""]
    reference = set(identifiers)
    print(f"  Unique reference identifiers: {len(reference)}")
    return reference


def load_id_mapping(file_path: str) -> pd.DataFrame:
    """Load a two-column identifier mapping table (source -> target)."""
    table = _read_table(file_path, "identifier mapping", dtype=str)
    if table.shape[1] < 2:
        raise ValueError("Identifier mapping table needs at least two columns")
    return table


def parse_uniprot_identifier(protein_id: str) -> Dict[str, str]:
    """
    Parse UniProt identifier from protein column.

    Handles formats like: sp|P12345|PROT_HUMAN -> P12345

    Parameters:
    -----------
    protein_id : str
        Protein identifier string

    Returns:
    --------
    dict with keys: accession, database, entry_name
    """
    if pd.isna(protein_id):
        return {'accession': '', 'database': '', 'entry_name': ''}

    protein_id = str(protein_id).strip()

    # Pattern: sp|P12345|PROT_HUMAN or tr|Q9ABC1|Q9ABC1_MOUSE
    match = re.match(r'^(sp|tr)\|([A-Z0-9]+(?:-\d+)?)\|([A-Z0-9_]+)$', protein_id)
    if match:
        db = 'SwissProt' if match.group(1) == 'sp' else 'TrEMBL'
        return {
            'accession': match.group(2),
            'database': db,
            'entry_name': match.group(3)
        }

    acc_match = re.search(r'([OPQ][0-9][A-Z0-9]{3}[0-9]|[A-NR-Z][0-9](?:[A-Z][A-Z0-9]{2}[0-9]){1,2})(-\d+)?', protein_id)
    if acc_match:
        return {
            'accession': acc_match.group(0),
            'database': '',
            'entry_name': ''
        }

    return {'accession': '', 'database': '', 'entry_name': ''}


def identify_sample_columns(data: pd.DataFrame, metadata_samples: List[str]) -> List[str]:
    """
    Identify abundance columns that correspond to metadata sample codes.

    Exact matches only; column order of the abundance table is preserved.
    """
    metadata_set = set(str(s) for s in metadata_samples)
    sample_columns = [col for col in data.columns if str(col) in metadata_set]
    print(f"Identified {len(sample_columns)} sample columns")
    return sample_columns
