"""
Ranking Metric Module

Turns one contrast of the differential expression table into the ranked
gene list consumed by GSEA prerank:

    score = -log10(padj) * sign(logFC)

averaged over all accessions that map to the same gene identifier.
"""

import pandas as pd
import numpy as np
from typing import Optional

from .idmapping import identifier_to_str


def build_ranking_metric(
    de_results: pd.DataFrame,
    contrast: str,
    id_mapping: pd.DataFrame,
    padj_floor: float = 1e-300,
    source_column: Optional[str] = None,
    target_column: Optional[str] = None,
    verbose: bool = True
) -> pd.Series:
    """
    Build the signed-significance ranked gene list for one contrast.

    Parameters:
    -----------
    de_results : pd.DataFrame
        Output of run_differential_expression()
    contrast : str
        Contrast label, e.g. 'Resilient_over_Dementia-AD'
    id_mapping : pd.DataFrame
        Accession -> gene identifier table (many-to-many allowed)
    padj_floor : float
        Adjusted p-values below this are raised to it so the score stays finite
    source_column, target_column : str, optional
        Mapping columns; default to the first and second column

    Returns:
    --------
    pd.Series named 'score', indexed by gene identifier, one entry per
    identifier, sorted by descending score with ties broken by identifier.

    Raises:
    -------
    ValueError: If the contrast is not present in de_results
    """
    available = list(pd.unique(de_results["Contrast"]))
    if contrast not in available:
        raise ValueError(f"Contrast '{contrast}' not found. Available contrasts: {available}")

    source_column = source_column or id_mapping.columns[0]
    target_column = target_column or id_mapping.columns[1]

    subset = de_results.loc[de_results["Contrast"] == contrast, ["Protein", "logFC", "padj"]]

    mapping = id_mapping[[source_column, target_column]].dropna().copy()
    mapping.columns = ["Protein", "Identifier"]
    for column in mapping.columns:
        mapping[column] = mapping[column].map(identifier_to_str)
    mapping = mapping[mapping["Identifier"] != ""].drop_duplicates()

    merged = subset.assign(Protein=subset["Protein"].astype(str)).merge(
        mapping, on="Protein", how="left"
    )
    usable = merged.dropna(subset=["Identifier", "logFC", "padj"]).copy()

    usable["score"] = -np.log10(usable["padj"].clip(lower=padj_floor)) * np.sign(usable["logFC"])

    ranked = usable.groupby("Identifier")["score"].mean()
    order = sorted(ranked.index, key=lambda identifier: (-ranked[identifier], identifier))
    ranked = ranked.loc[order]
    ranked.index.name = "Identifier"
    ranked.name = "score"

    if verbose:
        print(f"Ranked list for {contrast}: {len(ranked)} identifiers "
              f"from {len(subset)} proteins ({len(subset) - usable['Protein'].nunique()} unmapped or NA)")

    return ranked


def ranked_list_to_frame(ranked: pd.Series) -> pd.DataFrame:
    """Two-column (Identifier, score) frame for export or gseapy input."""
    frame = ranked.reset_index()
    frame.columns = ["Identifier", "score"]
    return frame
