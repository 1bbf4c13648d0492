"""
Organelle Enrichment Module

Tests whether the proteins observed in a dataset are over- or
under-represented in reference subcellular compartments (organelles)
relative to the whole human proteome.

For every category the observed overlap is compared against the
whole-dataset background with a two-sided Fisher's exact test, p-values are
Bonferroni corrected across categories, and each category is labelled as
Enriched or Depleted with a significance tier.

Author: MacCoss Lab
Version: 1.0.0
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from scipy.stats import fisher_exact
from typing import Dict, Iterable, List, Optional, Tuple

from .panels import build_enrichment_counts
from .statistical_analysis import adjust_pvalues


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class EnrichmentConfig:
    """Configuration for organelle enrichment statistics.

    Attributes
    ----------
    background_label : str
        Name of the whole-dataset pseudo-category used as denominator
    correction_method : str
        statsmodels multipletests method applied across categories
    alternative : str
        Alternative hypothesis for Fisher's exact test
    significance_tiers : List[Tuple[float, str]]
        (threshold, label) pairs checked in order against the adjusted p-value

    Examples
    --------
    >>> config = EnrichmentConfig()
    >>> config.correction_method = 'fdr_bh'
    """

    background_label: str = "background"
    correction_method: str = "bonferroni"
    alternative: str = "two-sided"
    significance_tiers: List[Tuple[float, str]] = field(default_factory=lambda: [
        (0.0001, "****"),
        (0.001, "***"),
        (0.01, "**"),
        (0.05, "*"),
    ])


ENRICHMENT_COLUMNS = [
    "category",
    "n_protein",
    "in_set",
    "proportion",
    "fold_enrichment",
    "p.value",
    "p.adj",
    "direction",
    "significance",
]


def significance_label(p_value: float, config: Optional[EnrichmentConfig] = None) -> str:
    """Star label for an adjusted p-value ('' when not significant or missing)."""
    if config is None:
        config = EnrichmentConfig()
    if p_value is None or pd.isna(p_value):
        return ""
    for threshold, label in config.significance_tiers:
        if p_value <= threshold:
            return label
    return ""


def compute_enrichment_statistics(
    counts: pd.DataFrame,
    config: Optional[EnrichmentConfig] = None
) -> pd.DataFrame:
    """
    Compute proportions, fold enrichment, exact-test p-values and labels.

    Parameters
    ----------
    counts : pd.DataFrame
        Output of panels.build_enrichment_counts(): columns category,
        n_protein, in_set, including the background row
    config : EnrichmentConfig, optional
        Configuration object

    Returns
    -------
    pd.DataFrame
        One row per category (background excluded), columns ENRICHMENT_COLUMNS,
        sorted case-insensitively by category.

    Notes
    -----
    Each test uses the 2x2 table
    [[background.n_protein, background.in_set], [category.n_protein, category.in_set]].
    """
    if config is None:
        config = EnrichmentConfig()

    required = {"category", "n_protein", "in_set"}
    missing = required - set(counts.columns)
    if missing:
        raise ValueError(f"Counts table is missing columns: {sorted(missing)}")

    indexed = counts.set_index("category")
    if config.background_label not in indexed.index:
        raise ValueError(
            f"Counts table has no '{config.background_label}' row to use as background"
        )

    background = indexed.loc[config.background_label]
    background_n = int(background["n_protein"])
    background_in = int(background["in_set"])
    background_proportion = background_in / background_n * 100 if background_n > 0 else np.nan

    categories = indexed.drop(index=config.background_label)

    rows = []
    for category, row in categories.iterrows():
        n_protein = int(row["n_protein"])
        in_set = int(row["in_set"])

        proportion = in_set / n_protein * 100 if n_protein > 0 else np.nan
        if background_proportion and not pd.isna(background_proportion):
            fold_enrichment = proportion / background_proportion
        else:
            fold_enrichment = np.nan

        _, p_value = fisher_exact(
            [[background_n, background_in], [n_protein, in_set]],
            alternative=config.alternative,
        )

        rows.append({
            "category": category,
            "n_protein": n_protein,
            "in_set": in_set,
            "proportion": proportion,
            "fold_enrichment": fold_enrichment,
            "p.value": float(p_value),
        })

    result = pd.DataFrame(rows, columns=ENRICHMENT_COLUMNS[:6])
    if result.empty:
        return pd.DataFrame(columns=ENRICHMENT_COLUMNS)

    result["p.adj"] = adjust_pvalues(result["p.value"], method=config.correction_method).to_numpy()
    result["direction"] = np.where(result["fold_enrichment"] > 1, "Enriched", "Depleted")
    result["significance"] = result["p.adj"].apply(lambda p: significance_label(p, config))

    order = sorted(range(len(result)), key=lambda i: (str(result.at[i, "category"]).lower(),
                                                      str(result.at[i, "category"])))
    return result.iloc[order].reset_index(drop=True)[ENRICHMENT_COLUMNS]


def run_organelle_enrichment(
    observed_ids: Iterable[str],
    reference_lists: Dict[str, Iterable[str]],
    proteome_reference: Iterable[str],
    config: Optional[EnrichmentConfig] = None,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Run the complete organelle enrichment analysis.

    Convenience function combining panels.build_enrichment_counts() and
    compute_enrichment_statistics().

    Examples
    --------
    >>> enrichment = run_organelle_enrichment(
    ...     normalized['Gene'], organelle_lists, proteome_reference
    ... )
    >>> enrichment[enrichment['significance'] != '']
    """
    if config is None:
        config = EnrichmentConfig()

    counts = build_enrichment_counts(
        observed_ids, reference_lists, proteome_reference,
        background_label=config.background_label,
    )

    if verbose:
        background = counts.iloc[0]
        print("=== ORGANELLE ENRICHMENT ===\n")
        print(f"Reference proteome: {background['n_protein']} identifiers")
        print(f"Observed identifiers: {background['in_set']}")
        print(f"Categories tested: {len(counts) - 1}")

    result = compute_enrichment_statistics(counts, config)

    if verbose:
        n_significant = (result["significance"] != "").sum()
        print(f"✓ Significant categories (p.adj <= 0.05): {n_significant}")

    return result
