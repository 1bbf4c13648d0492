"""
Gene Set Enrichment Analysis Module

Runs preranked GSEA (gseapy.prerank) on the ranked gene lists produced by
ranking.build_ranking_metric() and normalises the result table to:

    ID, Description, setSize, enrichmentScore, NES, pvalue, p.adjust

The permutation algorithm itself is gseapy's; this module only prepares its
input and reshapes its output.

Author: MacCoss Lab
Version: 1.0.0
"""

import re
import pandas as pd
import numpy as np
import gseapy as gp
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from .ranking import ranked_list_to_frame


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class GSEAConfig:
    """Configuration for preranked gene set enrichment analysis.

    Attributes
    ----------
    gene_set_libraries : List[str]
        Enrichr library names fetched with gseapy.get_library()
    organism : str
        Organism passed to gseapy.get_library()
    min_size, max_size : int
        Gene set size limits after intersecting with the ranked list
    permutation_num : int
        Number of gene-set permutations
    seed : int
        Random seed for reproducible permutations
    threads : int
        Worker threads used by gseapy

    Examples
    --------
    >>> config = GSEAConfig()
    >>> config.gene_set_libraries = ['KEGG_2021_Human']
    >>> config.permutation_num = 10000
    """

    gene_set_libraries: List[str] = field(default_factory=lambda: [
        'GO_Biological_Process_2023',
        'GO_Cellular_Component_2023',
        'GO_Molecular_Function_2023',
        'KEGG_2021_Human',
        'Reactome_2022',
    ])
    organism: str = 'Human'
    min_size: int = 10
    max_size: int = 500
    permutation_num: int = 1000
    seed: int = 42
    threads: int = 1


GSEA_COLUMNS = ['ID', 'Description', 'setSize', 'enrichmentScore', 'NES', 'pvalue', 'p.adjust']


def parse_gsea_term(term: str) -> Tuple[str, str]:
    """
    Split a gene set name into (ID, Description).

    'Cell cycle (GO:0007049)' -> ('GO:0007049', 'Cell cycle'). Names without
    a GO identifier use the full name for both.
    """
    term = str(term).strip()
    match = re.search(r'\s*\((GO:\d+)\)\s*$', term)
    if match:
        return match.group(1), term[:match.start()].strip()
    return term, term


def _set_size_from_tag(tag) -> float:
    """Gene set size from gseapy's 'Tag %' column ('hits/size')."""
    if pd.isna(tag) or '/' not in str(tag):
        return np.nan
    return float(str(tag).split('/')[1])


def parse_prerank_results(res2d: pd.DataFrame, library: Optional[str] = None) -> pd.DataFrame:
    """
    Convert gseapy's res2d table to the GSEA result columns.

    Parameters
    ----------
    res2d : pd.DataFrame
        Result table of gseapy.prerank() (columns Term, ES, NES, NOM p-val,
        FDR q-val, Tag %, ...)
    library : str, optional
        Library name added as a 'Library' column

    Returns
    -------
    pd.DataFrame
        Columns GSEA_COLUMNS (+ Library), sorted by p.adjust then pvalue.
    """
    columns = GSEA_COLUMNS + (['Library'] if library else [])
    if res2d is None or len(res2d) == 0:
        return pd.DataFrame(columns=columns)

    parsed_terms = res2d['Term'].apply(parse_gsea_term)
    result = pd.DataFrame({
        'ID': parsed_terms.str[0].to_numpy(),
        'Description': parsed_terms.str[1].to_numpy(),
        'setSize': res2d['Tag %'].apply(_set_size_from_tag).to_numpy() if 'Tag %' in res2d else np.nan,
        'enrichmentScore': pd.to_numeric(res2d['ES'], errors='coerce').to_numpy(),
        'NES': pd.to_numeric(res2d['NES'], errors='coerce').to_numpy(),
        'pvalue': pd.to_numeric(res2d['NOM p-val'], errors='coerce').to_numpy(),
        'p.adjust': pd.to_numeric(res2d['FDR q-val'], errors='coerce').to_numpy(),
    })
    if library:
        result['Library'] = library

    return result.sort_values(['p.adjust', 'pvalue'], kind='mergesort').reset_index(drop=True)[columns]


def run_gsea(
    ranked: pd.Series,
    gene_sets: Union[str, Dict[str, List[str]]],
    config: Optional[GSEAConfig] = None,
    library: Optional[str] = None,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Run preranked GSEA on one ranked gene list.

    Parameters
    ----------
    ranked : pd.Series
        Ranked gene list (index = gene identifier, values = score)
    gene_sets : str or dict
        Gene set library name or {set name: [genes]}
    config : GSEAConfig, optional
        Configuration object. Uses defaults if not provided.
    library : str, optional
        Library label for the output

    Returns
    -------
    pd.DataFrame
        Normalised GSEA results (empty if the ranked list is empty)
    """
    if config is None:
        config = GSEAConfig()

    if ranked is None or len(ranked) == 0:
        if verbose:
            print("  Warning: Empty ranked list, skipping GSEA")
        return pd.DataFrame(columns=GSEA_COLUMNS + (['Library'] if library else []))

    if verbose:
        print(f"Running GSEA prerank on {len(ranked)} genes"
              f"{f' against {library}' if library else ''}...")

    pre_res = gp.prerank(
        rnk=ranked_list_to_frame(ranked),
        gene_sets=gene_sets,
        outdir=None,
        min_size=config.min_size,
        max_size=config.max_size,
        permutation_num=config.permutation_num,
        seed=config.seed,
        threads=config.threads,
        verbose=False,
    )

    result = parse_prerank_results(pre_res.res2d, library)

    if verbose:
        print(f"  ✓ {len(result)} gene sets tested, "
              f"{(result['p.adjust'] <= 0.05).sum()} with p.adjust <= 0.05")

    return result


def run_gsea_by_library(
    ranked: pd.Series,
    config: Optional[GSEAConfig] = None,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Run GSEA against every configured library and merge the results.

    Libraries that cannot be fetched or tested are reported and skipped.

    Examples
    --------
    >>> ranked = build_ranking_metric(de, 'Resilient_over_Dementia-AD', mapping)
    >>> gsea = run_gsea_by_library(ranked)
    >>> gsea[gsea['p.adjust'] < 0.05]
    """
    if config is None:
        config = GSEAConfig()

    if verbose:
        print("=" * 60)
        print("GENE SET ENRICHMENT ANALYSIS")
        print("=" * 60)

    results = []
    for library in config.gene_set_libraries:
        try:
            gene_sets = gp.get_library(name=library, organism=config.organism)
            results.append(run_gsea(ranked, gene_sets, config, library=library, verbose=verbose))
        except Exception as e:
            print(f"  Error running GSEA for {library}: {e}")
            continue

    results = [r for r in results if len(r) > 0]
    if not results:
        return pd.DataFrame(columns=GSEA_COLUMNS + ['Library'])
    return pd.concat(results, ignore_index=True)
