"""
Pipeline Module

Runs the analysis stages end to end:

    missingness filter -> normalization
        -> organelle enrichment
        -> synaptic panel -> differential expression -> ranked gene lists

GSEA is not run here; the ranked lists returned are the input to
gsea.run_gsea() / gsea.run_gsea_by_library().
"""

import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .enrichment import EnrichmentConfig, run_organelle_enrichment
from .gsea import GSEAConfig
from .normalization import normalize_abundance, calculate_normalization_stats
from .panels import filter_to_panel
from .preprocessing import filter_and_transform, get_sample_columns, identify_pooled_samples
from .ranking import build_ranking_metric
from .statistical_analysis import (
    DifferentialConfig,
    run_differential_expression,
    summarize_differential_results,
)
from .validation import require_sample_consistency


@dataclass
class PipelineConfig:
    """Configuration bundling every stage of the pipeline.

    Attributes
    ----------
    max_missing : int
        Maximum missing values per protein across non-pooled samples
    max_missing_fraction : float, optional
        Fractional alternative to max_missing
    pool_pattern : str
        Name pattern of pooled reference channels
    missing_markers : tuple
        Intensity values that mean "not quantified"
    panel_id_column : str
        Column matched against the synaptic panel
    organelle_id_column : str
        Column used as observed identifiers for organelle enrichment
    ranking_contrasts : List[str], optional
        Contrasts turned into ranked lists (None = every contrast)
    padj_floor : float
        Floor applied to padj before -log10 in the ranking metric
    enrichment, differential, gsea
        Stage configurations

    Examples
    --------
    >>> config = PipelineConfig()
    >>> config.ranking_contrasts = ['Resilient_over_Dementia-AD']
    >>> config.differential.covariates = ['Sex', 'AgeAtDeath']
    """

    max_missing: Optional[int] = 30
    max_missing_fraction: Optional[float] = None
    pool_pattern: Optional[str] = "Pool"
    missing_markers: Tuple = (0,)

    panel_id_column: str = "Gene"
    organelle_id_column: str = "Gene"

    ranking_contrasts: Optional[List[str]] = None
    padj_floor: float = 1e-300

    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    differential: DifferentialConfig = field(default_factory=DifferentialConfig)
    gsea: GSEAConfig = field(default_factory=GSEAConfig)

    output_prefix: str = "resilience_proteomics"
    verbose: bool = True


def _step(number: int, title: str, verbose: bool):
    if verbose:
        print("\n" + "=" * 60)
        print(f"STEP {number}: {title}")
        print("=" * 60)


def run_proteomics_pipeline(
    abundance: pd.DataFrame,
    metadata: pd.DataFrame,
    organelle_lists: Optional[Dict[str, Iterable[str]]] = None,
    proteome_reference: Optional[Iterable[str]] = None,
    synaptic_panel: Optional[Iterable[str]] = None,
    id_mapping: Optional[pd.DataFrame] = None,
    config: Optional[PipelineConfig] = None,
) -> Dict[str, Any]:
    """
    Run the complete resilience proteomics analysis.

    Parameters:
    -----------
    abundance : pd.DataFrame
        Standardized protein-major intensities (Protein, Gene, Description,
        samples), see preprocessing.create_standard_data_structure()
    metadata : pd.DataFrame
        Sample metadata (sample code, diagnosis, covariates)
    organelle_lists : dict, optional
        Organelle name -> reference identifiers; enrichment is skipped if None
    proteome_reference : Iterable[str], optional
        Whole-proteome reference identifiers (required with organelle_lists)
    synaptic_panel : Iterable[str], optional
        Inclusion list applied before modelling; all proteins are modelled if None
    id_mapping : pd.DataFrame, optional
        Accession -> gene identifier table; ranked lists are skipped if None
    config : PipelineConfig, optional
        Configuration object

    Returns:
    --------
    dict with keys filtered, log2_filtered, normalized, normalization_stats,
    enrichment, model_input, differential, summary, ranked_lists

    Raises:
    -------
    SampleMatchingError: If abundance and metadata sample codes differ; no
    stage is run
    """
    if config is None:
        config = PipelineConfig()
    verbose = config.verbose

    if organelle_lists is not None and proteome_reference is None:
        raise ValueError("proteome_reference is required for organelle enrichment")

    sample_columns = get_sample_columns(abundance)

    # Sample codes must match before any stage runs
    sample_column = config.differential.sample_column
    if sample_column not in metadata.columns:
        raise ValueError(f"Sample column '{sample_column}' not found in metadata")
    pooled = identify_pooled_samples(sample_columns, config.pool_pattern)
    metadata_samples = metadata[sample_column].astype(str).str.strip()
    require_sample_consistency(
        sample_columns,
        metadata_samples[~metadata_samples.isin(pooled)],
        ignored_samples=pooled,
        verbose=verbose,
    )

    results: Dict[str, Any] = {
        "enrichment": None,
        "ranked_lists": {},
    }

    _step(1, "MISSINGNESS FILTER AND LOG2 TRANSFORM", verbose)
    filtered, log2_filtered = filter_and_transform(
        abundance,
        sample_columns,
        max_missing=config.max_missing,
        max_missing_fraction=config.max_missing_fraction,
        pool_pattern=config.pool_pattern,
        missing_markers=config.missing_markers,
        verbose=verbose,
    )
    results["filtered"] = filtered
    results["log2_filtered"] = log2_filtered

    _step(2, "NORMALIZATION", verbose)
    normalized = normalize_abundance(filtered, sample_columns, verbose=verbose)
    results["normalized"] = normalized
    results["normalization_stats"] = calculate_normalization_stats(
        filtered, normalized, sample_columns
    )
    if verbose:
        stats = results["normalization_stats"]
        print(f"Median range (log2): {stats['original_median_range']:.3f} -> "
              f"{stats['normalized_median_range']:.3f}")

    if organelle_lists is not None:
        _step(3, "ORGANELLE ENRICHMENT", verbose)
        results["enrichment"] = run_organelle_enrichment(
            normalized[config.organelle_id_column],
            organelle_lists,
            proteome_reference,
            config.enrichment,
            verbose=verbose,
        )

    _step(4, "DIFFERENTIAL EXPRESSION", verbose)
    if synaptic_panel is not None:
        model_input = filter_to_panel(
            normalized, synaptic_panel, id_column=config.panel_id_column, verbose=verbose
        )
    else:
        model_input = normalized
    results["model_input"] = model_input

    differential = run_differential_expression(model_input, metadata, config.differential)
    results["differential"] = differential
    results["summary"] = summarize_differential_results(differential, config.differential)

    if id_mapping is not None:
        _step(5, "RANKING METRIC", verbose)
        contrasts = config.ranking_contrasts or list(pd.unique(differential["Contrast"]))
        for contrast in contrasts:
            results["ranked_lists"][contrast] = build_ranking_metric(
                differential,
                contrast,
                id_mapping,
                padj_floor=config.padj_floor,
                verbose=verbose,
            )

    if verbose:
        print("\n✓ Pipeline complete!")

    return results
