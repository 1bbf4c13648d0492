"""
Resilience Proteomics Toolkit
=============================

A Python library for TMT proteomics of cognitive resilience to Alzheimer's
disease pathology. It takes protein intensity tables and donor metadata
through missingness filtering, normalization, organelle enrichment,
per-protein linear models across four diagnosis groups, and the ranked gene
lists used for gene set enrichment analysis.

QUICK START EXAMPLE:
-------------------
    import resilience_proteomics as rp

    # 1. Load data
    raw = rp.load_abundance_table('proteins.tsv')
    metadata = rp.load_sample_metadata('donors.csv')
    abundance = rp.create_standard_data_structure(raw, protein_col='Accession')

    # 2. Run the pipeline
    config = rp.PipelineConfig()
    results = rp.run_proteomics_pipeline(
        abundance, metadata,
        organelle_lists=organelles, proteome_reference=proteome,
        synaptic_panel=synaptic_genes, id_mapping=mapping, config=config,
    )

    # 3. GSEA and export
    gsea = rp.run_gsea_by_library(results['ranked_lists']['Resilient_over_Dementia-AD'])
    rp.export_complete_analysis(results, config)

MODULE OVERVIEW:
===============

data_import
    Purpose: Load abundance, metadata and reference tables
    Key functions: load_abundance_table(), load_sample_metadata(), load_proteome_reference()
    Use when: Starting analysis

preprocessing
    Purpose: Standard structure, missing values, missingness filter, log2, reshaping
    Key functions: create_standard_data_structure(), filter_and_transform()
    Use when: Preparing raw intensities

normalization
    Purpose: Median then quantile normalization across samples
    Key functions: normalize_abundance(), median_normalize(), quantile_normalize()
    Use when: Removing sample-level technical variation

panels
    Purpose: Reference panel filtering and organelle overlap counts
    Key functions: filter_to_panel(), build_enrichment_counts()
    Use when: Restricting to synaptic proteins, preparing enrichment input

enrichment
    Purpose: Fisher's exact test organelle enrichment with Bonferroni correction
    Key functions: run_organelle_enrichment(), compute_enrichment_statistics()
    Use when: Testing compartment over/under-representation

statistical_analysis
    Purpose: Per-protein OLS across diagnosis groups, six pairwise contrasts, BH-FDR
    Key functions: run_differential_expression(), DifferentialConfig()
    Use when: Detecting diagnosis-associated differential expression

ranking
    Purpose: Signed -log10(padj) ranked gene lists per contrast
    Key functions: build_ranking_metric()
    Use when: Preparing GSEA input

gsea
    Purpose: Preranked GSEA with gseapy
    Key functions: run_gsea(), run_gsea_by_library()
    Use when: Pathway-level interpretation of a contrast

idmapping
    Purpose: Accession -> gene identifier tables (local or UniProt service)
    Key functions: mapping_from_table(), query_uniprot_idmapping()
    Use when: Building the mapping used by the ranking step

validation
    Purpose: Sample/metadata consistency checks and diagnostic reports
    Key functions: validate_sample_consistency(), require_sample_consistency()
    Use when: Troubleshooting sample mismatches

export
    Purpose: Export results and timestamped configuration records
    Key functions: export_complete_analysis(), export_timestamped_config()
    Use when: Saving results, sharing analysis

pipeline
    Purpose: Run every stage end to end
    Key functions: run_proteomics_pipeline(), PipelineConfig()

TYPICAL WORKFLOW:
================
1. rp.load_abundance_table() / rp.load_sample_metadata() → Load data
2. rp.create_standard_data_structure() → Protein, Gene, Description, samples
3. rp.filter_and_transform() → Missingness filter and log2
4. rp.normalize_abundance() → Median then quantile normalization
5. rp.run_organelle_enrichment() → Compartment enrichment
6. rp.filter_to_panel() → Synaptic proteins
7. rp.run_differential_expression() → Six pairwise diagnosis contrasts
8. rp.build_ranking_metric() → Ranked list for one contrast
9. rp.run_gsea_by_library() → Gene set enrichment
10. rp.export_complete_analysis() → Export everything for reproducibility

ERROR HANDLING:
==============
- SampleMatchingError: Samples in metadata don't match the abundance table
- DuplicateProteinError: Protein accessions are not unique
- Failed per-protein fits are reported as NA rows with a status, never raised
"""

# =============================================================================
# MODULE IMPORTS - Core functionality organized by analysis stage
# =============================================================================

from . import data_import          # Data loading
from . import preprocessing        # Missing values, filtering, reshaping
from . import normalization        # Median and quantile normalization
from . import panels               # Panel filter and overlap counts
from . import enrichment           # Organelle enrichment statistics
from . import statistical_analysis # Per-protein linear models
from . import ranking              # Ranked gene lists
from . import gsea                 # Gene set enrichment analysis
from . import idmapping            # Identifier mapping
from . import validation           # Data validation and error checking
from . import export               # Results export and configuration management
from . import pipeline             # End-to-end orchestration

__version__ = "1.0.0"
__author__ = "Michael MacCoss Lab, University of Washington"

# =============================================================================
# CONVENIENCE IMPORTS - Most commonly used functions available at top level
# =============================================================================

# DATA LOADING
from .data_import import (
    load_abundance_table,     # Protein intensity table
    load_sample_metadata,     # Donor metadata keyed by sample code
    load_reference_lists,     # Ragged organelle reference lists
    load_proteome_reference,  # Whole-proteome identifier set
    load_id_mapping           # Accession -> gene identifier table
)

# DATA PREPROCESSING
from .preprocessing import (
    create_standard_data_structure, # Protein, Gene, Description, samples
    filter_and_transform,           # Missingness filter + log2
    to_sample_major,                # Protein-major -> sample-major
    to_long_format,                 # Wide -> (Protein, Sample, Intensity)
    impute_protein_minimum          # Per-protein minimum imputation
)

# NORMALIZATION
from .normalization import (
    normalize_abundance,  # Main function: median then quantile
    median_normalize,     # Remove per-sample median shift
    quantile_normalize    # Force identical sample distributions
)

# PANELS AND ORGANELLE ENRICHMENT
from .panels import (
    filter_to_panel,             # Restrict to an inclusion list
    build_enrichment_counts,     # Per-category overlap counts
    reference_lists_from_table   # Ragged table -> {category: ids}
)
from .enrichment import (
    run_organelle_enrichment,      # Main function: counts + statistics
    compute_enrichment_statistics, # Fisher's exact test + Bonferroni
    EnrichmentConfig               # Configuration dataclass
)

# STATISTICAL ANALYSIS
from .statistical_analysis import (
    run_differential_expression,     # Main function: all pairwise contrasts
    summarize_differential_results,  # Per-contrast summary
    DifferentialConfig,              # Configuration class
    Diagnosis,                       # Diagnosis groups
    adjust_pvalues                   # NaN-aware multiple testing correction
)

# RANKING AND GSEA
from .ranking import build_ranking_metric
from .gsea import (
    run_gsea,              # Preranked GSEA for one gene set collection
    run_gsea_by_library,   # Loop over configured libraries
    GSEAConfig             # Configuration dataclass
)
from .idmapping import (
    mapping_from_table,       # Local mapping table
    query_uniprot_idmapping   # UniProt ID mapping service
)

# DATA VALIDATION
from .validation import (
    validate_sample_consistency,                # Check metadata vs data consistency
    require_sample_consistency,                 # Same, raising on failure
    generate_sample_matching_diagnostic_report, # Detailed diagnostic reports
    SampleMatchingError,                        # Exception: Samples don't match
    DuplicateProteinError                       # Exception: Duplicate accessions
)

# DATA EXPORT
from .export import (
    export_complete_analysis,     # Main function: Export everything (data + config)
    export_differential_results,  # DE table
    export_ranked_list,           # GSEA .rnk file
    export_timestamped_config     # Export configuration with timestamp
)

# PIPELINE
from .pipeline import run_proteomics_pipeline, PipelineConfig

# =============================================================================
# PUBLIC API - All functions available for import
# =============================================================================

__all__ = [
    # MODULES
    "data_import",
    "preprocessing",
    "normalization",
    "panels",
    "enrichment",
    "statistical_analysis",
    "ranking",
    "gsea",
    "idmapping",
    "validation",
    "export",
    "pipeline",

    # DATA LOADING
    "load_abundance_table",
    "load_sample_metadata",
    "load_reference_lists",
    "load_proteome_reference",
    "load_id_mapping",

    # PREPROCESSING
    "create_standard_data_structure",
    "filter_and_transform",
    "to_sample_major",
    "to_long_format",
    "impute_protein_minimum",

    # NORMALIZATION
    "normalize_abundance",
    "median_normalize",
    "quantile_normalize",

    # PANELS AND ENRICHMENT
    "filter_to_panel",
    "build_enrichment_counts",
    "reference_lists_from_table",
    "run_organelle_enrichment",
    "compute_enrichment_statistics",
    "EnrichmentConfig",

    # STATISTICAL ANALYSIS
    "run_differential_expression",    # MAIN FUNCTION
    "summarize_differential_results",
    "DifferentialConfig",
    "Diagnosis",
    "adjust_pvalues",

    # RANKING AND GSEA
    "build_ranking_metric",
    "run_gsea",
    "run_gsea_by_library",
    "GSEAConfig",
    "mapping_from_table",
    "query_uniprot_idmapping",

    # VALIDATION
    "validate_sample_consistency",
    "require_sample_consistency",
    "generate_sample_matching_diagnostic_report",
    "SampleMatchingError",
    "DuplicateProteinError",

    # EXPORT
    "export_complete_analysis",
    "export_differential_results",
    "export_ranked_list",
    "export_timestamped_config",

    # PIPELINE
    "run_proteomics_pipeline",
    "PipelineConfig",
]
