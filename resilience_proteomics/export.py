"""
Export Module for Resilience Proteomics Toolkit

This module handles exporting analysis results and configurations: the
differential expression table, the organelle enrichment table, ranked gene
lists in GSEA .rnk format, and timestamped configuration files that record
exactly how an analysis was run.
"""

import pandas as pd
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Dict, Any, Optional, List


def export_differential_results(
    differential_df: pd.DataFrame, output_file: str, significant_only: bool = False
) -> str:
    """
    Export differential expression results to CSV file.

    Parameters:
    -----------
    differential_df : pd.DataFrame
        Output of run_differential_expression()
    output_file : str
        Output CSV filename
    significant_only : bool
        Whether to export only rows with significant == True
    """
    if significant_only:
        export_df = differential_df[differential_df["significant"]].copy()
        print(f"Exporting {len(export_df)} significant contrast rows to {output_file}")
    else:
        export_df = differential_df.copy()
        print(f"Exporting all {len(export_df)} contrast rows to {output_file}")

    export_df.to_csv(output_file, index=False)
    return output_file


def export_enrichment_table(enrichment_df: pd.DataFrame, output_file: str) -> str:
    """Export the organelle enrichment table to CSV."""
    enrichment_df.to_csv(output_file, index=False)
    print(f"Exported {len(enrichment_df)} enrichment categories to {output_file}")
    return output_file


def export_ranked_list(ranked: pd.Series, output_file: str) -> str:
    """
    Export a ranked gene list in GSEA .rnk format (tab-separated, no header).
    """
    ranked.to_csv(output_file, sep="\t", header=False, index=True)
    print(f"Exported {len(ranked)} ranked identifiers to {output_file}")
    return output_file


# Numbered sections of the exported configuration file; keys not listed in
# any section are written under ADDITIONAL SETTINGS.
CONFIG_SECTIONS = [
    ("MISSINGNESS FILTER", ["max_missing", "max_missing_fraction", "pool_pattern", "missing_markers"]),
    ("PANEL SELECTION", ["panel_id_column", "organelle_id_column"]),
    (
        "ORGANELLE ENRICHMENT",
        ["enrichment_background_label", "enrichment_correction_method", "enrichment_alternative"],
    ),
    (
        "EXPERIMENTAL DESIGN CONFIGURATION",
        ["sample_column", "diagnosis_column", "levels", "reference_levels", "covariates"],
    ),
    ("LINEAR MODEL SETTINGS", ["log_transform", "impute_method", "contrast_strategy"]),
    ("SIGNIFICANCE THRESHOLDS", ["correction_method", "p_value_threshold"]),
    ("RANKING METRIC", ["ranking_contrasts", "padj_floor"]),
    (
        "GENE SET ENRICHMENT",
        [
            "gsea_gene_set_libraries",
            "gsea_organism",
            "gsea_min_size",
            "gsea_max_size",
            "gsea_permutation_num",
            "gsea_seed",
        ],
    ),
    ("OUTPUT AND EXPORT SETTINGS", ["output_prefix"]),
]

_RULE = "# " + "=" * 77


def _config_lines(
    config_dict: Dict[str, Any],
    analysis_description: str,
    computed_values: Optional[Dict[str, Any]] = None,
) -> List[str]:
    """Render the configuration file body as a list of lines."""
    lines = [
        _RULE,
        "# RESILIENCE PROTEOMICS ANALYSIS CONFIGURATION",
        f"# Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"# Analysis: {analysis_description}",
        _RULE,
        "",
    ]

    sections = list(CONFIG_SECTIONS)
    listed = {param for _, params in sections for param in params}
    extra = [key for key in config_dict if key not in listed]
    if extra:
        sections.append(("ADDITIONAL SETTINGS", extra))

    for number, (title, params) in enumerate(sections, start=1):
        present = [param for param in params if param in config_dict]
        lines.extend([_RULE, f"# {number}. {title}", _RULE])
        lines.extend(f"{param} = {config_dict[param]!r}" for param in present)
        lines.append("")

    if computed_values:
        lines.extend([_RULE, "# COMPUTED VALUES (for reference)", _RULE])
        lines.extend(f"# {key}: {value}" for key, value in computed_values.items())

    return lines


def export_timestamped_config(
    config_dict: Dict[str, Any],
    output_prefix: str = "resilience_proteomics",
    analysis_description: str = "Resilience proteomics analysis",
    computed_values: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Export analysis configuration as a timestamped Python file.

    The file is valid Python: every setting is written as `name = repr(value)`
    so it can be exec'd to rebuild the configuration.

    Parameters:
    -----------
    config_dict : dict
        Dictionary containing all configuration parameters
    output_prefix : str
        Prefix for the configuration filename
    analysis_description : str
        Description of the analysis type
    computed_values : dict, optional
        Additional computed values to include as comments

    Returns:
    --------
    str
        Path to the exported configuration file
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_file = f"{output_prefix}_config_{timestamp}.py"

    print(f"Exporting analysis configuration to: {config_file}")

    with open(config_file, "w", encoding="utf-8") as f:
        f.write("\n".join(_config_lines(config_dict, analysis_description, computed_values)))
        f.write("\n")

    return config_file


def create_config_dict_from_pipeline_config(config, **kwargs) -> Dict[str, Any]:
    """
    Flatten a PipelineConfig (and its nested stage configs) into one dictionary.

    Nested enrichment and GSEA settings are prefixed ('enrichment_...',
    'gsea_...'); differential settings keep their own names. Keyword
    arguments override the flattened values.
    """
    config_dict = {
        "max_missing": config.max_missing,
        "max_missing_fraction": config.max_missing_fraction,
        "pool_pattern": config.pool_pattern,
        "missing_markers": config.missing_markers,
        "panel_id_column": config.panel_id_column,
        "organelle_id_column": config.organelle_id_column,
        "ranking_contrasts": config.ranking_contrasts,
        "padj_floor": config.padj_floor,
        "output_prefix": config.output_prefix,
    }

    for key, value in asdict(config.enrichment).items():
        config_dict[f"enrichment_{key}"] = value
    for key, value in asdict(config.gsea).items():
        config_dict[f"gsea_{key}"] = value

    differential = config.differential
    differential_values = asdict(differential) if is_dataclass(differential) else vars(differential)
    config_dict.update(differential_values)

    config_dict.update(kwargs)
    return config_dict


def export_complete_analysis(
    pipeline_results: Dict[str, Any],
    config,
    output_prefix: Optional[str] = None,
    analysis_description: str = "Resilience proteomics analysis",
) -> Dict[str, str]:
    """
    Export complete analysis including data, results, and timestamped configuration.

    This is the main export function that combines data export and configuration export.

    Parameters:
    -----------
    pipeline_results : dict
        Output of run_proteomics_pipeline()
    config : PipelineConfig
        Configuration the pipeline was run with
    output_prefix : str, optional
        Prefix for output filenames (defaults to config.output_prefix)
    analysis_description : str
        Description for the configuration header

    Returns:
    --------
    dict
        Dictionary of all exported files
    """
    output_prefix = output_prefix or config.output_prefix
    exported_files = {}

    normalized = pipeline_results.get("normalized")
    if normalized is not None:
        normalized_file = f"{output_prefix}_normalized_data.csv"
        normalized.to_csv(normalized_file, index=False)
        exported_files["normalized_data"] = normalized_file

    differential = pipeline_results.get("differential")
    if differential is not None:
        exported_files["differential_results"] = export_differential_results(
            differential, f"{output_prefix}_differential_results.csv"
        )

    enrichment = pipeline_results.get("enrichment")
    if enrichment is not None:
        exported_files["enrichment"] = export_enrichment_table(
            enrichment, f"{output_prefix}_organelle_enrichment.csv"
        )

    for contrast, ranked in (pipeline_results.get("ranked_lists") or {}).items():
        exported_files[f"ranked_{contrast}"] = export_ranked_list(
            ranked, f"{output_prefix}_{contrast}.rnk"
        )

    computed_values = {}
    filtered = pipeline_results.get("filtered")
    if filtered is not None:
        computed_values["Proteins after missingness filter"] = len(filtered)
    if differential is not None:
        computed_values["Proteins modelled"] = differential["Protein"].nunique()
        computed_values["Contrasts"] = list(pd.unique(differential["Contrast"]))

    config_file = export_timestamped_config(
        config_dict=create_config_dict_from_pipeline_config(config),
        output_prefix=output_prefix,
        analysis_description=analysis_description,
        computed_values=computed_values,
    )
    exported_files["configuration"] = config_file

    _print_export_summary(exported_files, config_file)

    return exported_files


def _print_export_summary(exported_files: Dict[str, str], config_file: str) -> None:
    """Print a summary of exported files."""

    print("\n" + "=" * 60)
    print("✓ All analysis results and configuration exported successfully!")
    print("Files created:")

    descriptions = {
        "normalized_data": "Normalized protein data",
        "differential_results": "Differential expression results (all contrasts)",
        "enrichment": "Organelle enrichment statistics",
        "configuration": "Python configuration (timestamped)",
    }
    for key, path in exported_files.items():
        if key.startswith("ranked_"):
            description = f"Ranked list for {key[len('ranked_'):]} (GSEA .rnk)"
        else:
            description = descriptions.get(key, key)
        print(f"  • {path} - {description}")

    print("=" * 60)

    print("\nREPRODUCIBILITY TIP:")
    print("To reproduce this analysis:")
    print(f"1. Copy the configuration variables from: {config_file}")
    print("2. Rebuild PipelineConfig with identical settings")
    print(f"3. Or import directly: exec(open('{config_file}').read())")
