"""
Statistical Analysis Module for Resilience Proteomics

Per-protein linear models for diagnosis-associated differential expression.

One ordinary least squares regression is fit per protein on a shared design
matrix:

    log2(intensity) ~ Diagnosis + Sex + Education + AgeAtDeath + PMI

With treatment coding a single fit only yields contrasts against its
reference level, so the model is refit with Normal, Dementia-AD and
Resilient as reference to collect all six pairwise contrasts among the four
diagnosis groups. Each refit is a pure function call; results are combined
explicitly, checked for completeness and Benjamini-Hochberg corrected over
the pooled (protein x contrast) p-values.
"""

import pandas as pd
import numpy as np
import re
import statsmodels.api as sm
from enum import Enum
from statsmodels.stats.multitest import multipletests
from typing import Dict, Iterable, List, Optional, Tuple

from .preprocessing import (
    ANNOTATION_COLUMNS,
    get_sample_columns,
    identify_pooled_samples,
    impute_protein_minimum,
    to_sample_major,
)
from .validation import require_sample_consistency, validate_unique_proteins


class Diagnosis(Enum):
    """Diagnosis groups of the cohort, in canonical order."""

    NORMAL = "Normal"
    DEMENTIA_AD = "Dementia-AD"
    RESILIENT = "Resilient"
    FRAIL = "Frail"

    @classmethod
    def parse(cls, label) -> "Diagnosis":
        """Parse a diagnosis label, ignoring case, whitespace and separators."""
        key = _level_key(label)
        for member in cls:
            if key in (_level_key(member.value), _level_key(member.name)):
                return member
        raise ValueError(
            f"Unknown diagnosis label '{label}'. Expected one of {[m.value for m in cls]}"
        )


DIAGNOSIS_LEVELS = [member.value for member in Diagnosis]

DE_COLUMNS = [
    "Protein",
    "Gene",
    "Description",
    "Contrast",
    "logFC",
    "p.value",
    "padj",
    "significant",
    "direction",
    "n_obs",
    "status",
]


def _level_key(label) -> str:
    return re.sub(r"[\s_\-]+", "", str(label)).lower()


def canonical_level(label, levels: Iterable[str]) -> str:
    """
    Map a raw group label onto one of the configured levels.

    Matching ignores case, whitespace, hyphens and underscores, so
    'dementia ad' and 'DEMENTIA_AD' both resolve to 'Dementia-AD'.

    Raises:
    -------
    ValueError: If the label matches none of the levels
    """
    key = _level_key(label)
    for level in levels:
        if _level_key(level) == key:
            return level
    raise ValueError(f"Unknown group label '{label}'. Expected one of {list(levels)}")


def parse_group_label(label, levels: Iterable[str]) -> str:
    """
    Canonical group level for a raw label.

    With the default diagnosis levels the label is parsed through the
    Diagnosis enum; custom level sets use canonical_level().
    """
    if list(levels) == DIAGNOSIS_LEVELS:
        return Diagnosis.parse(label).value
    return canonical_level(label, levels)


def contrast_label(test: str, reference: str) -> str:
    """Canonical contrast name: '<test>_over_<reference>'."""
    return f"{test}_over_{reference}"


def pairwise_contrasts(
    levels: Optional[List[str]] = None,
    reference_levels: Optional[List[str]] = None
) -> List[Tuple[str, str]]:
    """
    Ordered (test, reference) pairs obtainable from successive reference fits.

    For each reference level in turn, every other level whose pairing with it
    has not been obtained from an earlier reference contributes one contrast.
    With the four diagnosis groups this gives 3 + 2 + 1 = 6 pairs.

    Parameters:
    -----------
    levels : list, optional
        Group levels in canonical order (defaults to the diagnosis groups)
    reference_levels : list, optional
        Reference levels fit in turn (defaults to all but the last level)

    Returns:
    --------
    List of (test, reference) tuples
    """
    if levels is None:
        levels = DIAGNOSIS_LEVELS
    if reference_levels is None:
        reference_levels = list(levels[:-1])

    pairs = []
    obtained = set()
    for reference in reference_levels:
        for test in levels:
            pair = frozenset((test, reference))
            if test == reference or pair in obtained:
                continue
            obtained.add(pair)
            pairs.append((test, reference))
    return pairs


class DifferentialConfig:
    """Configuration class for the per-protein linear model analysis

    The defaults reproduce the published resilience analysis: four diagnosis
    groups, three reference fits, covariates sex, education, age at death and
    post-mortem interval, minimum imputation, log2 response and BH-FDR.
    """

    def __init__(self):
        # Metadata columns
        self.sample_column = "Sample"
        self.diagnosis_column = "Diagnosis"
        self.covariates = ["Sex", "Education", "AgeAtDeath", "PMI"]

        # Factor levels, canonical order; reference fits run in this order
        self.levels = list(DIAGNOSIS_LEVELS)
        self.reference_levels = [
            Diagnosis.NORMAL.value,
            Diagnosis.DEMENTIA_AD.value,
            Diagnosis.RESILIENT.value,
        ]

        # Response preparation
        self.log_transform = True  # log2 of intensities before fitting
        self.impute_method = "protein_minimum"  # "protein_minimum" or None
        self.pool_pattern = "Pool"  # pooled reference channels are not modelled

        # Contrast extraction: "refit" (one fit per reference) or "contrast_matrix"
        self.contrast_strategy = "refit"

        # Multiple testing correction
        self.correction_method = "fdr_bh"
        self.p_value_threshold = 0.05

        self.verbose = True

    def validate(self):
        """Validate the configuration; raises ValueError on problems"""
        if len(self.levels) < 2:
            raise ValueError("At least two group levels are required")
        if len(set(self.levels)) != len(self.levels):
            raise ValueError(f"Group levels must be unique: {self.levels}")

        unknown = [r for r in self.reference_levels if r not in self.levels]
        if unknown:
            raise ValueError(f"reference_levels not among levels: {unknown}")

        n_levels = len(self.levels)
        expected = n_levels * (n_levels - 1) // 2
        if self.contrast_strategy == "refit":
            obtained = len(pairwise_contrasts(self.levels, self.reference_levels))
            if obtained != expected:
                raise ValueError(
                    f"reference_levels {self.reference_levels} yield {obtained} of "
                    f"{expected} pairwise contrasts"
                )
        elif self.contrast_strategy != "contrast_matrix":
            raise ValueError("contrast_strategy must be 'refit' or 'contrast_matrix'")

        if self.impute_method not in ("protein_minimum", None):
            raise ValueError("impute_method must be 'protein_minimum' or None")

        if not 0 < self.p_value_threshold < 1:
            raise ValueError("p_value_threshold must be between 0 and 1")

        if self.diagnosis_column in self.covariates:
            raise ValueError("The diagnosis column cannot also be a covariate")

        return True


def adjust_pvalues(pvalues, method: str = "fdr_bh") -> pd.Series:
    """
    Multiple testing correction that ignores missing p-values.

    Missing p-values stay missing and do not count towards the number of
    tests. Empty or all-missing input returns an empty or all-missing Series.

    Parameters:
    -----------
    pvalues : array-like or pd.Series
        Raw p-values (NaN allowed)
    method : str
        statsmodels multipletests method ('fdr_bh', 'bonferroni', ...) or 'none'

    Returns:
    --------
    pd.Series : Adjusted p-values aligned with the input
    """
    if isinstance(pvalues, pd.Series):
        pvalues = pvalues.astype(float)
    else:
        pvalues = pd.Series(np.asarray(pvalues, dtype=float))

    adjusted = pd.Series(np.nan, index=pvalues.index, dtype=float)
    valid = pvalues.notna()
    if not valid.any():
        return adjusted

    if method == "none":
        adjusted[valid] = pvalues[valid]
        return adjusted

    _, corrected, _, _ = multipletests(pvalues[valid].to_numpy(), method=method)
    adjusted[valid] = corrected
    return adjusted


def prepare_model_frame(
    data: pd.DataFrame,
    metadata: pd.DataFrame,
    config: Optional[DifferentialConfig] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Join protein-major abundances with sample metadata for modelling.

    Pooled channels are dropped, sample codes must match between the two
    tables, samples with a missing diagnosis or covariate are removed (and
    reported), diagnosis labels are canonicalised, missing intensities are
    imputed with each protein's minimum and the response is log2 transformed.

    Parameters:
    -----------
    data : pd.DataFrame
        Standardized protein-major data (Protein, Gene, Description, samples)
    metadata : pd.DataFrame
        Sample metadata with sample, diagnosis and covariate columns
    config : DifferentialConfig, optional
        Configuration object

    Returns:
    --------
    tuple : (response, design_metadata)
        response is sample-major (index Sample, columns Protein);
        design_metadata has the same sample order.

    Raises:
    -------
    SampleMatchingError: If sample codes do not match
    DuplicateProteinError: If protein accessions are not unique
    ValueError: If required metadata columns are missing or no samples remain
    """
    if config is None:
        config = DifferentialConfig()

    validate_unique_proteins(data, "Protein")

    sample_columns = get_sample_columns(data)
    pooled = identify_pooled_samples(sample_columns, config.pool_pattern)
    analysis_samples = [s for s in sample_columns if s not in set(pooled)]

    if config.sample_column not in metadata.columns:
        raise ValueError(f"Sample column '{config.sample_column}' not found in metadata")

    metadata_samples = metadata[config.sample_column].astype(str).str.strip()
    metadata_samples = metadata_samples[~metadata_samples.isin(pooled)]
    require_sample_consistency(analysis_samples, metadata_samples, ignored_samples=pooled)

    required_cols = [config.diagnosis_column] + list(config.covariates)
    missing_cols = [col for col in required_cols if col not in metadata.columns]
    if missing_cols:
        raise ValueError(f"Missing required metadata columns: {missing_cols}")

    design_metadata = metadata.assign(
        **{config.sample_column: metadata[config.sample_column].astype(str).str.strip()}
    ).set_index(config.sample_column).loc[analysis_samples, required_cols].copy()
    design_metadata.index.name = "Sample"

    if config.verbose:
        print(f"Preparing model frame for {len(analysis_samples)} samples "
              f"({len(pooled)} pooled channels excluded)...")

    for col in required_cols:
        before_count = len(design_metadata)
        design_metadata = design_metadata.dropna(subset=[col])
        removed = before_count - len(design_metadata)
        if removed and config.verbose:
            print(f"  Removed {removed} samples missing {col}")

    if len(design_metadata) == 0:
        raise ValueError("No samples remain after filtering for required metadata")

    design_metadata[config.diagnosis_column] = design_metadata[config.diagnosis_column].apply(
        lambda label: parse_group_label(label, config.levels)
    )

    kept_samples = list(design_metadata.index)
    response = to_sample_major(data, kept_samples)
    if config.log_transform:
        response = response.where(response > 0)
    if config.impute_method == "protein_minimum":
        response = impute_protein_minimum(response)
    if config.log_transform:
        response = np.log2(response)

    if config.verbose:
        counts = design_metadata[config.diagnosis_column].value_counts()
        print(f"  Samples modelled: {len(kept_samples)}")
        print(f"  Groups: {counts.reindex(config.levels, fill_value=0).to_dict()}")

    return response, design_metadata


def build_design_matrix(
    design_metadata: pd.DataFrame,
    reference: str,
    config: Optional[DifferentialConfig] = None
) -> pd.DataFrame:
    """
    Build the treatment-coded design matrix for one reference level.

    Columns: Intercept, one indicator per non-reference group
    ('Diagnosis[Dementia-AD]', ...), numeric covariates as-is, and one
    indicator per non-first level of each categorical covariate.
    """
    if config is None:
        config = DifferentialConfig()
    if reference not in config.levels:
        raise ValueError(f"Reference level '{reference}' not among levels {config.levels}")

    groups = design_metadata[config.diagnosis_column]
    design = pd.DataFrame(index=design_metadata.index)
    design["Intercept"] = 1.0

    for level in config.levels:
        if level != reference:
            design[f"{config.diagnosis_column}[{level}]"] = (groups == level).astype(float)

    for covariate in config.covariates:
        values = design_metadata[covariate]
        if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values):
            design[covariate] = values.astype(float)
        else:
            categories = sorted(values.astype(str).unique())
            for category in categories[1:]:
                design[f"{covariate}[{category}]"] = (values.astype(str) == category).astype(float)

    return design


def _create_empty_result(protein, contrast, n_obs, reason):
    """Create NA result for a failed fit"""
    return {
        "Protein": protein,
        "Contrast": contrast,
        "logFC": np.nan,
        "p.value": np.nan,
        "n_obs": n_obs,
        "status": f"Failed: {reason}",
    }


def _fit_protein(y: pd.Series, design: pd.DataFrame):
    """
    Fit one protein. Returns (fitted_model, n_obs, failure_reason).
    """
    values = y.to_numpy(dtype=float)
    observed = ~np.isnan(values)
    n_obs = int(observed.sum())

    if n_obs == 0:
        return None, n_obs, "All values missing"
    if np.isinf(values).any():
        return None, n_obs, "Non-finite response"

    y_obs = y[observed].astype(float)
    design_obs = design[observed]

    if n_obs <= design_obs.shape[1]:
        return None, n_obs, "Insufficient observations"
    if np.ptp(y_obs.to_numpy()) == 0:
        return None, n_obs, "Zero variance"
    if np.linalg.matrix_rank(design_obs.to_numpy()) < design_obs.shape[1]:
        return None, n_obs, "Rank-deficient design"

    try:
        fitted = sm.OLS(y_obs, design_obs).fit()
    except (np.linalg.LinAlgError, ValueError) as e:
        return None, n_obs, f"Model fit error: {e}"

    return fitted, n_obs, None


def fit_reference_model(
    response: pd.DataFrame,
    design_metadata: pd.DataFrame,
    reference: str,
    test_levels: List[str],
    config: Optional[DifferentialConfig] = None
) -> pd.DataFrame:
    """
    Fit one OLS per protein with `reference` as baseline group.

    Pure function of its inputs: only the contrasts `test_levels` vs
    `reference` are returned, one row per (protein, contrast), with
    logFC = group coefficient and p.value = its OLS t-test p-value.

    Parameters:
    -----------
    response : pd.DataFrame
        Sample-major log2 abundances (index Sample, columns Protein)
    design_metadata : pd.DataFrame
        Diagnosis and covariates per sample, same order as response
    reference : str
        Baseline group of this fit
    test_levels : list
        Groups to contrast against the reference

    Returns:
    --------
    pd.DataFrame with columns Protein, Contrast, logFC, p.value, n_obs, status
    """
    if config is None:
        config = DifferentialConfig()
    if list(response.index) != list(design_metadata.index):
        raise ValueError("Response and design metadata sample order differ")

    design = build_design_matrix(design_metadata, reference, config)
    terms = {
        test: (f"{config.diagnosis_column}[{test}]", contrast_label(test, reference))
        for test in test_levels
    }

    if config.verbose:
        print(f"Fitting {response.shape[1]} protein models (reference: {reference}, "
              f"contrasts: {', '.join(label for _, label in terms.values())})...")

    results = []
    n_proteins = response.shape[1]
    for i, protein in enumerate(response.columns):
        if config.verbose and (i + 1) % 500 == 0:
            print(f"  Processed {i + 1}/{n_proteins} proteins...")

        fitted, n_obs, reason = _fit_protein(response[protein], design)

        for term, label in terms.values():
            if fitted is None:
                results.append(_create_empty_result(protein, label, n_obs, reason))
                continue

            estimate = float(fitted.params[term])
            p_value = float(fitted.pvalues[term])
            if not (np.isfinite(estimate) and np.isfinite(p_value)):
                results.append(_create_empty_result(protein, label, n_obs, "Undefined coefficient"))
                continue

            results.append({
                "Protein": protein,
                "Contrast": label,
                "logFC": estimate,
                "p.value": p_value,
                "n_obs": n_obs,
                "status": "OK",
            })

    return pd.DataFrame(results, columns=["Protein", "Contrast", "logFC", "p.value", "n_obs", "status"])


def fit_contrast_matrix_model(
    response: pd.DataFrame,
    design_metadata: pd.DataFrame,
    contrasts: List[Tuple[str, str]],
    config: Optional[DifferentialConfig] = None
) -> pd.DataFrame:
    """
    Single-fit alternative to successive reference fits.

    Each protein is fit once with the first level as baseline and every
    requested (test, reference) contrast is obtained as a linear
    combination of the group coefficients via `fitted.t_test()`. This is
    the same model under a different parameterization, so logFC and p-values
    agree with fit_reference_model() up to floating point error.
    """
    if config is None:
        config = DifferentialConfig()
    if list(response.index) != list(design_metadata.index):
        raise ValueError("Response and design metadata sample order differ")

    baseline = config.levels[0]
    design = build_design_matrix(design_metadata, baseline, config)

    vectors = {}
    for test, reference in contrasts:
        vector = np.zeros(design.shape[1])
        if test != baseline:
            vector[design.columns.get_loc(f"{config.diagnosis_column}[{test}]")] += 1.0
        if reference != baseline:
            vector[design.columns.get_loc(f"{config.diagnosis_column}[{reference}]")] -= 1.0
        vectors[contrast_label(test, reference)] = vector

    if config.verbose:
        print(f"Fitting {response.shape[1]} protein models "
              f"({len(vectors)} contrasts from one fit)...")

    results = []
    for protein in response.columns:
        fitted, n_obs, reason = _fit_protein(response[protein], design)

        for label, vector in vectors.items():
            if fitted is None:
                results.append(_create_empty_result(protein, label, n_obs, reason))
                continue

            test_result = fitted.t_test(vector)
            estimate = float(np.squeeze(test_result.effect))
            p_value = float(np.squeeze(test_result.pvalue))
            if not (np.isfinite(estimate) and np.isfinite(p_value)):
                results.append(_create_empty_result(protein, label, n_obs, "Undefined coefficient"))
                continue

            results.append({
                "Protein": protein,
                "Contrast": label,
                "logFC": estimate,
                "p.value": p_value,
                "n_obs": n_obs,
                "status": "OK",
            })

    return pd.DataFrame(results, columns=["Protein", "Contrast", "logFC", "p.value", "n_obs", "status"])


def _check_contrast_completeness(results: pd.DataFrame, proteins: List[str], labels: List[str]):
    """Every protein must carry each contrast label exactly once."""
    counts = results.groupby("Protein")["Contrast"].agg(["count", "nunique"])
    counts = counts.reindex(proteins, fill_value=0)
    incomplete = counts[(counts["count"] != len(labels)) | (counts["nunique"] != len(labels))]
    unexpected = sorted(set(results["Contrast"]) - set(labels))
    if len(incomplete) or unexpected:
        raise RuntimeError(
            f"Contrast table incomplete: {len(incomplete)} proteins without exactly "
            f"{len(labels)} contrasts (e.g. {incomplete.index[:5].tolist()}); "
            f"unexpected labels: {unexpected}"
        )


def run_differential_expression(
    data: pd.DataFrame,
    metadata: pd.DataFrame,
    config: Optional[DifferentialConfig] = None
) -> pd.DataFrame:
    """
    Run the complete differential expression analysis.

    Parameters:
    -----------
    data : pd.DataFrame
        Standardized, normalized protein-major data (intensity scale when
        config.log_transform is True)
    metadata : pd.DataFrame
        Sample metadata
    config : DifferentialConfig, optional
        Configuration object

    Returns:
    --------
    pd.DataFrame : One row per (protein, contrast) with columns DE_COLUMNS,
    ordered by input protein order then canonical contrast order.

    Raises:
    -------
    RuntimeError: If the combined table does not hold every contrast exactly
    once per protein
    """
    if config is None:
        config = DifferentialConfig()
    config.validate()

    if config.verbose:
        print("=" * 60)
        print("DIFFERENTIAL EXPRESSION ANALYSIS")
        print("=" * 60)

    response, design_metadata = prepare_model_frame(data, metadata, config)

    if config.contrast_strategy == "contrast_matrix":
        contrasts = pairwise_contrasts(config.levels)
        combined = fit_contrast_matrix_model(response, design_metadata, contrasts, config)
    else:
        contrasts = pairwise_contrasts(config.levels, config.reference_levels)
        fits = []
        for reference in config.reference_levels:
            test_levels = [test for test, ref in contrasts if ref == reference]
            if test_levels:
                fits.append(
                    fit_reference_model(response, design_metadata, reference, test_levels, config)
                )
        combined = pd.concat(fits, ignore_index=True)

    labels = [contrast_label(test, reference) for test, reference in contrasts]
    proteins = list(response.columns)
    _check_contrast_completeness(combined, proteins, labels)

    # Input protein order, then canonical contrast order
    protein_rank = {protein: i for i, protein in enumerate(proteins)}
    contrast_rank = {label: i for i, label in enumerate(labels)}
    combined = (
        combined.assign(
            _protein_rank=combined["Protein"].map(protein_rank),
            _contrast_rank=combined["Contrast"].map(contrast_rank),
        )
        .sort_values(["_protein_rank", "_contrast_rank"], kind="mergesort")
        .drop(columns=["_protein_rank", "_contrast_rank"])
        .reset_index(drop=True)
    )

    combined["padj"] = adjust_pvalues(combined["p.value"], config.correction_method)
    combined["significant"] = combined["padj"] <= config.p_value_threshold
    combined["direction"] = [
        None if pd.isna(fc) else ("Increase" if fc > 0 else "Decrease")
        for fc in combined["logFC"]
    ]

    annotations = data[ANNOTATION_COLUMNS].drop_duplicates(subset="Protein")
    combined = combined.merge(annotations, on="Protein", how="left", validate="many_to_one")
    combined = combined[DE_COLUMNS]

    if config.verbose:
        n_failed = combined["logFC"].isna().groupby(combined["Protein"]).all().sum()
        print("Multiple testing correction applied:")
        print(f"  Method: {config.correction_method} (pooled over {combined['p.value'].notna().sum()} tests)")
        print(f"  Significant (padj <= {config.p_value_threshold}): {combined['significant'].sum()}")
        if n_failed:
            print(f"Warning: {n_failed} proteins could not be fit (reported as NA)")
        print(f"✓ Differential expression complete: {len(proteins)} proteins x {len(labels)} contrasts")

    return combined


def summarize_differential_results(
    results: pd.DataFrame,
    config: Optional[DifferentialConfig] = None
) -> Dict[str, Dict[str, int]]:
    """
    Summarize significant increases/decreases per contrast.

    Parameters:
    -----------
    results : pd.DataFrame
        Output of run_differential_expression()
    config : DifferentialConfig, optional
        Configuration object (for the verbose flag)

    Returns:
    --------
    dict : {contrast: {'tested', 'failed', 'significant', 'increase', 'decrease'}}
    """
    if config is None:
        config = DifferentialConfig()

    summary = {}
    if results is None or len(results) == 0:
        if config.verbose:
            print("⚠️ No differential expression results available")
        return summary

    for contrast, group in results.groupby("Contrast", sort=False):
        significant = group[group["significant"]]
        summary[contrast] = {
            "tested": int(group["p.value"].notna().sum()),
            "failed": int(group["p.value"].isna().sum()),
            "significant": int(len(significant)),
            "increase": int((significant["direction"] == "Increase").sum()),
            "decrease": int((significant["direction"] == "Decrease").sum()),
        }

    if config.verbose:
        print("=" * 60)
        print("DIFFERENTIAL EXPRESSION SUMMARY")
        print("=" * 60)
        for contrast, counts in summary.items():
            print(f"  {contrast}: {counts['significant']} significant "
                  f"({counts['increase']} up, {counts['decrease']} down) "
                  f"of {counts['tested']} tested")
        print("\n✓ Analysis summary complete!")

    return summary
