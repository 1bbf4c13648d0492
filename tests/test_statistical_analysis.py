"""
Tests for resilience_proteomics.statistical_analysis module
"""

import pytest
import pandas as pd
import numpy as np
from scipy import stats

from resilience_proteomics.statistical_analysis import (
    DE_COLUMNS,
    Diagnosis,
    DifferentialConfig,
    adjust_pvalues,
    build_design_matrix,
    canonical_level,
    contrast_label,
    fit_reference_model,
    pairwise_contrasts,
    prepare_model_frame,
    run_differential_expression,
    summarize_differential_results,
    _check_contrast_completeness,
)
from resilience_proteomics.validation import DuplicateProteinError, SampleMatchingError


EXPECTED_CONTRASTS = [
    "Dementia-AD_over_Normal",
    "Resilient_over_Normal",
    "Frail_over_Normal",
    "Resilient_over_Dementia-AD",
    "Frail_over_Dementia-AD",
    "Frail_over_Resilient",
]


class TestDiagnosisLevels:
    """Test diagnosis parsing and contrast naming"""

    @pytest.mark.parametrize("label,expected", [
        ("Normal", Diagnosis.NORMAL),
        (" normal ", Diagnosis.NORMAL),
        ("Dementia-AD", Diagnosis.DEMENTIA_AD),
        ("dementia ad", Diagnosis.DEMENTIA_AD),
        ("DEMENTIA_AD", Diagnosis.DEMENTIA_AD),
        ("RESILIENT", Diagnosis.RESILIENT),
        ("frail", Diagnosis.FRAIL),
    ])
    def test_parse(self, label, expected):
        assert Diagnosis.parse(label) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown diagnosis"):
            Diagnosis.parse("MCI")

    def test_canonical_level_custom_levels(self):
        assert canonical_level("ad", ["Normal", "AD"]) == "AD"
        with pytest.raises(ValueError):
            canonical_level("Frail", ["Normal", "AD"])

    def test_contrast_label(self):
        assert contrast_label("Resilient", "Dementia-AD") == "Resilient_over_Dementia-AD"

    def test_pairwise_contrasts_default(self):
        pairs = pairwise_contrasts()
        labels = [contrast_label(test, reference) for test, reference in pairs]

        assert labels == EXPECTED_CONTRASTS
        references = [reference for _, reference in pairs]
        assert references.count("Normal") == 3
        assert references.count("Dementia-AD") == 2
        assert references.count("Resilient") == 1

    def test_pairwise_contrasts_two_levels(self):
        assert pairwise_contrasts(["Normal", "AD"]) == [("AD", "Normal")]


class TestDifferentialConfig:
    """Test configuration defaults and validation"""

    def test_defaults(self):
        config = DifferentialConfig()

        assert config.levels == ["Normal", "Dementia-AD", "Resilient", "Frail"]
        assert config.reference_levels == ["Normal", "Dementia-AD", "Resilient"]
        assert config.covariates == ["Sex", "Education", "AgeAtDeath", "PMI"]
        assert config.impute_method == "protein_minimum"
        assert config.correction_method == "fdr_bh"
        assert config.p_value_threshold == 0.05
        assert config.contrast_strategy == "refit"
        assert config.validate() is True

    def test_incomplete_reference_levels(self):
        config = DifferentialConfig()
        config.reference_levels = ["Normal"]
        with pytest.raises(ValueError, match="pairwise contrasts"):
            config.validate()

    def test_unknown_reference_level(self):
        config = DifferentialConfig()
        config.reference_levels = ["Normal", "Control"]
        with pytest.raises(ValueError):
            config.validate()

    def test_invalid_strategy(self):
        config = DifferentialConfig()
        config.contrast_strategy = "bayesian"
        with pytest.raises(ValueError):
            config.validate()


class TestAdjustPvalues:
    """Test NaN-aware multiple testing correction"""

    def test_empty_input(self):
        result = adjust_pvalues([])
        assert len(result) == 0

    def test_all_missing(self):
        result = adjust_pvalues([np.nan, np.nan])
        assert result.isna().all()
        assert len(result) == 2

    def test_missing_values_ignored(self):
        result = adjust_pvalues(pd.Series([0.01, np.nan, 0.04]), method="bonferroni")

        assert np.isnan(result.iloc[1])
        # Two tests, not three
        assert result.iloc[0] == pytest.approx(0.02)
        assert result.iloc[2] == pytest.approx(0.08)

    def test_bh_monotone_and_bounded(self):
        np.random.seed(42)
        pvalues = pd.Series(np.random.uniform(0, 0.2, 200))
        adjusted = adjust_pvalues(pvalues)

        assert (adjusted >= pvalues - 1e-15).all()
        assert (adjusted <= 1).all()
        order = np.argsort(pvalues.to_numpy())
        assert np.all(np.diff(adjusted.to_numpy()[order]) >= -1e-15)

    def test_bonferroni_capped(self):
        result = adjust_pvalues([0.3, 0.5, 0.01], method="bonferroni")
        np.testing.assert_allclose(result.to_numpy(), [0.9, 1.0, 0.03])


class TestTwoLevelModel:
    """Hand-computed regression with two groups and one covariate"""

    @pytest.fixture
    def two_level_data(self):
        samples = ["N1", "N2", "N3", "N4", "A1", "A2", "A3", "A4"]
        log2_values = np.array([
            [10.0, 10.4, 9.8, 10.1, 11.2, 11.0, 11.5, 10.9],
            [15.0, 15.2, 14.9, 15.1, 14.8, 14.6, 15.0, 14.7],
            [12.0, 12.5, 12.2, 11.8, 12.1, 12.6, 12.3, 12.2],
        ])
        data = pd.DataFrame({
            "Protein": ["P1", "P2", "P3"],
            "Gene": ["G1", "G2", "G3"],
            "Description": ["d1", "d2", "d3"],
            **{sample: log2_values[:, j] for j, sample in enumerate(samples)},
        })
        metadata = pd.DataFrame({
            "Sample": samples,
            "Diagnosis": ["Normal"] * 4 + ["ad"] * 4,
            "Age": [70.0, 82.0, 75.0, 90.0, 78.0, 85.0, 72.0, 88.0],
        })
        config = DifferentialConfig()
        config.levels = ["Normal", "AD"]
        config.reference_levels = ["Normal"]
        config.covariates = ["Age"]
        config.log_transform = False
        config.impute_method = None
        config.verbose = False
        return data, metadata, config, log2_values

    def test_matches_hand_computed_ols(self, two_level_data):
        data, metadata, config, log2_values = two_level_data
        result = run_differential_expression(data, metadata, config)

        assert result["Contrast"].unique().tolist() == ["AD_over_Normal"]
        assert len(result) == 3

        is_ad = np.array([0, 0, 0, 0, 1, 1, 1, 1], dtype=float)
        X = np.column_stack([np.ones(8), is_ad, metadata["Age"].to_numpy()])
        xtx_inv = np.linalg.inv(X.T @ X)
        dof = 8 - 3

        for i, protein in enumerate(["P1", "P2", "P3"]):
            y = log2_values[i]
            beta = xtx_inv @ X.T @ y
            residuals = y - X @ beta
            sigma2 = residuals @ residuals / dof
            t_value = beta[1] / np.sqrt(sigma2 * xtx_inv[1, 1])
            expected_p = 2 * stats.t.sf(abs(t_value), dof)

            row = result[result["Protein"] == protein].iloc[0]
            assert row["logFC"] == pytest.approx(beta[1], rel=1e-9)
            assert row["p.value"] == pytest.approx(expected_p, rel=1e-6)
            assert row["n_obs"] == 8

    def test_padj_is_pooled_bh(self, two_level_data):
        data, metadata, config, _ = two_level_data
        result = run_differential_expression(data, metadata, config)

        expected = adjust_pvalues(result["p.value"], "fdr_bh")
        np.testing.assert_allclose(result["padj"].to_numpy(), expected.to_numpy())


class TestModelFrame:
    """Test joining abundances with metadata"""

    def test_pooled_channel_excluded(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        response, design_metadata = prepare_model_frame(
            imputed_cohort_abundance, cohort_metadata, differential_config
        )

        assert "Pool_1" not in response.index
        assert list(response.index) == list(design_metadata.index)
        assert response.shape == (20, 30)
        # Minimum imputation leaves no missing values
        assert not response.isna().any().any()

    def test_sample_mismatch_is_fatal(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        metadata = cohort_metadata[cohort_metadata["Sample"] != "S05"]
        with pytest.raises(SampleMatchingError, match="S05"):
            prepare_model_frame(imputed_cohort_abundance, metadata, differential_config)

    def test_missing_covariate_drops_sample(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        metadata = cohort_metadata.copy()
        metadata.loc[metadata["Sample"] == "S03", "PMI"] = np.nan

        response, design_metadata = prepare_model_frame(
            imputed_cohort_abundance, metadata, differential_config
        )

        assert "S03" not in design_metadata.index
        assert len(response) == 19

    def test_duplicated_accession_is_fatal(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        data = pd.concat(
            [imputed_cohort_abundance, imputed_cohort_abundance.iloc[[3]]], ignore_index=True
        )
        with pytest.raises(DuplicateProteinError, match="P00003"):
            run_differential_expression(data, cohort_metadata, differential_config)

    def test_default_levels_parsed_through_diagnosis(self, imputed_cohort_abundance, cohort_metadata,
                                                     differential_config):
        metadata = cohort_metadata.copy()
        metadata["Diagnosis"] = metadata["Diagnosis"].map(
            {"Normal": "NORMAL", "Dementia-AD": "dementia_ad", "Resilient": " Resilient", "Frail": "FRAIL"}
        )
        _, design_metadata = prepare_model_frame(imputed_cohort_abundance, metadata, differential_config)

        assert design_metadata["Diagnosis"].tolist() == [d.value for d in Diagnosis for _ in range(5)]

    def test_unknown_diagnosis(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        metadata = cohort_metadata.copy()
        metadata.loc[0, "Diagnosis"] = "MCI"
        with pytest.raises(ValueError, match="Unknown diagnosis label 'MCI'"):
            prepare_model_frame(imputed_cohort_abundance, metadata, differential_config)

    def test_missing_covariate_column(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        with pytest.raises(ValueError, match="PMI"):
            prepare_model_frame(
                imputed_cohort_abundance, cohort_metadata.drop(columns=["PMI"]), differential_config
            )

    def test_design_matrix_columns(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        _, design_metadata = prepare_model_frame(
            imputed_cohort_abundance, cohort_metadata, differential_config
        )
        design = build_design_matrix(design_metadata, "Dementia-AD", differential_config)

        assert list(design.columns) == [
            "Intercept",
            "Diagnosis[Normal]",
            "Diagnosis[Resilient]",
            "Diagnosis[Frail]",
            "Sex[M]",
            "Education",
            "AgeAtDeath",
            "PMI",
        ]
        assert design["Diagnosis[Normal]"].sum() == 5


class TestDifferentialExpression:
    """Test the full four-group analysis"""

    def test_six_contrasts_per_protein(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)

        assert list(result.columns) == DE_COLUMNS
        assert len(result) == 30 * 6
        per_protein = result.groupby("Protein")["Contrast"].agg(["count", "nunique"])
        assert (per_protein["count"] == 6).all()
        assert (per_protein["nunique"] == 6).all()
        assert set(result["Contrast"]) == set(EXPECTED_CONTRASTS)

    def test_canonical_ordering(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)

        assert result["Contrast"].iloc[:6].tolist() == EXPECTED_CONTRASTS
        assert result["Protein"].iloc[::6].tolist() == imputed_cohort_abundance["Protein"].tolist()

    def test_planted_effect_recovered(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)
        protein = result[result["Protein"] == "P00000"].set_index("Contrast")

        assert protein.loc["Dementia-AD_over_Normal", "logFC"] == pytest.approx(2.0, abs=0.6)
        assert protein.loc["Resilient_over_Dementia-AD", "logFC"] == pytest.approx(-2.0, abs=0.6)
        assert protein.loc["Dementia-AD_over_Normal", "direction"] == "Increase"
        assert protein.loc["Frail_over_Dementia-AD", "direction"] == "Decrease"
        assert protein.loc["Dementia-AD_over_Normal", "significant"]

    def test_contrasts_consistent_across_fits(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)
        protein = result[result["Protein"] == "P00003"].set_index("Contrast")["logFC"]

        # Resilient - Dementia-AD == (Resilient - Normal) - (Dementia-AD - Normal)
        assert protein["Resilient_over_Dementia-AD"] == pytest.approx(
            protein["Resilient_over_Normal"] - protein["Dementia-AD_over_Normal"], abs=1e-8
        )

    def test_refit_matches_contrast_matrix(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        refit = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)

        single_fit_config = DifferentialConfig()
        single_fit_config.verbose = False
        single_fit_config.contrast_strategy = "contrast_matrix"
        single_fit = run_differential_expression(imputed_cohort_abundance, cohort_metadata, single_fit_config)

        assert refit["Protein"].tolist() == single_fit["Protein"].tolist()
        assert refit["Contrast"].tolist() == single_fit["Contrast"].tolist()
        np.testing.assert_allclose(refit["logFC"], single_fit["logFC"], rtol=1e-6, atol=1e-10)
        np.testing.assert_allclose(refit["p.value"], single_fit["p.value"], rtol=1e-6, atol=1e-12)
        np.testing.assert_allclose(refit["padj"], single_fit["padj"], rtol=1e-6, atol=1e-12)

    def test_significance_and_direction_labels(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)

        assert (result["significant"] == (result["padj"] <= 0.05)).all()
        assert (result["padj"] >= result["p.value"] - 1e-15).all()
        for _, row in result.iterrows():
            assert row["direction"] == ("Increase" if row["logFC"] > 0 else "Decrease")

    def test_failed_proteins_reported_as_na(self, imputed_cohort_abundance, cohort_metadata,
                                            cohort_sample_columns, differential_config):
        data = imputed_cohort_abundance.copy()
        constant = {"Protein": "PCONST", "Gene": "CONST", "Description": "constant"}
        constant.update({sample: 1000.0 for sample in cohort_sample_columns})
        empty = {"Protein": "PEMPTY", "Gene": "EMPTY", "Description": "never seen"}
        empty.update({sample: np.nan for sample in cohort_sample_columns})
        data = pd.concat([data, pd.DataFrame([constant, empty])], ignore_index=True)

        result = run_differential_expression(data, cohort_metadata, differential_config)

        constant_rows = result[result["Protein"] == "PCONST"]
        assert len(constant_rows) == 6
        assert constant_rows["logFC"].isna().all()
        assert constant_rows["padj"].isna().all()
        assert not constant_rows["significant"].any()
        assert constant_rows["direction"].isna().all()
        assert constant_rows["status"].str.contains("Zero variance").all()

        empty_rows = result[result["Protein"] == "PEMPTY"]
        assert empty_rows["status"].str.contains("All values missing").all()
        assert (empty_rows["n_obs"] == 0).all()

        # The rest of the batch is unaffected
        assert result[~result["Protein"].isin(["PCONST", "PEMPTY"])]["logFC"].notna().all()

    def test_zero_intensities_imputed(self, cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(cohort_abundance, cohort_metadata, differential_config)

        assert (result["n_obs"] == 20).all()
        assert result["logFC"].notna().all()

    def test_annotations_joined(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)
        row = result[result["Protein"] == "P00007"].iloc[0]

        assert row["Gene"] == "GENE7"
        assert row["Description"] == "Protein 7 description"


class TestReferenceFit:
    """Test a single reference-level fit"""

    def test_pure_function(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        response, design_metadata = prepare_model_frame(
            imputed_cohort_abundance, cohort_metadata, differential_config
        )
        response_before = response.copy()

        first = fit_reference_model(
            response, design_metadata, "Dementia-AD", ["Resilient", "Frail"], differential_config
        )
        second = fit_reference_model(
            response, design_metadata, "Dementia-AD", ["Resilient", "Frail"], differential_config
        )

        pd.testing.assert_frame_equal(first, second)
        pd.testing.assert_frame_equal(response, response_before)
        assert set(first["Contrast"]) == {"Resilient_over_Dementia-AD", "Frail_over_Dementia-AD"}

    def test_completeness_check(self):
        duplicated = pd.DataFrame({
            "Protein": ["P1", "P1", "P1"],
            "Contrast": ["B_over_A", "B_over_A", "C_over_A"],
        })
        with pytest.raises(RuntimeError, match="incomplete"):
            _check_contrast_completeness(duplicated, ["P1"], ["B_over_A", "C_over_A"])

        missing = pd.DataFrame({"Protein": ["P1"], "Contrast": ["B_over_A"]})
        with pytest.raises(RuntimeError):
            _check_contrast_completeness(missing, ["P1", "P2"], ["B_over_A"])


class TestSummary:
    """Test per-contrast summary"""

    def test_summary_counts(self, imputed_cohort_abundance, cohort_metadata, differential_config):
        result = run_differential_expression(imputed_cohort_abundance, cohort_metadata, differential_config)
        summary = summarize_differential_results(result, differential_config)

        assert list(summary) == EXPECTED_CONTRASTS
        for contrast, counts in summary.items():
            assert counts["tested"] == 30
            assert counts["significant"] == counts["increase"] + counts["decrease"]
            assert counts["significant"] == int(result[result["Contrast"] == contrast]["significant"].sum())

    def test_empty_results(self, differential_config):
        assert summarize_differential_results(pd.DataFrame(), differential_config) == {}
