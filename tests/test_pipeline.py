"""
Integration tests for resilience_proteomics.pipeline
"""

import pytest
import pandas as pd
import numpy as np
from unittest.mock import patch

from resilience_proteomics.pipeline import PipelineConfig, run_proteomics_pipeline
from resilience_proteomics.statistical_analysis import DE_COLUMNS
from resilience_proteomics.validation import SampleMatchingError


@pytest.fixture
def quiet_config():
    config = PipelineConfig()
    config.verbose = False
    config.differential.verbose = False
    return config


@pytest.fixture
def cohort_mapping(cohort_abundance):
    return pd.DataFrame({
        "Entry": cohort_abundance["Protein"],
        "GeneID": [str(1000 + i) for i in range(len(cohort_abundance))],
    })


class TestPipeline:
    """Test the end-to-end analysis"""

    def test_complete_run(self, cohort_abundance, cohort_metadata, organelle_reference,
                          cohort_mapping, quiet_config):
        organelles, proteome = organelle_reference
        panel = [f"GENE{i}" for i in range(10)]
        quiet_config.ranking_contrasts = ["Resilient_over_Dementia-AD"]

        results = run_proteomics_pipeline(
            cohort_abundance,
            cohort_metadata,
            organelle_lists=organelles,
            proteome_reference=proteome,
            synaptic_panel=panel,
            id_mapping=cohort_mapping,
            config=quiet_config,
        )

        assert len(results["filtered"]) == 30
        assert results["normalized"]["Protein"].tolist() == results["filtered"]["Protein"].tolist()

        enrichment = results["enrichment"].set_index("category")
        assert enrichment.loc["mitochondrion", "in_set"] == 20

        assert len(results["model_input"]) == 10
        differential = results["differential"]
        assert list(differential.columns) == DE_COLUMNS
        assert len(differential) == 10 * 6

        assert list(results["ranked_lists"]) == ["Resilient_over_Dementia-AD"]
        ranked = results["ranked_lists"]["Resilient_over_Dementia-AD"]
        assert len(ranked) == 10
        # Planted Dementia-AD increase -> strongest negative score
        assert ranked.index[-1] == "1000"

    def test_optional_stages_skipped(self, cohort_abundance, cohort_metadata, quiet_config):
        results = run_proteomics_pipeline(cohort_abundance, cohort_metadata, config=quiet_config)

        assert results["enrichment"] is None
        assert results["ranked_lists"] == {}
        assert len(results["model_input"]) == 30
        assert set(results["summary"]) == set(results["differential"]["Contrast"])

    def test_strict_missingness_filter(self, cohort_abundance, cohort_metadata,
                                       cohort_sample_columns, quiet_config):
        quiet_config.max_missing = 0
        results = run_proteomics_pipeline(cohort_abundance, cohort_metadata, config=quiet_config)

        donors = cohort_sample_columns[:-1]
        complete = (cohort_abundance[donors] != 0).all(axis=1)
        assert results["filtered"]["Protein"].tolist() == cohort_abundance.loc[complete, "Protein"].tolist()
        assert results["differential"]["Protein"].nunique() == complete.sum()

    def test_sample_mismatch_stops_before_any_stage(self, cohort_abundance, cohort_metadata, quiet_config):
        metadata = cohort_metadata[cohort_metadata["Sample"] != "S05"]

        with patch("resilience_proteomics.pipeline.filter_and_transform") as mock_filter, \
                patch("resilience_proteomics.pipeline.normalize_abundance") as mock_normalize:
            with pytest.raises(SampleMatchingError, match="S05"):
                run_proteomics_pipeline(cohort_abundance, metadata, config=quiet_config)

        mock_filter.assert_not_called()
        mock_normalize.assert_not_called()

    def test_pooled_channel_needs_no_metadata(self, cohort_abundance, cohort_metadata, quiet_config):
        assert "Pool_1" not in cohort_metadata["Sample"].tolist()
        results = run_proteomics_pipeline(cohort_abundance, cohort_metadata, config=quiet_config)
        assert "Pool_1" in results["normalized"].columns

    def test_enrichment_requires_reference(self, cohort_abundance, cohort_metadata,
                                           organelle_reference, quiet_config):
        organelles, _ = organelle_reference
        with pytest.raises(ValueError, match="proteome_reference"):
            run_proteomics_pipeline(
                cohort_abundance, cohort_metadata, organelle_lists=organelles, config=quiet_config
            )
