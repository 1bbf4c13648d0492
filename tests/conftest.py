"""
Pytest configuration and fixtures for resilience_proteomics tests
"""

import pytest
import pandas as pd
import numpy as np

from resilience_proteomics.statistical_analysis import DifferentialConfig


DIAGNOSES = ["Normal", "Dementia-AD", "Resilient", "Frail"]
DONORS_PER_GROUP = 5


@pytest.fixture
def cohort_sample_columns():
    """Sample codes of the synthetic cohort (donors, then one pooled channel)"""
    donors = [f"S{i + 1:02d}" for i in range(len(DIAGNOSES) * DONORS_PER_GROUP)]
    return donors + ["Pool_1"]


@pytest.fixture
def cohort_metadata():
    """Donor metadata: 5 donors per diagnosis with the four model covariates"""
    np.random.seed(42)
    n_donors = len(DIAGNOSES) * DONORS_PER_GROUP

    return pd.DataFrame({
        "Sample": [f"S{i + 1:02d}" for i in range(n_donors)],
        "Diagnosis": np.repeat(DIAGNOSES, DONORS_PER_GROUP),
        "Sex": ["M" if i % 2 == 0 else "F" for i in range(n_donors)],
        "Education": np.random.randint(8, 21, n_donors),
        "AgeAtDeath": np.round(np.random.uniform(75, 100, n_donors), 1),
        "PMI": np.round(np.random.uniform(2, 24, n_donors), 1),
    })


@pytest.fixture
def cohort_abundance(cohort_sample_columns):
    """
    Standardized protein-major intensities (raw scale) for 30 proteins.

    P00000 is 4x higher (log2 +2) in Dementia-AD donors; about 5% of donor
    values are zero (not quantified); the pooled channel is complete.
    """
    np.random.seed(42)
    n_proteins = 30
    donors = cohort_sample_columns[:-1]

    log2_values = np.random.normal(20, 0.3, (n_proteins, len(donors)))
    log2_values += np.random.normal(0, 1.5, (n_proteins, 1))  # protein baseline

    diagnosis = np.repeat(DIAGNOSES, DONORS_PER_GROUP)
    log2_values[0, diagnosis == "Dementia-AD"] += 2.0

    intensities = 2 ** log2_values
    zero_mask = np.random.random(intensities.shape) < 0.05
    zero_mask[0, :] = False
    intensities[zero_mask] = 0.0

    pool = 2 ** np.random.normal(20, 0.3, n_proteins)

    df = pd.DataFrame({
        "Protein": [f"P{i:05d}" for i in range(n_proteins)],
        "Gene": [f"GENE{i}" for i in range(n_proteins)],
        "Description": [f"Protein {i} description" for i in range(n_proteins)],
        **{sample: intensities[:, j] for j, sample in enumerate(donors)},
        "Pool_1": pool,
    })
    return df


@pytest.fixture
def imputed_cohort_abundance(cohort_abundance, cohort_sample_columns):
    """Cohort intensities with zeros replaced by NaN"""
    data = cohort_abundance.copy()
    samples = cohort_sample_columns
    data[samples] = data[samples].replace(0.0, np.nan)
    return data


@pytest.fixture
def differential_config():
    """Quiet default configuration for the linear model engine"""
    config = DifferentialConfig()
    config.verbose = False
    return config


@pytest.fixture
def small_standard_data():
    """Five proteins x four samples plus a pooled channel, with missing values"""
    return pd.DataFrame({
        "Protein": ["P1", "P2", "P3", "P4", "P5"],
        "Gene": ["G1", "G2", "G3", "G4", "G5"],
        "Description": ["d1", "d2", "d3", "d4", "d5"],
        "A": [100.0, 0.0, 50.0, 0.0, 10.0],
        "B": [200.0, 0.0, 60.0, 0.0, 20.0],
        "C": [300.0, 40.0, 0.0, 0.0, 30.0],
        "D": [400.0, 80.0, 70.0, 0.0, 40.0],
        "Pool_A": [250.0, 0.0, 0.0, 0.0, 25.0],
    })


@pytest.fixture
def organelle_reference():
    """Organelle lists, proteome reference and expected counts for the cohort genes"""
    proteome = {f"GENE{i}" for i in range(100)}
    organelles = {
        "mitochondrion": {f"GENE{i}" for i in range(0, 20)},
        "Golgi": {f"GENE{i}" for i in range(40, 60)},
        "ER": {f"GENE{i}" for i in range(25, 45)},
    }
    return organelles, proteome


@pytest.fixture
def de_results_for_ranking():
    """Hand-made differential results for ranking tests"""
    return pd.DataFrame({
        "Protein": ["A1", "A2", "A3", "A4", "A5", "A6", "A1"],
        "Contrast": ["Resilient_over_Dementia-AD"] * 6 + ["Frail_over_Normal"],
        "logFC": [0.5, -0.3, 1.0, 2.0, np.nan, 0.7, -5.0],
        "padj": [0.01, 0.0, 0.1, 0.0001, 0.01, np.nan, 0.5],
    })


@pytest.fixture
def accession_mapping():
    """Accession -> gene identifier mapping with a shared and an ambiguous entry"""
    return pd.DataFrame({
        "Protein": ["A1", "A2", "A3", "A4", "A5", "A6", "A3"],
        "Identifier": ["100", "200", "300", "300", "500", "600", "301"],
    })
