"""
Identifier Mapping Module

Protein accession -> gene identifier tables for the ranking step, either
from a local mapping table or from the UniProt ID mapping REST service.
Mappings are many-to-many; duplicate pairs are removed.
"""

import pandas as pd
import requests
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional


UNIPROT_IDMAPPING_URL = 'https://rest.uniprot.org/idmapping'

MAPPING_COLUMNS = ['Protein', 'Identifier']


@dataclass
class IDMappingConfig:
    """Settings for the UniProt ID mapping client.

    Attributes
    ----------
    from_db : str
        UniProt source database name
    to_db : str
        Target database name ('GeneID' for Entrez, 'Gene_Name' for symbols)
    poll_interval : float
        Seconds between job status checks
    max_polls : int
        Status checks before giving up
    timeout : int
        Request timeout in seconds
    page_size : int
        Results per page
    """

    from_db: str = 'UniProtKB_AC-ID'
    to_db: str = 'GeneID'
    poll_interval: float = 3.0
    max_polls: int = 60
    timeout: int = 30
    page_size: int = 500


def identifier_to_str(value) -> str:
    """
    Text form of an identifier cell.

    Integral floats are written without the decimal part, so a GeneID column
    read as float64 (any gap makes pandas upcast) gives '1234', not '1234.0'.
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def mapping_from_table(
    table: pd.DataFrame,
    source_column: Optional[str] = None,
    target_column: Optional[str] = None,
    separator: Optional[str] = ';'
) -> pd.DataFrame:
    """
    Normalise a mapping table to (Protein, Identifier) pairs.

    Multi-valued targets ('1234;5678') are split on `separator`, blank
    targets are dropped and duplicate pairs removed. First-seen order is kept.
    """
    source_column = source_column or table.columns[0]
    target_column = target_column or table.columns[1]

    mapping = table[[source_column, target_column]].dropna().copy()
    for column in mapping.columns:
        mapping[column] = mapping[column].map(identifier_to_str)
    mapping.columns = MAPPING_COLUMNS
    mapping['Protein'] = mapping['Protein'].str.strip()

    if separator:
        mapping['Identifier'] = mapping['Identifier'].str.split(separator)
        mapping = mapping.explode('Identifier')

    mapping['Identifier'] = mapping['Identifier'].str.strip()
    mapping = mapping[(mapping['Protein'] != '') & (mapping['Identifier'] != '')]
    return mapping.drop_duplicates().reset_index(drop=True)


def _result_target(value) -> str:
    # UniProtKB targets come back as entry objects
    if isinstance(value, dict):
        return str(value.get('primaryAccession', ''))
    return str(value)


def query_uniprot_idmapping(
    accessions: Iterable[str],
    config: Optional[IDMappingConfig] = None
) -> pd.DataFrame:
    """
    Map UniProt accessions with the UniProt ID mapping service.

    Submits one job, polls its status and pages through the results.

    Parameters
    ----------
    accessions : Iterable[str]
        UniProt accessions
    config : IDMappingConfig, optional
        Client settings. Uses defaults if not provided.

    Returns
    -------
    pd.DataFrame
        Columns Protein, Identifier. Empty if the service cannot be reached
        or the job fails.

    Examples
    --------
    >>> mapping = query_uniprot_idmapping(['P05067', 'P10636'])
    """
    if config is None:
        config = IDMappingConfig()

    clean_ids: List[str] = []
    seen = set()
    for accession in accessions:
        if pd.notna(accession):
            text = str(accession).strip()
            if text and text not in seen:
                seen.add(text)
                clean_ids.append(text)

    empty = pd.DataFrame(columns=MAPPING_COLUMNS)
    if not clean_ids:
        return empty

    # Submit job
    try:
        response = requests.post(
            f'{UNIPROT_IDMAPPING_URL}/run',
            data={'from': config.from_db, 'to': config.to_db, 'ids': ','.join(clean_ids)},
            timeout=config.timeout
        )
        if not response.ok:
            print(f"  Error submitting ID mapping job: {response.status_code}")
            return empty
        job_id = response.json()['jobId']

    except requests.exceptions.Timeout:
        print("  Error: UniProt request timed out")
        return empty
    except requests.exceptions.ConnectionError:
        print("  Error: Could not connect to UniProt (check internet connection)")
        return empty
    except (ValueError, KeyError) as e:
        print(f"  Error reading UniProt response: {e}")
        return empty

    # Poll status
    finished = False
    for _ in range(config.max_polls):
        try:
            response = requests.get(
                f'{UNIPROT_IDMAPPING_URL}/status/{job_id}',
                timeout=config.timeout
            )
            status = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            print(f"  Error checking ID mapping job {job_id}: {e}")
            return empty

        if 'results' in status or status.get('jobStatus') == 'FINISHED':
            finished = True
            break
        if status.get('jobStatus') not in ('NEW', 'RUNNING'):
            print(f"  Error: ID mapping job {job_id} ended with status {status.get('jobStatus')}")
            return empty
        time.sleep(config.poll_interval)

    if not finished:
        print(f"  Error: ID mapping job {job_id} did not finish after {config.max_polls} checks")
        return empty

    # Fetch results page by page
    pairs = []
    failed_ids = []
    url = f'{UNIPROT_IDMAPPING_URL}/results/{job_id}'
    params = {'format': 'json', 'size': config.page_size}
    while url:
        try:
            response = requests.get(url, params=params, timeout=config.timeout)
            if not response.ok:
                print(f"  Error fetching ID mapping results: {response.status_code}")
                return empty
            page = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            print(f"  Error fetching ID mapping results: {e}")
            return empty

        for record in page.get('results', []):
            pairs.append((str(record['from']), _result_target(record['to'])))
        failed_ids.extend(page.get('failedIds', []))

        url = response.links.get('next', {}).get('url')
        params = None

    mapping = pd.DataFrame(pairs, columns=MAPPING_COLUMNS)
    mapping = mapping[mapping['Identifier'] != ''].drop_duplicates().reset_index(drop=True)

    print(f"✓ Mapped {mapping['Protein'].nunique()}/{len(clean_ids)} accessions to {config.to_db}"
          f"{f' ({len(failed_ids)} failed)' if failed_ids else ''}")
    return mapping
