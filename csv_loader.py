import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import pandas as pd

from ckan_client import CKANAPIClient
from dashboard_errors import CKANConnectionError, CSVParseError


logger = logging.getLogger("ckan-dashboard.csv")

SAMPLE_ROWS = 10


@dataclass
class CSVData:
    columns: List[str]
    rows: List[Dict[str, Any]]
    sample_data: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": self.columns,
            "rows": self.rows,
            "sampleData": self.sample_data,
            "rowCount": len(self.rows),
        }


def parse_csv(text: str, sample_size: int = SAMPLE_ROWS) -> CSVData:
    """Parse CSV text with a header row, typing numeric columns"""
    try:
        # Only empty cells are missing; "NA", "null" and the like stay strings
        df = pd.read_csv(io.StringIO(text), skip_blank_lines=True,
                         keep_default_na=False, na_values=[""])
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.error(f"CSV parsing error: {e}")
        raise CSVParseError("Failed to parse CSV file") from e

    df = df.dropna(how="all")
    # to_json turns NaN into null and numpy scalars into plain numbers
    rows = json.loads(df.to_json(orient="records", date_format="iso"))
    return CSVData(
        columns=[str(column) for column in df.columns],
        rows=rows,
        sample_data=rows[:sample_size],
    )


async def load_csv(client: CKANAPIClient, url: str, sample_size: int = SAMPLE_ROWS) -> CSVData:
    try:
        text = await client.fetch_text(url)
    except CKANConnectionError as e:
        logger.error(f"Failed to fetch CSV {url}: {e}")
        raise CSVParseError("Failed to load CSV data") from e
    return parse_csv(text, sample_size=sample_size)
