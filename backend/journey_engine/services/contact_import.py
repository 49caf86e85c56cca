from io import StringIO
from typing import List

import pandas as pd


def parse_contact_file(content: str) -> List[str]:
    """Contact ids from a CSV export. The file needs a `contact_id` column; blank cells are ignored."""
    if not content or not content.strip():
        return []
    try:
        df = pd.read_csv(StringIO(content), dtype=str)
    except Exception as e:
        raise ValueError(f"Invalid CSV format: {e}")

    df.columns = [str(h).strip().lower() for h in df.columns]
    if "contact_id" not in df.columns:
        raise ValueError("CSV must contain 'contact_id' column.")

    ids = df["contact_id"].dropna().str.strip()
    return [contact_id for contact_id in ids.tolist() if contact_id]
