# tests/conftest.py
import matplotlib
import numpy as np
import pandas as pd
import pytest


def pytest_configure():
    # Headless backend for the report tests
    matplotlib.use("Agg", force=True)


VOWEL_TARGETS = {
    "IY": (300, 2300),
    "EH": (550, 1850),
    "AE": (720, 1700),
    "AA": (750, 1150),
    "UW": (330, 1000),
}


# ---------------------------------------------------------
# Token tables
# ---------------------------------------------------------

@pytest.fixture
def concrete_tokens():
    """Speaker A: two IY and two AA tokens."""
    return pd.DataFrame({
        "speaker": ["A", "A", "A", "A"],
        "word": ["beet", "beet", "bot", "bot"],
        "vowel": ["IY", "IY", "AA", "AA"],
        "F1": [300.0, 320.0, 700.0, 720.0],
        "F2": [2200.0, 2300.0, 1200.0, 1250.0],
    })


@pytest.fixture
def tokens():
    """Three speakers with different vocal tract scales, six tokens per vowel."""
    rng = np.random.RandomState(0)
    rows = []
    for speaker, sex, scale in [("s01", "F", 1.18), ("s02", "M", 1.0), ("s03", "F", 1.1)]:
        for vowel, (f1, f2) in VOWEL_TARGETS.items():
            for _ in range(6):
                rows.append({
                    "speaker": speaker,
                    "sex": sex,
                    "word": vowel.lower(),
                    "vowel": vowel,
                    "F1": f1 * scale + rng.normal(0, 20),
                    "F2": f2 * scale + rng.normal(0, 60),
                })
    return pd.DataFrame(rows)


@pytest.fixture
def tsv_files(tmp_path, tokens):
    """The token table split over two tab-delimited files."""
    first = tokens[tokens["speaker"] != "s03"]
    second = tokens[tokens["speaker"] == "s03"]

    path_a = tmp_path / "speakers_a.tsv"
    path_b = tmp_path / "speakers_b.tsv"
    first.to_csv(path_a, sep="\t", index=False)
    second.to_csv(path_b, sep="\t", index=False)

    return [str(path_a), str(path_b)]
