import numpy as np
import pandas as pd
import pytest

from normalization.errors import DegenerateGroupError
from outliers.statistical import (
    compute_stratum_statistics,
    detect_outliers_mahalanobis,
    filter_outliers,
    mahalanobis_distances,
    threshold_from_quantile,
)


@pytest.fixture
def planted():
    """One tight IY cluster with a single far token appended last."""
    rng = np.random.RandomState(1)
    n = 12
    df = pd.DataFrame({
        "speaker": ["s01"] * n,
        "vowel": ["IY"] * n,
        "F1": 300 + rng.normal(0, 20, n),
        "F2": 2300 + rng.normal(0, 60, n),
    })
    far = pd.DataFrame({"speaker": ["s01"], "vowel": ["IY"], "F1": [900.0], "F2": [700.0]})
    return pd.concat([df, far], ignore_index=True)


# ---------------------------------------------------------
# Distances
# ---------------------------------------------------------

def test_mahalanobis_distances_sum_to_dof(tokens):
    values = tokens[["F1", "F2"]].to_numpy()

    squared = mahalanobis_distances(values)

    # sample covariance: sum of squared distances is (n - 1) * p
    assert squared.sum() == pytest.approx((len(values) - 1) * 2)
    assert (squared >= 0).all()


def test_mahalanobis_distances_constant_group():
    values = np.array([[500.0, 1500.0]] * 4)

    squared = mahalanobis_distances(values)

    np.testing.assert_allclose(squared, 0.0)


def test_mahalanobis_distances_robust(tokens):
    values = tokens[["F1", "F2"]].to_numpy()

    squared = mahalanobis_distances(values, robust=True)

    assert squared.shape == (len(values),)
    assert np.isfinite(squared).all()


def test_threshold_from_quantile():
    # chi2 with 2 dof: ppf(q) = -2 ln(1 - q)
    assert threshold_from_quantile(1 - np.exp(-2)) == pytest.approx(2.0)

    with pytest.raises(ValueError):
        threshold_from_quantile(1.5)


# ---------------------------------------------------------
# Filtering
# ---------------------------------------------------------

def test_detect_flags_planted_token(planted):
    flags = detect_outliers_mahalanobis(planted)

    assert flags.index.equals(planted.index)
    assert flags.loc[len(planted) - 1, "is_outlier"]
    assert flags.loc[len(planted) - 1, "mahal_dist"] > 2.0


def test_filter_removes_planted_token(planted):
    filtered = filter_outliers(planted)

    assert len(planted) - 1 not in filtered.index
    assert len(filtered) < len(planted)


def test_converged_filter_is_idempotent(tokens, planted):
    df = pd.concat([tokens, planted], ignore_index=True)

    once = filter_outliers(df, max_iterations=None)
    twice = filter_outliers(once, max_iterations=None)

    pd.testing.assert_frame_equal(once, twice)


def test_single_pass_removes_no_more_than_converged(tokens, planted):
    df = pd.concat([tokens, planted], ignore_index=True)

    single = filter_outliers(df, max_iterations=1)
    converged = filter_outliers(df, max_iterations=None)

    assert set(converged.index) <= set(single.index)


def test_default_is_single_pass_against_input_group(tokens, planted):
    df = pd.concat([tokens, planted], ignore_index=True)

    flags = detect_outliers_mahalanobis(df)
    filtered = filter_outliers(df)

    assert list(filtered.index) == list(flags.index[~flags["is_outlier"]])
    pd.testing.assert_frame_equal(filtered, filter_outliers(df, max_iterations=1))


def test_single_pass_keeps_most_of_a_clean_group():
    rng = np.random.RandomState(7)
    n = 200
    df = pd.DataFrame({
        "speaker": ["s01"] * n,
        "vowel": ["AA"] * n,
        "F1": 700 + rng.normal(0, 40, n),
        "F2": 1200 + rng.normal(0, 90, n),
    })

    kept = len(filter_outliers(df)) / n

    # chi2 with 2 dof: P(d <= 2) = 1 - exp(-2)
    assert kept == pytest.approx(1 - np.exp(-2), abs=0.07)


def test_small_groups_pass_through():
    df = pd.DataFrame({
        "speaker": ["s01", "s01"],
        "vowel": ["IY", "IY"],
        "F1": [300.0, 900.0],
        "F2": [2300.0, 700.0],
    })

    flags = detect_outliers_mahalanobis(df)
    assert not flags["is_outlier"].any()
    assert flags["mahal_dist"].isna().all()

    pd.testing.assert_frame_equal(filter_outliers(df), df)


def test_small_groups_error_policy():
    df = pd.DataFrame({
        "speaker": ["s01", "s01"],
        "vowel": ["IY", "IY"],
        "F1": [300.0, 310.0],
        "F2": [2300.0, 2250.0],
    })

    with pytest.raises(DegenerateGroupError) as excinfo:
        filter_outliers(df, small_group_policy="error")

    assert excinfo.value.speaker == "s01"


def test_unknown_small_group_policy(tokens):
    with pytest.raises(ValueError):
        detect_outliers_mahalanobis(tokens, small_group_policy="skip")


def test_filter_does_not_mix_groups(tokens, planted):
    # the far token is only unusual for its own (speaker, vowel)
    df = pd.concat([tokens, planted], ignore_index=True)
    flags = detect_outliers_mahalanobis(df)

    per_group = detect_outliers_mahalanobis(df[df["speaker"] == "s02"])
    np.testing.assert_allclose(
        flags.loc[per_group.index, "mahal_dist"], per_group["mahal_dist"]
    )


# ---------------------------------------------------------
# Stratum statistics
# ---------------------------------------------------------

def test_compute_stratum_statistics(tokens):
    stats = compute_stratum_statistics(tokens, ["F1", "F2"], ["speaker"])

    assert list(stats["speaker"]) == ["s01", "s02", "s03"]
    assert (stats["n_tokens"] == 30).all()
    expected = tokens.groupby("speaker")["F1"].std()
    np.testing.assert_allclose(stats["F1_sd"], expected.to_numpy())
