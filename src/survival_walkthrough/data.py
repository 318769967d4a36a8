from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import logging
import numpy as np
import pandas as pd
from pathlib import Path
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, StandardScaler
from sklearn.impute import SimpleImputer
from sklearn.feature_selection import VarianceThreshold
from sklearn.pipeline import Pipeline
from sksurv.datasets import load_veterans_lung_cancer

logger = logging.getLogger("survival_walkthrough.data")

# Canonical columns of the veteran lung cancer trial
TIME_COL = "time"
EVENT_COL = "status"
NUM_COLS = ["karno", "diagtime", "age"]
CAT_COLS = ["trt", "celltype", "prior"]
AGE_GROUP_COL = "age_group"

# scikit-survival bundled names -> canonical names
SKSURV_COLUMNS = {
    "Treatment": "trt",
    "Celltype": "celltype",
    "Karnofsky_score": "karno",
    "Months_from_Diagnosis": "diagtime",
    "Age_in_years": "age",
    "Prior_therapy": "prior",
    "Survival_in_days": "time",
    "Status": "status",
}

# Numeric codes used by the R survival package's veteran data
TREATMENT_LABELS = {1: "standard", 2: "test"}
PRIOR_LABELS = {0: "no", 10: "yes"}
CELLTYPE_LEVELS = ["squamous", "smallcell", "adeno", "large"]


def load_veterans() -> pd.DataFrame:
    """Load the veteran lung cancer trial bundled with scikit-survival.

    Returns:
        DataFrame with canonical columns trt, celltype, time, status, karno,
        diagtime, age, prior (137 patients)
    """
    data_x, data_y = load_veterans_lung_cancer()
    df = data_x.copy()
    df["Survival_in_days"] = data_y["Survival_in_days"].astype(float)
    df["Status"] = data_y["Status"].astype(int)
    return df.rename(columns=SKSURV_COLUMNS)


def load_data(file_path: Optional[str] = None) -> pd.DataFrame:
    """Load veteran survival data from the bundled dataset, CSV or pickle.

    Args:
        file_path: Path to input file (CSV or pickle). If None, the bundled
            scikit-survival copy of the veteran data is used.

    Returns:
        DataFrame with canonical column names and positive survival times

    Raises:
        FileNotFoundError: If file_path does not exist
        ValueError: If file format is not supported or required columns are missing

    Example:
        >>> df = load_data()
        >>> df.shape
        (137, 8)

        >>> df = load_data("data/inputs/veteran.csv")
    """
    if file_path is None:
        logger.info("Loading bundled veteran lung cancer data (scikit-survival)")
        df = load_veterans()
    else:
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Data file not found: {file_path}")

        suffix = file_path.suffix.lower()

        if suffix == '.csv':
            logger.info(f"Loading CSV data from {file_path}")
            df = pd.read_csv(file_path)
        elif suffix in ['.pkl', '.pickle']:
            logger.info(f"Loading pickle data from {file_path}")
            df = pd.read_pickle(file_path)
        else:
            raise ValueError(
                f"Unsupported file format: {suffix}. "
                f"Supported formats: .csv, .pkl, .pickle"
            )
        df = df.rename(columns=SKSURV_COLUMNS)

    required = [TIME_COL, EVENT_COL] + NUM_COLS + CAT_COLS
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns")

    invalid_count = int((df[TIME_COL] <= 0).sum())
    if invalid_count > 0:
        logger.warning(f"Removing {invalid_count:,} records with {TIME_COL} <= 0")
        df = df[df[TIME_COL] > 0].copy()

    return df.reset_index(drop=True)


def _relabel(series: pd.Series, mapping: Dict, levels: List[str]) -> pd.Categorical:
    """Map numeric codes (or normalize string labels) onto ordered levels."""
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
        unknown = set(series.dropna().unique()) - set(mapping)
        if unknown:
            raise ValueError(f"Unknown codes in '{series.name}': {sorted(unknown)}")
        labels = series.map(mapping)
    else:
        labels = series.astype(str).str.strip().str.lower()
        unknown = set(labels.unique()) - set(levels)
        if unknown:
            raise ValueError(f"Unknown labels in '{series.name}': {sorted(unknown)}")
    return pd.Categorical(labels, categories=levels)


def relabel_factors(df: pd.DataFrame) -> pd.DataFrame:
    """Turn coded trial factors into labeled categoricals.

    - trt: 1/2 -> standard/test
    - prior: 0/10 -> no/yes
    - celltype: squamous, smallcell, adeno, large (squamous is the reference level)

    String inputs are lower-cased and validated, so the function is idempotent
    and accepts both the R coding and the scikit-survival labels.

    Args:
        df: DataFrame with canonical column names

    Returns:
        Copy of df with trt, prior and celltype as categoricals

    Raises:
        ValueError: If a column holds a code or label outside the known levels

    Example:
        >>> raw = pd.DataFrame({"trt": [1, 2], "prior": [0, 10], "celltype": ["adeno", "large"]})
        >>> relabel_factors(raw)["trt"].tolist()
        ['standard', 'test']
    """
    out = df.copy()
    out["trt"] = _relabel(out["trt"], TREATMENT_LABELS, list(TREATMENT_LABELS.values()))
    out["prior"] = _relabel(out["prior"], PRIOR_LABELS, list(PRIOR_LABELS.values()))
    out["celltype"] = _relabel(
        out["celltype"], dict(enumerate(CELLTYPE_LEVELS, start=1)), CELLTYPE_LEVELS
    )
    return out


def add_age_group(df: pd.DataFrame, cutoff: int = 60) -> pd.DataFrame:
    """Add an age_group factor: LT{cutoff} below the cutoff, OV{cutoff} otherwise."""
    out = df.copy()
    levels = [f"LT{cutoff}", f"OV{cutoff}"]
    groups = np.where(out["age"] < cutoff, levels[0], levels[1])
    out[AGE_GROUP_COL] = pd.Categorical(groups, categories=levels)
    return out


def prepare_data(df: pd.DataFrame, age_cutoff: int = 60) -> pd.DataFrame:
    """Relabel factors and add the age group in one step."""
    return add_age_group(relabel_factors(df), cutoff=age_cutoff)


def to_structured_y(df: pd.DataFrame) -> np.ndarray:
    """Create scikit-survival structured array from DataFrame.

    Args:
        df: DataFrame containing EVENT_COL and TIME_COL columns

    Returns:
        Structured numpy array with dtype=[('event', bool), ('time', float)]

    Example:
        >>> df = pd.DataFrame({'status': [1, 0], 'time': [72.0, 411.0]})
        >>> to_structured_y(df).dtype.names
        ('event', 'time')
    """
    y = np.array(
        list(zip(df[EVENT_COL].astype(bool).values, df[TIME_COL].astype(float).values)),
        dtype=[("event", bool), ("time", float)],
    )
    return y


def lifelines_frame(
    df: pd.DataFrame,
    covariates: Optional[List[str]] = None,
) -> pd.DataFrame:
    """Build the dummy-encoded frame that lifelines regression fitters expect.

    Categorical covariates are expanded with their first level dropped
    (standard treatment, squamous cells, no prior therapy are the baselines).
    The duration and event columns are appended unchanged.

    Args:
        df: Prepared DataFrame (see prepare_data)
        covariates: Columns to include. Defaults to CAT_COLS + NUM_COLS

    Returns:
        Float DataFrame with dummy columns, numeric covariates, time and status
    """
    covariates = covariates if covariates is not None else CAT_COLS + NUM_COLS
    design = pd.get_dummies(df[covariates], drop_first=True).astype(float)
    design[TIME_COL] = df[TIME_COL].astype(float).values
    design[EVENT_COL] = df[EVENT_COL].astype(int).values
    return design


def forest_features(
    df: pd.DataFrame,
    numeric: Optional[List[str]] = None,
    categorical: Optional[List[str]] = None,
) -> Tuple[pd.DataFrame, np.ndarray]:
    """Extract forest features and structured survival labels.

    Categoricals are passed as plain strings so the scikit-learn encoders
    see the same dtype regardless of the input source.

    Returns:
        Tuple of (X, y) where y has dtype=[('event', bool), ('time', float)]
    """
    numeric = numeric if numeric is not None else NUM_COLS
    categorical = categorical if categorical is not None else CAT_COLS
    X = df[list(categorical) + list(numeric)].copy()
    for col in categorical:
        X[col] = X[col].astype(str)
    return X, to_structured_y(df)


def make_preprocessor(
    numeric: List[str] = None, categorical: List[str] = None
) -> ColumnTransformer:
    """Create preprocessing for forest features.

    Args:
        numeric: List of numeric column names. Defaults to NUM_COLS if None
        categorical: List of categorical column names. Defaults to CAT_COLS if None

    Returns:
        ColumnTransformer configured with:
        - Numeric pipeline: SimpleImputer (median + indicators) -> StandardScaler
        - Categorical pipeline: SimpleImputer (most_frequent) -> OneHotEncoder
    """
    numeric = numeric if numeric is not None else NUM_COLS
    categorical = categorical if categorical is not None else CAT_COLS

    num_pipe = Pipeline(
        steps=[
            ("impute", SimpleImputer(strategy="median", add_indicator=True)),
            ("scaler", StandardScaler()),
        ]
    )

    cat_pipe = Pipeline(
        steps=[
            ("impute", SimpleImputer(strategy="most_frequent")),
            ("onehot", OneHotEncoder(handle_unknown="ignore", sparse_output=False, drop="first")),
        ]
    )

    pre = ColumnTransformer(
        transformers=[
            ("num", num_pipe, list(numeric)),
            ("cat", cat_pipe, list(categorical)),
        ]
    )
    return pre


def make_pipeline(preprocessor: ColumnTransformer, estimator) -> Pipeline:
    """Create sklearn Pipeline combining preprocessing and a survival estimator.

    Steps:
        - 'pre': preprocessing (imputation + scaling/encoding)
        - 'varth': variance threshold filter (drops constant columns)
        - 'model': survival estimator
    """
    return Pipeline(
        steps=[
            ("pre", preprocessor),
            ("varth", VarianceThreshold(threshold=1e-12)),
            ("model", estimator),
        ]
    )
