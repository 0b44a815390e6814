"""Default configuration values for drift detection."""

DEFAULT_MODEL_KIND = "ensemble"  # isolation | boundary | density | statistical | ensemble
DEFAULT_ENABLED_MODELS = ["isolation", "boundary", "density", "statistical"]
DEFAULT_COMBINATION_STRATEGY = "mean"  # mean | weighted | learned
DEFAULT_MODEL_WEIGHTS = {
    "isolation": 1.0,
    "boundary": 1.0,
    "density": 1.0,
    "statistical": 1.0,
}
DEFAULT_RANDOM_SEED = 42
DEFAULT_ISOLATION_ESTIMATORS = 150
DEFAULT_BOUNDARY_NU = 0.1
DEFAULT_DENSITY_NEIGHBORS = 20
DEFAULT_STATISTICAL_THRESHOLD = 2.0

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_RECORD_OBSERVATIONS = True
DEFAULT_WORKER_COUNT = 1
DEFAULT_SCORING_TIMEOUT_SECONDS = 5.0

DEFAULT_ENABLE_TEMPORAL = True
DEFAULT_ENABLE_TEXTUAL = True
DEFAULT_ENABLE_STRUCTURAL = True
DEFAULT_TEMPORAL_WINDOW_DAYS = 30

DEFAULT_MAX_CORPUS_SIZE = 5000
DEFAULT_MAX_TRAINING_SAMPLES = 10000
DEFAULT_MIN_TRAINING_SAMPLES = 10
DEFAULT_ONLINE_LEARNING = True
DEFAULT_RETRAIN_AFTER_FEEDBACK = 10
DEFAULT_RETRAIN_INTERVAL_SECONDS = 0.0  # 0 disables schedule-based retraining
DEFAULT_FALSE_POSITIVE_WEIGHT_DECAY = 0.5
DEFAULT_MIN_SAMPLE_WEIGHT = 0.05

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_CACHE_TTL_SECONDS = 3600.0
DEFAULT_CACHE_MAX_ENTRIES = 10000
DEFAULT_QUEUE_MAXSIZE = 256
DEFAULT_BACKPRESSURE = "drop_oldest"  # drop_oldest | block
DEFAULT_STATUS_INTERVAL_SECONDS = 30.0
DEFAULT_WATCH_EXTENSIONS = [
    ".py", ".rs", ".ts", ".tsx", ".js", ".jsx", ".java", ".go",
    ".json", ".yaml", ".yml", ".toml", ".tf", "Dockerfile", "requirements*.txt",
]
DEFAULT_IGNORED_PATTERNS = ["**/.git/**", "**/__pycache__/**", "**/node_modules/**", "**/target/**"]
DEFAULT_USE_FILE_OBSERVER = True
