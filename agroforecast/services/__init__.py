"""services — Public advisory operations over predictors and storage."""
