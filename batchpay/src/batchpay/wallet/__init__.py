"""Key handling, coin selection, transaction building and signing."""
