"""Report Engine - credit report consolidation, normalization and dispute rounds."""
