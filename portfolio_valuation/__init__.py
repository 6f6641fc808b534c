"""Portfolio valuation engine for crypto and stock holdings."""
