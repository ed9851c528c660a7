"""Chat-completions client and prompts for the two-phase analysis."""
