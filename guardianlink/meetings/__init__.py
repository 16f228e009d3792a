"""Meeting lifecycle and meeting requests."""
