"""Note visibility rules and the sensitive-note approval workflow."""
