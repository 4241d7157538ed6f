"""LinkedIn sign-in pipeline: candidate redirect URIs, state, exchange, profile, identity."""
