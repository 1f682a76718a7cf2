"""Bearer token verifiers."""
