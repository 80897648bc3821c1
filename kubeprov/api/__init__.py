"""HTTP API for provisioning state and cluster verification."""
